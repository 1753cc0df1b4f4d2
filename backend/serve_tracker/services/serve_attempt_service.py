"""
Serve Tracker Backend — Serve Attempt Service (Pipeline Orchestrator)
=======================================================================

What:  Owns the write path for serve attempts: validate → upload evidence →
       persist (or queue locally) → notify and resync in the background.
How:   Composes EvidenceService, the DocumentStore, LocalCache,
       NotificationService, SyncService and the BackgroundTaskRunner, all
       injected by the container.
Who:   Called by the serve-attempt and sync route handlers.

Submission Flow:
    ┌───────────┐   ┌──────────────┐   ┌─────────────────┐   ┌──────────────────┐
    │ Validate  │──▶│ Upload       │──▶│ Create document │──▶│ Background task: │
    │ client id │   │ full + thumb │   │ in remote store │   │ notify → resync  │
    └───────────┘   └──────────────┘   └───────┬─────────┘   └──────────────────┘
     only failure     failures only            │ fails
     the caller sees  drop evidence            ▼
                                       ┌─────────────────┐
                                       │ Queue in local  │
                                       │ pending list    │
                                       └─────────────────┘

    The caller is told the submission was accepted as soon as the record
    is stored or queued. Notification and resync run after that and their
    failures are recorded on the task outcome only.

Reconciliation:
    replay_pending() re-creates each queued record under its original id.
    A conflict means the record already reached the remote store, so it
    is treated as replayed. Queued records are never notified about.
    reconcile() runs replay then the cache sync; it backs POST /api/sync
    and the scheduled job started in the app lifespan.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from serve_tracker.clients.base import DocumentStore, Query
from serve_tracker.config import Settings
from serve_tracker.exceptions import (
    DocumentConflictError,
    NotFoundError,
    ServeTrackerError,
    ValidationError,
)
from serve_tracker.schemas.notification import EmailRequest
from serve_tracker.schemas.serve_attempt import (
    UNKNOWN_CASE_NAME,
    UNKNOWN_CLIENT_ID,
    UNKNOWN_CLIENT_NAME,
    UNSPECIFIED_CASE_NUMBER,
    CachedRecord,
    ReplayReport,
    ServeAttempt,
    ServeAttemptPage,
    ServeAttemptSubmission,
    ServeAttemptUpdate,
    SubmissionResult,
    SyncRunResponse,
    UpdateResult,
)
from serve_tracker.services import email_templates
from serve_tracker.services.background import BackgroundTaskRunner
from serve_tracker.services.evidence_service import EvidenceRefs, EvidenceService, new_object_id
from serve_tracker.services.local_cache import LocalCache
from serve_tracker.services.notification_service import NotificationService
from serve_tracker.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def default_address(submission: ServeAttemptSubmission) -> str:
    """Address shown when the agent typed none."""
    if submission.address:
        return submission.address
    if isinstance(submission.coordinates, str) and submission.coordinates.strip():
        return f"Coordinates: {submission.coordinates}"
    return "Address not provided"


class ServeAttemptService:
    """
    Business logic for serve attempts.

    Responsibilities:
        - submit(): the full write path with local fallback
        - update() / delete(): edits and cascading removal
        - get() / list_page() / list_for_client() / count(): remote reads
        - list_cached() / list_pending(): local reads
        - replay_pending() / reconcile(): push queued records back, resync
    """

    def __init__(
        self,
        document_store: DocumentStore,
        evidence: EvidenceService,
        notifications: NotificationService,
        sync: SyncService,
        cache: LocalCache,
        background: BackgroundTaskRunner,
        settings: Settings,
    ):
        self.document_store = document_store
        self.evidence = evidence
        self.notifications = notifications
        self.sync = sync
        self.cache = cache
        self.background = background
        self.settings = settings

    @property
    def collection_id(self) -> str:
        return self.settings.serve_attempts_collection_id

    # ══════════════════════════════════════════════════════════════════════
    # Create
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def validate_submission(submission: ServeAttemptSubmission) -> None:
        client_id = (submission.client_id or "").strip()
        if not client_id or client_id == UNKNOWN_CLIENT_ID:
            raise ValidationError(
                "Client ID is required to create a serve attempt",
                field="client_id",
            )

    async def submit(self, submission: ServeAttemptSubmission) -> SubmissionResult:
        """
        Record one field submission.

        Raises:
            ValidationError: no usable client id. Nothing has been uploaded
                or written when this is raised.

        Returns:
            SubmissionResult. `persisted_remotely` is False when the record
            was queued in the local pending list instead.
        """
        # ── Step 1: Reject before any side effect ────────────────────────
        self.validate_submission(submission)
        document_id = submission.id or new_object_id()
        client_id = submission.client_id.strip()
        client_name = await self.resolve_client_name(client_id, submission.client_name)

        # ── Step 2: Evidence (best-effort) ───────────────────────────────
        evidence = await self.evidence.upload_evidence(submission.image_data, document_id)

        attempt = self._build_attempt(submission, document_id, client_id, client_name, evidence)

        # ── Step 3: Remote create, else local fallback ───────────────────
        try:
            document = await self.document_store.create(
                self.collection_id, document_id, attempt.to_document()
            )
        except ServeTrackerError as e:
            logger.error(
                "Error creating serve attempt %s, queueing locally: %s | Context: %s",
                document_id, e.message, e.context,
            )
            return await self._queue_locally(attempt)
        except Exception as e:
            logger.error("Unexpected error creating serve attempt %s: %s",
                         document_id, str(e), exc_info=True)
            return await self._queue_locally(attempt)

        record = self._stored_record(document, attempt)
        logger.info("Serve attempt saved with ID: %s", record.id)

        # ── Step 4: Fire-after side effects ──────────────────────────────
        request = self._created_email(record, submission, evidence)
        task_id = self.background.submit(
            "serve-attempt-created", self._notify_and_resync(request)
        )
        return SubmissionResult(
            persisted_remotely=True,
            record=record,
            background_task_id=task_id,
        )

    def _build_attempt(
        self,
        submission: ServeAttemptSubmission,
        document_id: str,
        client_id: str,
        client_name: str,
        evidence: EvidenceRefs,
    ) -> ServeAttempt:
        return ServeAttempt(
            id=document_id,
            client_id=client_id,
            client_name=client_name,
            client_email=submission.client_email,
            case_number=submission.case_number or UNSPECIFIED_CASE_NUMBER,
            case_name=submission.case_name or UNKNOWN_CASE_NAME,
            status=submission.status,
            notes=submission.notes or "",
            address=default_address(submission),
            service_address=submission.service_address or submission.address or "",
            coordinates=submission.coordinates,
            timestamp=submission.timestamp,
            attempt_number=submission.attempt_number or 1,
            image_url=evidence.image_url,
            image_file_id=evidence.image_file_id,
            thumbnail_url=evidence.thumbnail_url if evidence.has_thumbnail else None,
            thumbnail_file_id=evidence.thumbnail_file_id if evidence.has_thumbnail else None,
        )

    @staticmethod
    def _stored_record(document: Dict[str, Any], attempt: ServeAttempt) -> ServeAttempt:
        """Remote document mapped back, with the in-memory-only fields restored."""
        merged = {**attempt.to_document(), **document}
        merged.setdefault("$id", attempt.id)
        record = ServeAttempt.from_document(merged)
        return record.model_copy(update={
            "client_email": attempt.client_email,
            "image_file_id": record.image_file_id or attempt.image_file_id,
            "created_at": record.created_at or datetime.now(timezone.utc),
        })

    async def _queue_locally(self, attempt: ServeAttempt) -> SubmissionResult:
        cached = CachedRecord.from_attempt(attempt).model_copy(update={"image_data": None})
        queued = True
        try:
            await self.cache.append(self.settings.pending_namespace, cached)
        except ServeTrackerError as e:
            queued = False
            logger.error("Local fallback write failed for %s: %s", attempt.id, e.message)
        return SubmissionResult(
            persisted_remotely=False,
            queued_locally=queued,
            record=attempt,
        )

    def _created_email(
        self,
        record: ServeAttempt,
        submission: ServeAttemptSubmission,
        evidence: EvidenceRefs,
    ) -> EmailRequest:
        return EmailRequest(
            to=[record.client_email or self.settings.business_email],
            subject=email_templates.created_subject(record),
            html=email_templates.serve_email_body(record),
            serve_id=record.id,
            image_url=record.image_url,
            # Inline only when the upload failed and there is no URL to fetch
            image_data=None if evidence.image_url else submission.image_data,
            metadata={"serve_id": record.id, "status": record.status.value},
        )

    # ══════════════════════════════════════════════════════════════════════
    # Update / Delete
    # ══════════════════════════════════════════════════════════════════════

    async def update(
        self,
        serve_id: str,
        changes: ServeAttemptUpdate,
        original: Optional[ServeAttempt] = None,
    ) -> UpdateResult:
        """
        Apply a partial edit of notes/status/case number/case name.

        Only fields that differ from `original` are sent. When `original`
        is supplied and nothing differs, no remote call is made at all and
        the original is returned unchanged.

        Raises:
            ValidationError: empty id.
            NotFoundError: the record does not exist (when fetched here).
            PersistenceError: the remote update failed.
        """
        if not serve_id:
            raise ValidationError("Serve attempt ID is required", field="id")
        if original is None:
            original = await self.get(serve_id)

        diff = changes.diff(original)
        if not diff:
            logger.info("No changes for serve attempt %s; skipping update", serve_id)
            return UpdateResult(record=original)

        logger.info("Updating serve attempt %s fields: %s", serve_id, sorted(diff))
        document = await self.document_store.update(self.collection_id, serve_id, diff)
        record = ServeAttempt.from_document({**original.to_document(), **document, "$id": serve_id})

        task_id = self.background.submit(
            "serve-attempt-updated", self._after_update(record)
        )
        return UpdateResult(changed_fields=sorted(diff), record=record, background_task_id=task_id)

    async def _after_update(self, record: ServeAttempt) -> Dict[str, Any]:
        email = await self.client_email(record.client_id)
        request = None
        if email:
            request = EmailRequest(
                to=[email],
                subject=email_templates.updated_subject(record),
                html=email_templates.serve_email_body(record),
                serve_id=record.id,
                image_url=record.image_url,
                image_data=record.image_data,
                metadata={"serve_id": record.id, "status": record.status.value},
            )
        else:
            logger.info("Client %s has no email; skipping update notification", record.client_id)
        return await self._notify_and_resync(request)

    async def delete(self, serve_id: Optional[str]) -> bool:
        """
        Delete a record and, best-effort, its evidence objects.

        Returns False without any remote call for an empty id.

        Raises:
            NotFoundError: no such record.
            PersistenceError: the document store failed.
        """
        if not serve_id:
            logger.warning("Delete requested without a serve attempt ID")
            return False

        record = await self.get(serve_id)
        await self.document_store.delete(self.collection_id, serve_id)
        removed = await self.evidence.delete_evidence(
            image_url=record.image_url,
            image_file_id=record.image_file_id,
            thumbnail_url=record.thumbnail_url,
            thumbnail_file_id=record.thumbnail_file_id,
        )
        try:
            await self.cache.remove(self.settings.cache_namespace, [serve_id])
        except ServeTrackerError as e:
            logger.warning("Deleted record %s is still in the read cache: %s", serve_id, e.message)

        logger.info("Serve attempt %s deleted (%d evidence object(s) removed)", serve_id, removed)
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def get(self, serve_id: str) -> ServeAttempt:
        document = await self.document_store.get(self.collection_id, serve_id)
        return ServeAttempt.from_document(document)

    async def list_page(self, limit: int = 50, offset: int = 0) -> ServeAttemptPage:
        result = await self.document_store.list(
            self.collection_id,
            [Query.order_desc("timestamp"), Query.limit(limit), Query.offset(offset)],
        )
        return ServeAttemptPage(
            serves=[ServeAttempt.from_document(doc) for doc in result.documents],
            total=result.total,
            limit=limit,
            offset=offset,
        )

    async def list_for_client(self, client_id: str) -> List[ServeAttempt]:
        """All serve attempts for one client, newest first."""
        result = await self.document_store.list(
            self.collection_id,
            [Query.equal("client_id", client_id), Query.order_desc("timestamp")],
        )
        records = [ServeAttempt.from_document(doc) for doc in result.documents]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def count(self) -> int:
        result = await self.document_store.list(self.collection_id, [Query.limit(1)])
        return result.total

    async def list_cached(self) -> List[CachedRecord]:
        return await self.cache.read(self.settings.cache_namespace)

    async def list_pending(self) -> List[CachedRecord]:
        return await self.cache.read(self.settings.pending_namespace)

    # ── Client lookups ────────────────────────────────────────────────────

    async def _client_document(self, client_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.document_store.get(self.settings.clients_collection_id, client_id)
        except NotFoundError:
            logger.warning("Client %s not found", client_id)
        except ServeTrackerError as e:
            logger.warning("Could not load client %s: %s", client_id, e.message)
        return None

    async def resolve_client_name(self, client_id: str, provided: Optional[str] = None) -> str:
        """Provided name unless blank or the placeholder; otherwise the client record's name."""
        if provided and provided.strip() and provided != UNKNOWN_CLIENT_NAME:
            return provided
        document = await self._client_document(client_id)
        if document and document.get("name"):
            return str(document["name"])
        return UNKNOWN_CLIENT_NAME

    async def client_email(self, client_id: str) -> Optional[str]:
        document = await self._client_document(client_id)
        return (document or {}).get("email") or None

    # ══════════════════════════════════════════════════════════════════════
    # Background work and reconciliation
    # ══════════════════════════════════════════════════════════════════════

    async def _notify_and_resync(self, request: Optional[EmailRequest]) -> Dict[str, Any]:
        """Notification first, then resync. Neither failure stops the other."""
        summary: Dict[str, Any] = {"notification": None, "sync": None}
        if request is not None:
            try:
                result = await self.notifications.dispatch(request)
                summary["notification"] = result.model_dump()
                if not result.success:
                    logger.error("Failed to send email: %s", result.message)
            except ServeTrackerError as e:
                logger.error("Error sending email notification: %s", e.message)
                summary["notification"] = {"success": False, "message": e.message}
            except Exception as e:
                logger.error("Unexpected error sending email notification: %s", str(e),
                             exc_info=True)
                summary["notification"] = {"success": False, "message": str(e)}

        report = await self.sync.sync()
        summary["sync"] = report.model_dump()
        return summary

    async def replay_pending(self) -> ReplayReport:
        """
        Re-create every locally queued record under its original id.

        Records that arrive (or are found to be there already) leave the
        pending list; the rest stay for the next attempt.
        """
        report = ReplayReport()
        for cached in await self.list_pending():
            attempt = cached.to_attempt()
            try:
                await self.document_store.create(
                    self.collection_id, attempt.id, attempt.to_document()
                )
                report.replayed.append(attempt.id)
            except DocumentConflictError:
                report.already_present.append(attempt.id)
            except ServeTrackerError as e:
                logger.warning("Replay of %s failed, keeping it queued: %s", attempt.id, e.message)
                report.remaining.append(attempt.id)
            except Exception as e:
                logger.error("Replay of %s failed unexpectedly, keeping it queued: %s",
                             attempt.id, str(e), exc_info=True)
                report.remaining.append(attempt.id)

        done = report.replayed + report.already_present
        if done:
            await self.cache.remove(self.settings.pending_namespace, done)
        logger.info(
            "Replayed %d queued record(s), %d already present, %d remaining",
            len(report.replayed), len(report.already_present), len(report.remaining),
        )
        return report

    async def reconcile(self) -> SyncRunResponse:
        """Replay queued records, then refresh the read cache."""
        replay = await self.replay_pending()
        report = await self.sync.sync()
        return SyncRunResponse(replay=replay, sync=report)

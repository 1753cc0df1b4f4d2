"""
Serve Tracker Backend — Notification Dispatcher
=================================================

What:  Sends a serve-attempt email with the evidence photo attached.
How:   Resolve the attachment through the AttachmentResolver chain, build
       the recipient list (explicit "to" plus the business oversight
       address, deduplicated case-insensitively), then try the transports
       in order until one acknowledges delivery.
Who:   ServeAttemptService's post-write task; POST /api/notifications.

Transport Fallback:
    ┌─────────────────────────┐  raises / status != completed
    │ FunctionMailTransport   │ ──────────────────────────────┐
    │ (serverless sendEmail)  │                               ▼
    └─────────────────────────┘                ┌────────────────────────────┐
                                               │ MessagingApiTransport      │
                                               │ POST /messaging/topics/... │
                                               └────────────────────────────┘
    Both failing → DispatchResult(success=False); never raised.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import httpx

from serve_tracker.clients.appwrite import AppwriteConnection
from serve_tracker.clients.base import MailExecutor
from serve_tracker.exceptions import NotificationError, ValidationError
from serve_tracker.schemas.notification import DispatchResult, EmailRequest
from serve_tracker.services.attachments import Attachment, AttachmentResolver

logger = logging.getLogger(__name__)


def build_recipients(to: Iterable[str], business_email: str) -> List[str]:
    """
    Explicit recipients plus the oversight address, first spelling kept.

    Deduplication is case-insensitive; order of first appearance is kept.
    """
    recipients: List[str] = []
    seen = set()
    for address in list(to) + [business_email]:
        address = (address or "").strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        recipients.append(address)
    return recipients


class MailTransport(Protocol):
    name: str

    async def send(
        self,
        request: EmailRequest,
        recipients: List[str],
        attachment: Optional[Attachment],
    ) -> Optional[str]:
        """Deliver or raise NotificationError. Returns a delivery id if known."""
        ...


class FunctionMailTransport:
    """Primary transport: the remote serverless mail function."""

    name = "function"

    def __init__(self, executor: MailExecutor, function_id: str):
        self.executor = executor
        self.function_id = function_id

    async def send(
        self,
        request: EmailRequest,
        recipients: List[str],
        attachment: Optional[Attachment],
    ) -> Optional[str]:
        payload: Dict[str, Any] = {
            "to": recipients,
            "subject": request.subject,
            "attachments": [attachment.to_payload()] if attachment else [],
            "metadata": request.metadata,
        }
        if request.html:
            payload["html"] = request.html
        if request.text:
            payload["text"] = request.text

        execution = await self.executor.invoke(self.function_id, payload)
        if execution.get("status") != "completed":
            raise NotificationError(
                message="Email function execution did not complete",
                transport=self.name,
                context={"status": execution.get("status"), "execution_id": execution.get("id")},
            )
        return execution.get("id")


class MessagingApiTransport:
    """Fallback transport: direct call to the messaging topic subscribers endpoint."""

    name = "messaging_api"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        connection: AppwriteConnection,
        provider_id: str,
        topic_id: str,
    ):
        self.http = http_client
        self.connection = connection
        self.provider_id = provider_id
        self.topic_id = topic_id

    def build_message(
        self,
        request: EmailRequest,
        recipients: List[str],
        attachment: Optional[Attachment],
    ) -> Dict[str, Any]:
        content: Dict[str, Any] = {
            "subject": request.subject,
            "html": request.html or request.text or "",
        }
        if attachment:
            content["attachments"] = [{
                "content": attachment.to_base64(),
                "filename": attachment.filename,
                "disposition": "attachment",
            }]
        return {
            "userId": "unique",
            "providerType": "smtp",
            "providerId": self.provider_id,
            "targetId": ", ".join(recipients),
            "content": content,
            "metadata": request.metadata,
        }

    async def send(
        self,
        request: EmailRequest,
        recipients: List[str],
        attachment: Optional[Attachment],
    ) -> Optional[str]:
        url = self.connection.url(f"messaging/topics/{self.topic_id}/subscribers")
        try:
            response = await self.http.post(
                url,
                headers=self.connection.headers(),
                json=self.build_message(request, recipients, attachment),
            )
        except httpx.HTTPError as e:
            raise NotificationError(
                message="Messaging API could not be reached",
                transport=self.name,
                context={"error": str(e)},
            ) from e
        if response.is_error:
            try:
                detail = response.json().get("message") or response.reason_phrase
            except ValueError:
                detail = response.reason_phrase
            raise NotificationError(
                message=f"Failed to send message: {detail}",
                transport=self.name,
                context={"status_code": response.status_code},
            )
        try:
            return response.json().get("$id")
        except ValueError:
            return None


class NotificationService:
    """
    Dispatches one email per call through the first working transport.

    `dispatch()` raises only ValidationError (missing to/subject/body);
    every delivery problem becomes a failed DispatchResult.
    """

    def __init__(
        self,
        resolver: AttachmentResolver,
        transports: Sequence[MailTransport],
        business_email: str,
    ):
        self.resolver = resolver
        self.transports = list(transports)
        self.business_email = business_email

    @staticmethod
    def validate(request: EmailRequest) -> None:
        if not request.to:
            raise ValidationError("Missing required field: to", field="to")
        if not request.subject:
            raise ValidationError("Missing required field: subject", field="subject")
        if not request.html and not request.text:
            raise ValidationError("Either html or text is required", field="html")

    async def dispatch(self, request: EmailRequest) -> DispatchResult:
        self.validate(request)
        recipients = build_recipients(request.to, self.business_email)
        attachment = await self.resolver.resolve(request)

        logger.info(
            "Dispatching '%s' to %d recipient(s), attachment=%s",
            request.subject, len(recipients), attachment.source if attachment else None,
        )

        failures: List[str] = []
        for transport in self.transports:
            try:
                delivery_id = await transport.send(request, recipients, attachment)
            except NotificationError as e:
                logger.warning("Mail transport '%s' failed: %s | Context: %s",
                               transport.name, e.message, e.context)
                failures.append(f"{transport.name}: {e.message}")
                continue
            except Exception as e:
                logger.error("Mail transport '%s' raised unexpectedly: %s",
                             transport.name, str(e), exc_info=True)
                failures.append(f"{transport.name}: {type(e).__name__}: {e}")
                continue
            logger.info("Email sent via %s (id=%s)", transport.name, delivery_id)
            return DispatchResult(
                success=True,
                message="Email sent successfully",
                transport=transport.name,
                recipients=recipients,
                attachment_source=attachment.source if attachment else None,
                execution_id=delivery_id,
            )

        error = NotificationError(
            message="All mail transports failed",
            context={"failures": failures, "subject": request.subject},
        )
        logger.error("%s | Context: %s", error.message, error.context)
        return DispatchResult(
            success=False,
            message="; ".join(failures) or error.message,
            recipients=recipients,
            attachment_source=attachment.source if attachment else None,
        )

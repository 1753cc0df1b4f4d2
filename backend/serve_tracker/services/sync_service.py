"""
Serve Tracker Backend — Sync / Cache Reconciler
=================================================

What:  Mirrors the most recent remote serve attempts into the local read cache.
How:   One list call (newest first, limited), every document mapped through
       ServeAttempt.from_document() so optional fields are defaulted, then
       the read-cache namespace is replaced wholesale.
Who:   POST /api/sync, and the post-write background task after every
       successful create/update.

Size Cap:
    If the serialized cache would exceed `size_limit_bytes`, the legacy
    inline image is stripped from every entry before writing. URLs stay.
    This is the only eviction policy; there is no incremental merge.

Failure Model:
    Any remote read error leaves the previous cache untouched, emits no
    event and returns SyncReport(success=False).
"""

import logging
from typing import Awaitable, Callable, List, Union

from serve_tracker.clients.base import DocumentStore, Query
from serve_tracker.exceptions import ServeTrackerError
from serve_tracker.schemas.serve_attempt import CachedRecord, ServeAttempt, SyncReport
from serve_tracker.services.local_cache import LocalCache, serialize_records

logger = logging.getLogger(__name__)

CACHE_UPDATED_EVENT = "serves-updated"

CacheListener = Callable[[str, int], Union[None, Awaitable[None]]]


def payload_size(records: List[CachedRecord]) -> int:
    return len(serialize_records(records).encode("utf-8"))


def strip_legacy_images(records: List[CachedRecord]) -> List[CachedRecord]:
    return [record.model_copy(update={"image_data": None}) for record in records]


class SyncService:
    def __init__(
        self,
        document_store: DocumentStore,
        cache: LocalCache,
        collection_id: str,
        namespace: str,
        limit: int = 100,
        size_limit_bytes: int = 5 * 1024 * 1024,
    ):
        self.document_store = document_store
        self.cache = cache
        self.collection_id = collection_id
        self.namespace = namespace
        self.limit = limit
        self.size_limit_bytes = size_limit_bytes
        self._listeners: List[CacheListener] = []

    def add_listener(self, listener: CacheListener) -> None:
        """Register a callback `(event_name, record_count)` fired after each cache write."""
        self._listeners.append(listener)

    def remove_listener(self, listener: CacheListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def sync(self) -> SyncReport:
        try:
            result = await self.document_store.list(
                self.collection_id,
                [Query.order_desc("timestamp"), Query.limit(self.limit)],
            )
        except ServeTrackerError as e:
            logger.error("Sync failed, keeping previous cache: %s | Context: %s",
                         e.message, e.context)
            return SyncReport(success=False, message=e.message)
        except Exception as e:
            logger.error("Sync failed unexpectedly, keeping previous cache: %s", str(e),
                         exc_info=True)
            return SyncReport(success=False, message=f"{type(e).__name__}: {e}")

        if not result.documents:
            logger.info("Sync found no remote serve attempts; cache left as is")
            return SyncReport(success=False, message="No serve attempts found remotely")

        records = [
            CachedRecord.from_attempt(ServeAttempt.from_document(document))
            for document in result.documents
        ]
        return await self.write_cache(records)

    async def write_cache(self, records: List[CachedRecord]) -> SyncReport:
        """Apply the size cap, replace the read cache and notify listeners."""
        stripped = False
        size = payload_size(records)
        if size > self.size_limit_bytes:
            logger.warning(
                "Cache payload %d bytes exceeds %d; stripping legacy inline images",
                size, self.size_limit_bytes,
            )
            records = strip_legacy_images(records)
            stripped = True

        try:
            size = await self.cache.replace(self.namespace, records)
        except ServeTrackerError as e:
            logger.error("Local cache write failed: %s", e.message)
            return SyncReport(success=False, message=e.message)

        logger.info("Synced %d serve attempts to local cache (%d bytes)", len(records), size)
        await self._emit(len(records))
        return SyncReport(
            success=True,
            count=len(records),
            size_bytes=size,
            stripped_legacy_images=stripped,
            message=f"Synced {len(records)} serve attempts",
        )

    async def _emit(self, count: int) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(CACHE_UPDATED_EVENT, count)
                if outcome is not None:
                    await outcome
            except Exception as e:
                logger.warning("Cache listener raised: %s", str(e), exc_info=True)

"""
Serve Tracker Backend — Local Durable Cache
=============================================

What:  Namespaced key-value persistence holding JSON arrays of CachedRecord.
How:   One `cache_entries` row per namespace in a local SQLAlchemy database
       (aiosqlite by default). Every read-modify-write runs under a single
       asyncio.Lock so concurrent submissions never interleave partial
       overwrites with the reconciler's wholesale replace.
Who:   The persistence fallback appends to the pending namespace; the
       reconciler replaces the read-cache namespace; routes read both.

Namespaces:
    serve-tracker-serves   ← replaced wholesale by SyncService
    serve-tracker-pending  ← appended by ServeAttemptService on remote failure,
                             pruned by replay_pending()
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serve_tracker.exceptions import PersistenceError
from serve_tracker.models.cache_entry import CacheEntry
from serve_tracker.schemas.serve_attempt import CachedRecord

logger = logging.getLogger(__name__)


def serialize_records(records: Iterable[CachedRecord]) -> str:
    """Compact JSON array of records, as stored (and as measured for size)."""
    return json.dumps(
        [record.to_cache_dict() for record in records],
        separators=(",", ":"),
    )


class LocalCache:
    """
    Async access to the local durable cache.

    Raises PersistenceError when the local database itself fails; callers
    on the submission path catch it, since a failed fallback write must not
    fail the submission.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._lock = asyncio.Lock()

    # ── Reads ─────────────────────────────────────────────────────────────

    async def read(self, namespace: str) -> List[CachedRecord]:
        """Records stored under `namespace`; an absent namespace is empty."""
        try:
            async with self.session_factory() as session:
                entry = await session.get(CacheEntry, namespace)
        except SQLAlchemyError as e:
            raise PersistenceError(
                message="Local cache could not be read",
                context={"namespace": namespace, "error": str(e)},
            ) from e
        if entry is None:
            return []
        return self._decode(namespace, entry.payload)

    async def namespaces(self) -> List[str]:
        async with self.session_factory() as session:
            result = await session.execute(select(CacheEntry.namespace))
            return list(result.scalars().all())

    # ── Writes ────────────────────────────────────────────────────────────

    async def replace(self, namespace: str, records: List[CachedRecord]) -> int:
        """
        Overwrite `namespace` with exactly `records`.

        Returns:
            Serialized payload size in bytes.
        """
        payload = serialize_records(records)
        async with self._lock:
            await self._write(namespace, payload)
        return len(payload.encode("utf-8"))

    async def append(self, namespace: str, record: CachedRecord) -> int:
        """
        Append one record, replacing an existing entry with the same id.

        Returns:
            Number of records now stored under `namespace`.
        """
        async with self._lock:
            records = [r for r in await self.read(namespace) if r.id != record.id]
            records.append(record)
            await self._write(namespace, serialize_records(records))
        logger.info("Queued record %s in local namespace '%s' (%d total)",
                    record.id, namespace, len(records))
        return len(records)

    async def remove(self, namespace: str, record_ids: Iterable[str]) -> int:
        """Drop records by id. Returns how many were removed."""
        doomed = set(record_ids)
        if not doomed:
            return 0
        async with self._lock:
            records = await self.read(namespace)
            kept = [r for r in records if r.id not in doomed]
            if len(kept) != len(records):
                await self._write(namespace, serialize_records(kept))
        return len(records) - len(kept)

    async def clear(self, namespace: str) -> None:
        async with self._lock:
            await self._write(namespace, "[]")

    async def ping(self) -> bool:
        """True when the cache database answers a trivial query."""
        try:
            await self.namespaces()
        except SQLAlchemyError as e:
            logger.warning("Local cache health check failed: %s", str(e))
            return False
        return True

    # ── Internals ─────────────────────────────────────────────────────────

    async def _write(self, namespace: str, payload: str) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    entry = await session.get(CacheEntry, namespace)
                    if entry is None:
                        session.add(CacheEntry(namespace=namespace, payload=payload))
                    else:
                        entry.payload = payload
                        entry.updated_at = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            raise PersistenceError(
                message="Local cache could not be written",
                context={"namespace": namespace, "error": str(e)},
            ) from e

    @staticmethod
    def _decode(namespace: str, payload: str) -> List[CachedRecord]:
        try:
            items = json.loads(payload or "[]")
        except json.JSONDecodeError:
            logger.error("Local cache namespace '%s' holds invalid JSON; treating as empty",
                         namespace)
            return []
        records = []
        for item in items:
            try:
                records.append(CachedRecord.model_validate(item))
            except ValueError as e:
                logger.warning("Skipping unreadable cache entry in '%s': %s", namespace, str(e))
        return records

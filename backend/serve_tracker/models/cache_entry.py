"""
Serve Tracker Backend — Cache Entry SQLAlchemy Model
======================================================

What:  ORM model for the `cache_entries` key-value table.
How:   One row per namespace; the payload is the JSON array of cached
       serve attempts for that namespace, replaced or appended as a whole.
Who:   Read and written only by LocalCache.

Namespaces in use:
    serve-tracker-serves   → read cache mirrored from the remote store
    serve-tracker-pending  → submissions whose remote write failed
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from serve_tracker.database import Base


class CacheEntry(Base):
    """A namespaced JSON document in the local durable cache."""

    __tablename__ = "cache_entries"

    namespace: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Fixed namespace string, e.g. serve-tracker-serves",
    )

    # JSON array of CachedRecord objects, serialized with camelCase keys
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="[]",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<CacheEntry(namespace='{self.namespace}', "
            f"bytes={len(self.payload or '')}, updated_at='{self.updated_at}')>"
        )

"""
Serve Tracker Backend — Evidence Upload Coordinator
=====================================================

What:  Uploads a serve attempt's photograph as a full image and a thumbnail.
How:   Two independent uploads into two buckets, issued concurrently. Each
       one generates its own object id and a public URL derived from the
       bucket id, object id and project id.
Who:   Called by ServeAttemptService.submit() before the record is written;
       delete_evidence() is called when a record is deleted.

Failure Isolation:
    ┌────────────────────┐      ┌────────────────────┐
    │ full image upload  │      │ thumbnail upload   │
    │ (evidence bucket)  │      │ (thumbnail bucket) │
    └─────────┬──────────┘      └─────────┬──────────┘
              │ fails → url/id None       │ fails → url/id None
              └─────────────┬─────────────┘
                            ▼
                  EvidenceRefs (never raises)

    Evidence is best-effort relative to record durability: the record is
    written whichever of the uploads succeeded.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from serve_tracker.clients.base import ObjectStore
from serve_tracker.config import Settings
from serve_tracker.exceptions import MediaDecodeError, ServeTrackerError
from serve_tracker.services.media_service import (
    MediaService,
    decode_image_payload,
    detect_content_type,
)

logger = logging.getLogger(__name__)


def new_object_id() -> str:
    """Opaque 32-char hex id accepted as a document or object id."""
    return uuid.uuid4().hex


def object_id_from_url(url: Optional[str], bucket_id: str) -> Optional[str]:
    """
    Recover the object id from a public URL built by `Settings.public_file_url`.

    Returns None when the URL does not point into `bucket_id`.
    """
    if not url:
        return None
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    try:
        index = segments.index("buckets")
    except ValueError:
        return None
    if len(segments) < index + 4:
        return None
    if segments[index + 1] != bucket_id or segments[index + 2] != "files":
        return None
    return segments[index + 3]


@dataclass
class EvidenceRefs:
    """URL and object id of each uploaded evidence object (None if absent)."""

    image_url: Optional[str] = None
    image_file_id: Optional[str] = None
    thumbnail_url: Optional[str] = None
    thumbnail_file_id: Optional[str] = None

    @property
    def has_thumbnail(self) -> bool:
        return bool(self.thumbnail_url and self.thumbnail_file_id)


class EvidenceService:
    """Coordinates the full-image and thumbnail uploads for one submission."""

    def __init__(
        self,
        object_store: ObjectStore,
        media: MediaService,
        settings: Settings,
    ):
        self.object_store = object_store
        self.media = media
        self.settings = settings

    async def upload_evidence(self, image_payload: Optional[str], document_id: str) -> EvidenceRefs:
        """
        Upload the full image and its thumbnail; never raises.

        Args:
            image_payload: base64 photograph (data-URL prefix optional).
            document_id: id of the record the evidence belongs to (logging).

        Returns:
            EvidenceRefs with whatever succeeded.
        """
        refs = EvidenceRefs()
        if not image_payload:
            return refs
        try:
            data = decode_image_payload(image_payload)
        except MediaDecodeError as e:
            logger.error("Evidence for %s not uploaded: %s", document_id, e.message)
            return refs

        full_result, thumb_result = await asyncio.gather(
            self._upload_full_image(data, document_id),
            self._upload_thumbnail(data, document_id),
        )
        refs.image_url, refs.image_file_id = full_result
        refs.thumbnail_url, refs.thumbnail_file_id = thumb_result

        logger.info(
            "Evidence for %s: full=%s thumbnail=%s",
            document_id,
            "uploaded" if refs.image_url else "missing",
            "uploaded" if refs.has_thumbnail else "missing",
        )
        return refs

    async def _upload_full_image(
        self, data: bytes, document_id: str
    ) -> Tuple[Optional[str], Optional[str]]:
        bucket_id = self.settings.evidence_bucket_id
        try:
            object_id = new_object_id()
            result = await self.object_store.put_object(
                bucket_id, object_id, data, detect_content_type(data)
            )
            stored_id = result.get("id") or object_id
            return self.settings.public_file_url(bucket_id, stored_id), stored_id
        except ServeTrackerError as e:
            logger.error(
                "Full image upload failed for %s: %s | Context: %s",
                document_id, e.message, e.context,
            )
        except Exception as e:
            logger.error("Full image upload failed for %s: %s", document_id, str(e), exc_info=True)
        return None, None

    async def _upload_thumbnail(
        self, data: bytes, document_id: str
    ) -> Tuple[Optional[str], Optional[str]]:
        bucket_id = self.settings.thumbnail_bucket_id
        try:
            # Pillow work is CPU-bound; keep it off the event loop
            thumbnail = await asyncio.to_thread(self.media.thumbnail_if_suitable, data)
            if thumbnail is None:
                logger.warning("Skipping thumbnail for %s: image not suitable for thumbnailing", document_id)
                return None, None
            object_id = new_object_id()
            result = await self.object_store.put_object(
                bucket_id, object_id, thumbnail, self.media.options.content_type
            )
            stored_id = result.get("id") or object_id
            return self.settings.public_file_url(bucket_id, stored_id), stored_id
        except ServeTrackerError as e:
            logger.warning(
                "Thumbnail upload failed for %s, continuing without it: %s",
                document_id, e.message,
            )
        except Exception as e:
            logger.warning("Thumbnail upload failed for %s: %s", document_id, str(e), exc_info=True)
        return None, None

    async def delete_evidence(
        self,
        image_url: Optional[str] = None,
        image_file_id: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        thumbnail_file_id: Optional[str] = None,
    ) -> int:
        """
        Delete owned evidence objects, best-effort. Returns how many were removed.

        Object ids come from the stored file-id fields, or are parsed back
        out of the public URLs when only the URL was stored.
        """
        targets = [
            (self.settings.evidence_bucket_id,
             image_file_id or object_id_from_url(image_url, self.settings.evidence_bucket_id)),
            (self.settings.thumbnail_bucket_id,
             thumbnail_file_id or object_id_from_url(thumbnail_url, self.settings.thumbnail_bucket_id)),
        ]
        removed = 0
        for bucket_id, object_id in targets:
            if not object_id:
                continue
            try:
                await self.object_store.delete_object(bucket_id, object_id)
                removed += 1
            except ServeTrackerError as e:
                logger.warning(
                    "Could not delete evidence object %s from %s: %s",
                    object_id, bucket_id, e.message,
                )
        return removed

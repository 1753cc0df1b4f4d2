"""
Serve Tracker Backend — Attachment Source Resolution
======================================================

What:  Finds the photograph to attach to a notification email.
How:   An ordered chain of sources. Each source either returns an
       Attachment or None; a source that fails logs the cause and yields
       None, and the resolver moves on to the next one.
Who:   NotificationService.dispatch().

Priority Chain:
    ┌───────────────────┐   None   ┌────────────────────┐   None   ┌─────────────────┐
    │ UrlAttachment     │ ───────▶ │ RecordAttachment   │ ───────▶ │ InlineAttachment│ ──▶ no attachment
    │ image_url http(s) │          │ serve_id → record  │          │ legacy base64   │
    └───────────────────┘          │  url, else inline  │          └─────────────────┘
                                   └────────────────────┘

    Sending without an attachment is a normal outcome, not an error.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from serve_tracker.clients.base import DocumentStore
from serve_tracker.exceptions import MediaDecodeError, ServeTrackerError
from serve_tracker.schemas.notification import EmailRequest
from serve_tracker.services.media_service import decode_image_payload, detect_content_type

logger = logging.getLogger(__name__)

EVIDENCE_FILENAME = "serve_evidence.jpeg"


def is_http_url(value: Optional[str]) -> bool:
    return bool(value) and value.lower().startswith(("http://", "https://"))


@dataclass
class Attachment:
    content: bytes
    source: str
    filename: str = EVIDENCE_FILENAME
    content_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")

    def to_payload(self) -> dict:
        """Attachment part as sent to either mail transport."""
        return {
            "content": self.to_base64(),
            "filename": self.filename,
            "encoding": "base64",
            "contentType": self.content_type,
            "disposition": "attachment",
        }


class AttachmentSource(Protocol):
    name: str

    async def resolve(self, request: EmailRequest) -> Optional[Attachment]: ...


class ImageDownloader:
    """
    Eager HTTP download of an evidence image.

    Transport errors are retried with exponential backoff and jitter;
    a non-2xx answer is final.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        max_attempts: int = 3,
        min_wait: float = 1,
        max_wait: float = 10,
    ):
        self.http = http_client
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    async def download(self, url: str) -> Optional[bytes]:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential_jitter(initial=self.min_wait, max=self.max_wait),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self.http.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.error("Error downloading image from %s: %s", url, str(e))
            return None

        if response.is_error:
            logger.error("Failed to download image from %s: %d %s",
                         url, response.status_code, response.reason_phrase)
            return None
        if not response.content:
            logger.warning("Image download from %s returned no content", url)
            return None
        logger.info("Image downloaded from %s (%d bytes)", url, len(response.content))
        return response.content


def _from_bytes(data: bytes, source: str) -> Attachment:
    return Attachment(content=data, source=source, content_type=detect_content_type(data))


def _from_inline(payload: str, source: str) -> Optional[Attachment]:
    try:
        data = decode_image_payload(payload)
    except MediaDecodeError as e:
        logger.warning("Inline image could not be decoded (%s): %s", source, e.message)
        return None
    return _from_bytes(data, source)


class UrlAttachmentSource:
    """Explicit http(s) image URL on the request."""

    name = "url"

    def __init__(self, downloader: ImageDownloader):
        self.downloader = downloader

    async def resolve(self, request: EmailRequest) -> Optional[Attachment]:
        if not is_http_url(request.image_url):
            return None
        data = await self.downloader.download(request.image_url)
        return _from_bytes(data, self.name) if data else None


class RecordAttachmentSource:
    """
    Cross-referenced serve attempt: its URL first, then its legacy inline image.
    """

    name = "record"

    def __init__(
        self,
        document_store: DocumentStore,
        collection_id: str,
        downloader: ImageDownloader,
    ):
        self.document_store = document_store
        self.collection_id = collection_id
        self.downloader = downloader

    async def resolve(self, request: EmailRequest) -> Optional[Attachment]:
        if not request.serve_id:
            return None
        try:
            document = await self.document_store.get(self.collection_id, request.serve_id)
        except ServeTrackerError as e:
            logger.error("Failed to fetch serve attempt %s for attachment: %s",
                         request.serve_id, e.message)
            return None

        image_url = document.get("image_url")
        if image_url and image_url == request.image_url:
            # Same URL the url source already failed on
            logger.info("Serve attempt %s points at the request's image URL, not downloading again",
                        request.serve_id)
        elif is_http_url(image_url):
            data = await self.downloader.download(image_url)
            if data:
                return _from_bytes(data, "record_url")
            logger.warning("Falling back to inline image for serve attempt %s", request.serve_id)

        if document.get("image_data"):
            return _from_inline(document["image_data"], "record_inline")

        logger.info("Serve attempt %s has no image_url or image_data", request.serve_id)
        return None


class InlineAttachmentSource:
    """Legacy base64 image carried directly on the request."""

    name = "inline"

    async def resolve(self, request: EmailRequest) -> Optional[Attachment]:
        if not request.image_data:
            return None
        return _from_inline(request.image_data, self.name)


class AttachmentResolver:
    """First successful source wins."""

    def __init__(self, sources: Sequence[AttachmentSource]):
        self.sources = list(sources)

    async def resolve(self, request: EmailRequest) -> Optional[Attachment]:
        for source in self.sources:
            try:
                attachment = await source.resolve(request)
            except Exception as e:
                logger.error("Attachment source '%s' failed: %s", source.name, str(e),
                             exc_info=True)
                continue
            if attachment is not None:
                return attachment
        logger.info("No imageUrl, serveId, or imageData resolved; sending without attachment")
        return None

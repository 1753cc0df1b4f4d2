"""
Serve Tracker Backend — Media Preparation Service
===================================================

What:  Decodes inbound photograph payloads and produces size-capped thumbnails.
How:   Base64 text (optionally prefixed with a `data:image/...;base64,`
       marker) is stripped and decoded; Pillow opens the bytes, downscales
       with the aspect ratio preserved and re-encodes.
Who:   Called by EvidenceService before the two uploads, and by the
       notification dispatcher for legacy inline attachments.

Failure Model:
    Malformed base64 or an unreadable image raises MediaDecodeError. The
    caller decides what that costs: the evidence coordinator drops only
    the affected upload and the record is still written.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from serve_tracker.exceptions import MediaDecodeError

logger = logging.getLogger(__name__)

DATA_URL_MARKER = "base64,"

# Pillow format name → MIME type for formats we upload
FORMAT_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def strip_data_url_prefix(payload: str) -> str:
    """
    Return the raw base64 part of an image payload.

    Everything up to and including the first `base64,` marker is dropped;
    a payload without the marker is returned unchanged. Applying it twice
    gives the same result as applying it once.
    """
    if DATA_URL_MARKER in payload:
        return payload.split(DATA_URL_MARKER, 1)[1]
    return payload


def decode_image_payload(payload: Optional[str]) -> bytes:
    """
    Decode a (possibly data-URL-prefixed) base64 image payload to bytes.

    Raises:
        MediaDecodeError: empty payload or invalid base64.
    """
    if not payload:
        raise MediaDecodeError("Image payload is empty")

    raw = "".join(strip_data_url_prefix(payload).split())
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaDecodeError(
            message="Image payload is not valid base64",
            context={"length": len(raw), "error": str(e)},
        ) from e
    if not data:
        raise MediaDecodeError("Image payload decoded to zero bytes")
    return data


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise MediaDecodeError(
            message="Image bytes could not be read",
            context={"bytes": len(data), "error": str(e)},
        ) from e
    return image


def detect_content_type(data: bytes, default: str = "image/jpeg") -> str:
    """MIME type of encoded image bytes, sniffed by Pillow; `default` if unknown."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return FORMAT_CONTENT_TYPES.get(image.format or "", default)
    except (UnidentifiedImageError, OSError):
        return default


def scaled_dimensions(
    width: int, height: int, max_width: int, max_height: int
) -> Tuple[int, int]:
    """
    Target size that fits inside max_width × max_height, aspect preserved.

    The scale factor comes from the binding dimension (width when the image
    is wider than tall, height otherwise). If the other dimension still
    overflows its bound the factor is tightened to it. Images already
    within bounds are never enlarged.
    """
    if width <= 0 or height <= 0:
        raise MediaDecodeError(
            message="Image has no pixels",
            context={"width": width, "height": height},
        )

    if width > height:
        scale = min(1.0, max_width / width)
    else:
        scale = min(1.0, max_height / height)

    if height * scale > max_height:
        scale = max_height / height
    if width * scale > max_width:
        scale = max_width / width

    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


@dataclass(frozen=True)
class ThumbnailOptions:
    max_width: int = 400
    max_height: int = 300
    quality: float = 0.8
    format: str = "JPEG"

    @property
    def content_type(self) -> str:
        return FORMAT_CONTENT_TYPES.get(self.format, "image/jpeg")

    @property
    def extension(self) -> str:
        return "jpg" if self.format == "JPEG" else self.format.lower()


class MediaService:
    """
    Thumbnail generation with configured defaults.

    Instances are stateless apart from their options, so one is shared
    across all requests.
    """

    def __init__(
        self,
        options: Optional[ThumbnailOptions] = None,
        max_dimension: int = 4096,
    ):
        self.options = options or ThumbnailOptions()
        self.max_dimension = max_dimension

    def generate_thumbnail(
        self,
        payload: str,
        options: Optional[ThumbnailOptions] = None,
    ) -> bytes:
        """
        Produce a re-encoded thumbnail from a base64 image payload.

        Args:
            payload: base64 text, data-URL prefix optional.
            options: per-call override of size, quality and format.

        Returns:
            Encoded thumbnail bytes in `options.format`.

        Raises:
            MediaDecodeError: payload is not base64 or not an image.
        """
        return self.thumbnail_from_bytes(decode_image_payload(payload), options)

    def thumbnail_from_bytes(
        self,
        data: bytes,
        options: Optional[ThumbnailOptions] = None,
    ) -> bytes:
        return self._render(_open_image(data), options or self.options)

    def thumbnail_if_suitable(
        self,
        data: bytes,
        options: Optional[ThumbnailOptions] = None,
    ) -> Optional[bytes]:
        """
        Thumbnail from raw image bytes, decoding them once.

        Returns None when the bytes are not a readable image or a side
        exceeds max_dimension.
        """
        try:
            image = _open_image(data)
        except MediaDecodeError as e:
            logger.warning("Not thumbnailing unreadable image: %s", e.message)
            return None
        if not self._fits(image):
            logger.warning("Not thumbnailing %dx%d image (limit %d)",
                           image.size[0], image.size[1], self.max_dimension)
            return None
        return self._render(image, options or self.options)

    def _fits(self, image: Image.Image) -> bool:
        width, height = image.size
        return 0 < width <= self.max_dimension and 0 < height <= self.max_dimension

    def _render(self, image: Image.Image, opts: ThumbnailOptions) -> bytes:
        width, height = image.size
        target = scaled_dimensions(width, height, opts.max_width, opts.max_height)

        if target != (width, height):
            image = image.resize(target, Image.LANCZOS)

        # JPEG has no alpha channel or palette
        if opts.format == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        buffer = io.BytesIO()
        save_kwargs = {"format": opts.format}
        if opts.format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = max(1, min(95, int(round(opts.quality * 100))))
        image.save(buffer, **save_kwargs)
        thumbnail = buffer.getvalue()

        logger.debug(
            "Thumbnail generated: %dx%d → %dx%d (%d bytes, %s)",
            width, height, target[0], target[1], len(thumbnail), opts.format,
        )
        return thumbnail

    def validate_image_for_thumbnail(self, payload: str) -> bool:
        """
        Advisory check: both dimensions positive and within max_dimension.

        Never raises; an undecodable payload is simply not valid.
        """
        try:
            image = _open_image(decode_image_payload(payload))
        except MediaDecodeError:
            return False
        return self._fits(image)

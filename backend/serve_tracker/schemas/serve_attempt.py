"""
Serve Tracker Backend — Serve Attempt Schemas
===============================================

What:  The canonical ServeAttempt record plus the adapters at each boundary.
How:   Inbound payloads accept both snake_case and camelCase spellings
       (older producers send `clientId`, newer ones `client_id`); everything
       is normalized into `ServeAttempt` right away. Outbound, the record is
       rendered either as the document-store wire shape (`to_document`) or
       as a CachedRecord for the local cache (camelCase JSON).
Who:   Services work only with `ServeAttempt`; routes and clients use the
       adapters.

Boundary Map:
    ServeAttemptSubmission ──┐
    document-store dict ─────┼──▶ ServeAttempt ──┬──▶ to_document() (wire)
    CachedRecord ────────────┘                   └──▶ CachedRecord (cache JSON)
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ── Sentinels ─────────────────────────────────────────────────────────────
UNKNOWN_CLIENT_ID = "unknown"
UNKNOWN_CLIENT_NAME = "Unknown Client"
UNKNOWN_CASE_NUMBER = "Unknown"
UNSPECIFIED_CASE_NUMBER = "Not Specified"
UNKNOWN_CASE_NAME = "Unknown Case"
ZERO_COORDINATES = "0,0"

# Fields a stored serve attempt may change after creation, as persisted
MUTABLE_FIELDS = ("notes", "status", "case_number", "case_name")


class ServeStatus(str, Enum):
    """Outcome of a serve attempt."""

    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


def coerce_status(value: Any) -> ServeStatus:
    """Maps any stored or submitted status onto the enumeration (else `unknown`)."""
    if isinstance(value, ServeStatus):
        return value
    try:
        return ServeStatus(str(value).strip().lower())
    except ValueError:
        return ServeStatus.UNKNOWN


class CoordinatePair(BaseModel):
    """Structured latitude/longitude as sent by the device's geolocation API."""

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lon", "lng"))


def _valid_degrees(lat: float, lon: float) -> bool:
    return (
        math.isfinite(lat)
        and math.isfinite(lon)
        and -90.0 <= lat <= 90.0
        and -180.0 <= lon <= 180.0
    )


def _degree_text(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return repr(float(value))


def normalize_coordinates(value: Any) -> str:
    """
    Normalize any accepted coordinate form into the stored `"lat,lon"` string.

    Accepts `"lat,lon"` strings (whitespace tolerated), CoordinatePair
    instances, dicts with latitude/longitude (or lat/lon) keys, and 2-item
    sequences. Anything missing, malformed or out of range becomes `"0,0"`.
    """
    if value is None:
        return ZERO_COORDINATES

    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
        if len(parts) != 2 or not all(parts):
            return ZERO_COORDINATES
        try:
            lat, lon = float(parts[0]), float(parts[1])
        except ValueError:
            return ZERO_COORDINATES
        if not _valid_degrees(lat, lon):
            return ZERO_COORDINATES
        return f"{parts[0]},{parts[1]}"

    if isinstance(value, CoordinatePair):
        raw_lat, raw_lon = value.latitude, value.longitude
    elif isinstance(value, dict):
        raw_lat = value.get("latitude", value.get("lat"))
        raw_lon = value.get("longitude", value.get("lon", value.get("lng")))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        raw_lat, raw_lon = value
    else:
        return ZERO_COORDINATES

    if isinstance(raw_lat, bool) or isinstance(raw_lon, bool):
        return ZERO_COORDINATES
    try:
        lat, lon = float(raw_lat), float(raw_lon)
    except (TypeError, ValueError):
        return ZERO_COORDINATES
    if not _valid_degrees(lat, lon):
        return ZERO_COORDINATES
    return f"{_degree_text(raw_lat)},{_degree_text(raw_lon)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Inbound: field submissions and edits
# ══════════════════════════════════════════════════════════════════════════


class ServeAttemptSubmission(BaseModel):
    """
    What:  A field agent's serve-attempt submission, as received.
    Who:   POST /api/serve-attempts body; ServeAttemptService.submit() input.

    `image_data` is the photograph as base64 text, with or without a
    `data:image/...;base64,` prefix. It is uploaded to the object store and
    never written to the record itself.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, description="Caller-chosen record id")
    client_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("client_id", "clientId")
    )
    client_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("client_name", "clientName")
    )
    client_email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("client_email", "clientEmail")
    )
    case_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("case_number", "caseNumber")
    )
    case_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("case_name", "caseName")
    )
    status: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[str] = None
    service_address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("service_address", "serviceAddress")
    )
    coordinates: Union[str, CoordinatePair, Dict[str, Any], None] = None
    timestamp: Optional[datetime] = None
    attempt_number: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("attempt_number", "attemptNumber")
    )
    image_data: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image_data", "imageData"),
        description="Photograph as base64 text (data-URL prefix optional)",
    )


class ServeAttemptUpdate(BaseModel):
    """
    What:  A partial edit of a stored serve attempt.
    How:   Only the four mutable fields are accepted; `None` means untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = None
    status: Optional[ServeStatus] = None
    case_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("case_number", "caseNumber")
    )
    case_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("case_name", "caseName")
    )

    def diff(self, original: "ServeAttempt") -> Dict[str, Any]:
        """
        Wire-named fields whose requested value differs from `original`.

        An empty dict means the update is a no-op.
        """
        changes: Dict[str, Any] = {}
        for name in MUTABLE_FIELDS:
            requested = getattr(self, name)
            if requested is None:
                continue
            if isinstance(requested, ServeStatus):
                requested = requested.value
            current = getattr(original, name)
            if isinstance(current, ServeStatus):
                current = current.value
            if requested != current:
                changes[name] = requested
        return changes


# ══════════════════════════════════════════════════════════════════════════
# Canonical record
# ══════════════════════════════════════════════════════════════════════════


class ServeAttempt(BaseModel):
    """
    The canonical in-memory serve attempt.

    Invariants:
        - `coordinates` is always a `"lat,lon"` string (`"0,0"` if unknown).
        - `image_data` is read-only legacy evidence; `to_document()` never
          writes it, so new records reference evidence by URL only.
        - `client_email` is carried in memory for notification and is not
          part of the stored document.
        - `created_at` is assigned by the remote store; it is None for a
          record that has only been queued locally.
    """

    id: str
    client_id: str = UNKNOWN_CLIENT_ID
    client_name: str = UNKNOWN_CLIENT_NAME
    case_number: str = UNKNOWN_CASE_NUMBER
    case_name: str = UNKNOWN_CASE_NAME
    status: ServeStatus = ServeStatus.UNKNOWN
    notes: str = ""
    address: str = ""
    service_address: str = ""
    coordinates: str = ZERO_COORDINATES
    timestamp: datetime = Field(default_factory=_utcnow)
    attempt_number: int = 1

    image_url: Optional[str] = None
    image_file_id: Optional[str] = None
    thumbnail_url: Optional[str] = None
    thumbnail_file_id: Optional[str] = None
    image_data: Optional[str] = None

    client_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("coordinates", mode="before")
    @classmethod
    def _normalize_coordinates(cls, v: Any) -> str:
        return normalize_coordinates(v)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> ServeStatus:
        return coerce_status(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, v: Any) -> Any:
        return v or _utcnow()

    @property
    def persisted_remotely(self) -> bool:
        return self.created_at is not None

    def to_document(self) -> Dict[str, Any]:
        """
        Render the record in the document-store wire shape.

        Thumbnail fields are present only when both were produced.
        """
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        document: Dict[str, Any] = {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "case_number": self.case_number,
            "case_name": self.case_name,
            "status": self.status.value,
            "notes": self.notes,
            "address": self.address,
            "service_address": self.service_address,
            "coordinates": self.coordinates,
            "image_url": self.image_url or "",
            "timestamp": timestamp.isoformat(),
            "attempt_number": self.attempt_number,
        }
        if self.thumbnail_url and self.thumbnail_file_id:
            document["thumbnailUrl"] = self.thumbnail_url
            document["thumbnailFileId"] = self.thumbnail_file_id
        return document

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ServeAttempt":
        """
        Map a stored document onto the canonical record, defaulting every
        optional field. Older documents use snake_case thumbnail keys and may
        carry inline `image_data`; both are accepted here.
        """
        return cls(
            id=str(doc.get("$id") or doc.get("id") or ""),
            client_id=doc.get("client_id") or UNKNOWN_CLIENT_ID,
            client_name=doc.get("client_name") or UNKNOWN_CLIENT_NAME,
            case_number=doc.get("case_number") or UNKNOWN_CASE_NUMBER,
            case_name=doc.get("case_name") or UNKNOWN_CASE_NAME,
            status=doc.get("status"),
            notes=doc.get("notes") or "",
            address=doc.get("address") or "",
            service_address=doc.get("service_address") or "",
            coordinates=doc.get("coordinates"),
            timestamp=doc.get("timestamp"),
            attempt_number=doc.get("attempt_number") or 1,
            image_url=doc.get("image_url") or None,
            image_file_id=doc.get("image_file_id") or None,
            thumbnail_url=doc.get("thumbnailUrl") or doc.get("thumbnail_url") or None,
            thumbnail_file_id=doc.get("thumbnailFileId") or doc.get("thumbnail_file_id") or None,
            image_data=doc.get("image_data") or None,
            created_at=doc.get("$createdAt") or None,
            updated_at=doc.get("$updatedAt") or None,
        )


# ══════════════════════════════════════════════════════════════════════════
# Local cache projection
# ══════════════════════════════════════════════════════════════════════════


class CachedRecord(BaseModel):
    """
    What:  Reduced projection of ServeAttempt kept in the local cache.
    How:   Serialized with camelCase keys (`imageUrl`, `clientId`, ...);
           the legacy inline image keeps its historical `image_data` key.
    Who:   Written by the fallback path and by the reconciler.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    client_id: str = Field(default=UNKNOWN_CLIENT_ID, alias="clientId")
    client_name: str = Field(default=UNKNOWN_CLIENT_NAME, alias="clientName")
    client_email: Optional[str] = Field(default=None, alias="clientEmail")
    case_number: str = Field(default=UNKNOWN_CASE_NUMBER, alias="caseNumber")
    case_name: str = Field(default=UNKNOWN_CASE_NAME, alias="caseName")
    coordinates: Optional[str] = None
    notes: str = ""
    status: ServeStatus = ServeStatus.UNKNOWN
    timestamp: datetime = Field(default_factory=_utcnow)
    attempt_number: int = Field(default=1, alias="attemptNumber")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_file_id: Optional[str] = Field(default=None, alias="imageFileId")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    thumbnail_file_id: Optional[str] = Field(default=None, alias="thumbnailFileId")
    image_data: Optional[str] = Field(default=None, alias="image_data")
    address: str = ""
    service_address: str = Field(default="", alias="serviceAddress")

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> ServeStatus:
        return coerce_status(v)

    @classmethod
    def from_attempt(cls, attempt: ServeAttempt) -> "CachedRecord":
        return cls(
            id=attempt.id,
            client_id=attempt.client_id,
            client_name=attempt.client_name,
            client_email=attempt.client_email,
            case_number=attempt.case_number,
            case_name=attempt.case_name,
            coordinates=attempt.coordinates,
            notes=attempt.notes,
            status=attempt.status,
            timestamp=attempt.timestamp,
            attempt_number=attempt.attempt_number,
            image_url=attempt.image_url,
            image_file_id=attempt.image_file_id,
            thumbnail_url=attempt.thumbnail_url,
            thumbnail_file_id=attempt.thumbnail_file_id,
            image_data=attempt.image_data,
            address=attempt.address,
            service_address=attempt.service_address,
        )

    def to_attempt(self) -> ServeAttempt:
        return ServeAttempt(
            id=self.id,
            client_id=self.client_id,
            client_name=self.client_name,
            client_email=self.client_email,
            case_number=self.case_number,
            case_name=self.case_name,
            coordinates=self.coordinates,
            notes=self.notes,
            status=self.status,
            timestamp=self.timestamp,
            attempt_number=self.attempt_number,
            image_url=self.image_url,
            image_file_id=self.image_file_id,
            thumbnail_url=self.thumbnail_url,
            thumbnail_file_id=self.thumbnail_file_id,
            image_data=self.image_data,
            address=self.address,
            service_address=self.service_address,
        )

    def to_cache_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ══════════════════════════════════════════════════════════════════════════
# Results
# ══════════════════════════════════════════════════════════════════════════


class SubmissionResult(BaseModel):
    """
    What:  Caller-visible outcome of a submission.

    `accepted` is true whenever validation passed. `persisted_remotely`
    distinguishes a stored record from one queued in the fallback list;
    `queued_locally` is false only if even the fallback write failed.
    """

    accepted: bool = True
    persisted_remotely: bool
    queued_locally: bool = False
    record: ServeAttempt
    background_task_id: Optional[str] = Field(
        default=None,
        description="Id of the post-write notification/resync task, if one was started",
    )


class UpdateResult(BaseModel):
    changed_fields: List[str] = Field(default_factory=list)
    record: ServeAttempt
    background_task_id: Optional[str] = None


class ServeAttemptPage(BaseModel):
    serves: List[ServeAttempt]
    total: int
    limit: int
    offset: int


class ReplayReport(BaseModel):
    """Outcome of re-submitting locally queued records to the remote store."""

    replayed: List[str] = Field(default_factory=list)
    already_present: List[str] = Field(default_factory=list)
    remaining: List[str] = Field(default_factory=list)


class SyncReport(BaseModel):
    """Outcome of one reconciler run. `success` is the failure indicator."""

    success: bool
    count: int = 0
    size_bytes: int = 0
    stripped_legacy_images: bool = False
    message: str = ""


class SyncRunResponse(BaseModel):
    """POST /api/sync: queued records replayed first, then the cache refreshed."""

    replay: ReplayReport
    sync: SyncReport


class DeleteResponse(BaseModel):
    success: bool
    id: str


class CountResponse(BaseModel):
    total: int

"""
Serve Tracker Backend — Custom Exception Hierarchy
====================================================

What:  Application-specific exceptions, one per pipeline failure mode.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by clients and services; caught by the stage that owns the
       failure or by the global handlers.

Exception Hierarchy:
    ServeTrackerError (base)
    ├── ValidationError          → 400 Bad Request (caller-fatal)
    ├── MediaDecodeError         → 400 (degrades evidence only inside the pipeline)
    ├── UploadError              → 502 (degrades evidence only)
    ├── PersistenceError         → 503 (submission falls back to the local cache)
    │   └── DocumentConflictError   (document id already exists remotely)
    ├── NotificationError        → 502 (both mail transports failed)
    └── NotFoundError            → 404 Not Found

Propagation Policy:
    Only ValidationError aborts a submission. Every other error is caught
    by the stage that raised it and the pipeline continues with degraded
    data; the HTTP mapping applies to the direct single-purpose endpoints
    (get, delete, list) where there is nothing to degrade to.
"""

from typing import Any, Dict, Optional


class ServeTrackerError(Exception):
    """
    Base exception for all Serve Tracker application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ServeTrackerError):
    """
    Raised when a submission is missing required fields.

    When:    No client id, sentinel client id, missing email fields.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class MediaDecodeError(ServeTrackerError):
    """Raised when an image payload is not valid base64 or not a decodable image."""

    def __init__(
        self,
        message: str = "Image data could not be decoded",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UploadError(ServeTrackerError):
    """
    Raised when the object store rejects or cannot receive an upload.

    Recovery:
        The evidence coordinator catches this per upload and leaves the
        corresponding URL/id fields empty on the record.
    """

    def __init__(
        self,
        message: str = "Evidence upload failed",
        bucket_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if bucket_id:
            ctx["bucket_id"] = bucket_id
        super().__init__(message=message, context=ctx)
        self.bucket_id = bucket_id


class PersistenceError(ServeTrackerError):
    """
    Raised when the remote document store is unavailable or rejects a write.

    Recovery:
        A failed create is queued in the local fallback list instead of
        being reported to the submitting user.
    """

    def __init__(
        self,
        message: str = "The document store is unavailable. Please try again later.",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class DocumentConflictError(PersistenceError):
    """Raised when a document with the requested id already exists."""

    def __init__(
        self,
        document_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if document_id:
            ctx["document_id"] = document_id
        super().__init__(
            message=f"Document '{document_id}' already exists",
            status_code=409,
            context=ctx,
        )
        self.document_id = document_id


class NotificationError(ServeTrackerError):
    """
    Raised when an email could not be delivered by a mail transport.

    The dispatcher converts this into a failed DispatchResult once both
    transports have been tried; it never reaches the submission caller.
    """

    def __init__(
        self,
        message: str = "Email notification could not be sent",
        transport: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if transport:
            ctx["transport"] = transport
        super().__init__(message=message, context=ctx)
        self.transport = transport


class NotFoundError(ServeTrackerError):
    """
    Raised when a requested resource does not exist.

    When:    Record lookup, client lookup, cross-referenced record resolution.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id

"""
Serve Tracker Backend — Notification Schemas
==============================================

What:  Email request accepted by the notification dispatcher and the
       structured result it returns.
Who:   Built by ServeAttemptService after a write, or received directly on
       POST /api/notifications.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class EmailRequest(BaseModel):
    """
    An email about a serve attempt, with up to three evidence sources.

    Attachment priority: `image_url` (http/https), then `serve_id`
    (look up the record and use its evidence), then `image_data`
    (legacy inline base64).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    to: List[str] = Field(default_factory=list)
    subject: str = ""
    html: Optional[str] = None
    text: Optional[str] = None
    serve_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("serve_id", "serveId")
    )
    image_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("image_url", "imageUrl")
    )
    image_data: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("image_data", "imageData")
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("to", mode="before")
    @classmethod
    def _listify_recipients(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class DispatchResult(BaseModel):
    """
    Outcome of one dispatch.

    transport: "function" (remote mail function) or "messaging_api"
               (direct fallback); None when nothing was delivered.
    """

    success: bool
    message: str
    transport: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)
    attachment_source: Optional[str] = None
    execution_id: Optional[str] = None

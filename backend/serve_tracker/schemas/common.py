"""
Serve Tracker Backend — Shared Response Schemas
=================================================

What:  Error, health and background-task response models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every error response produced by the global handlers."""

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable explanation")
    details: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = Field(description="healthy, degraded or unhealthy")
    version: str
    local_cache: str = Field(description="connected or disconnected")
    remote_config: str = Field(description="configured or incomplete")
    pending_background_tasks: int = 0
    uptime_seconds: float


class TaskState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskOutcome(BaseModel):
    """Observable result of a background task (notification, resync)."""

    task_id: str
    name: str
    state: TaskState = TaskState.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

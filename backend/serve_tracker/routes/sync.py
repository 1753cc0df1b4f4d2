"""
Serve Tracker Backend — Sync and Task Routes
==============================================

What:  POST /api/sync replays locally queued submissions and refreshes the
       read cache; GET /api/tasks/{task_id} reports a background task.
"""

import logging

from fastapi import APIRouter, Depends

from serve_tracker.dependencies import Container, get_container
from serve_tracker.exceptions import NotFoundError
from serve_tracker.schemas.common import ErrorResponse, TaskOutcome
from serve_tracker.schemas.serve_attempt import SyncRunResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Sync"])


@router.post(
    "/sync",
    response_model=SyncRunResponse,
    summary="Replay queued submissions, then refresh the local cache",
)
async def run_sync(container: Container = Depends(get_container)) -> SyncRunResponse:
    return await container.serve_attempts.reconcile()


@router.get(
    "/tasks/{task_id}",
    response_model=TaskOutcome,
    responses={404: {"description": "Unknown task id", "model": ErrorResponse}},
    summary="Outcome of a post-write background task",
)
async def get_task(task_id: str, container: Container = Depends(get_container)) -> TaskOutcome:
    outcome = container.background.outcome(task_id)
    if outcome is None:
        raise NotFoundError(resource="task", resource_id=task_id)
    return outcome

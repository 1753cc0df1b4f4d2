"""
Serve Tracker Backend — Serve Attempt Route Handlers
======================================================

What:  HTTP surface of the serve-attempt pipeline: submit, edit, delete and
       the remote and local reads.
How:   Thin handlers. Each parses the request, calls ServeAttemptService
       and shapes the response; failures map to status codes through the
       global exception handlers in main.py.
Who:   The field-agent frontend.

Status Codes (POST /api/serve-attempts):
    201  stored in the remote document store
    202  accepted and queued locally; the remote store was unavailable
    400  no usable client id (nothing was uploaded or written)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from serve_tracker.dependencies import get_serve_attempt_service
from serve_tracker.schemas.common import ErrorResponse
from serve_tracker.schemas.serve_attempt import (
    CachedRecord,
    CountResponse,
    DeleteResponse,
    ServeAttempt,
    ServeAttemptPage,
    ServeAttemptSubmission,
    ServeAttemptUpdate,
    SubmissionResult,
    UpdateResult,
)
from serve_tracker.services.serve_attempt_service import ServeAttemptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Serve Attempts"])


@router.post(
    "/serve-attempts",
    response_model=SubmissionResult,
    status_code=status.HTTP_201_CREATED,
    responses={
        202: {"description": "Accepted and queued locally", "model": SubmissionResult},
        400: {"description": "Missing client id", "model": ErrorResponse},
    },
    summary="Record a serve attempt",
)
async def submit_serve_attempt(
    submission: ServeAttemptSubmission,
    response: Response,
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> SubmissionResult:
    """
    Upload the evidence photo, store the record, then notify in the background.

    The response arrives before the email is sent; `background_task_id`
    can be polled on /api/tasks/{task_id}.
    """
    result = await service.submit(submission)
    if not result.persisted_remotely:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get(
    "/serve-attempts",
    response_model=ServeAttemptPage,
    summary="List serve attempts, newest first",
)
async def list_serve_attempts(
    response: Response,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> ServeAttemptPage:
    page = await service.list_page(limit=limit, offset=offset)
    response.headers["X-Total-Count"] = str(page.total)
    return page


@router.get(
    "/serve-attempts/cached",
    response_model=List[CachedRecord],
    summary="Serve attempts in the local read cache",
)
async def list_cached_serve_attempts(
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> List[CachedRecord]:
    return await service.list_cached()


@router.get(
    "/serve-attempts/pending",
    response_model=List[CachedRecord],
    summary="Submissions queued locally after a failed remote write",
)
async def list_pending_serve_attempts(
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> List[CachedRecord]:
    return await service.list_pending()


@router.get(
    "/serve-attempts/count",
    response_model=CountResponse,
    summary="Total number of stored serve attempts",
)
async def count_serve_attempts(
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> CountResponse:
    return CountResponse(total=await service.count())


@router.get(
    "/serve-attempts/{serve_id}",
    response_model=ServeAttempt,
    responses={404: {"description": "Serve attempt not found", "model": ErrorResponse}},
    summary="Get one serve attempt",
)
async def get_serve_attempt(
    serve_id: str,
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> ServeAttempt:
    return await service.get(serve_id)


@router.patch(
    "/serve-attempts/{serve_id}",
    response_model=UpdateResult,
    responses={404: {"description": "Serve attempt not found", "model": ErrorResponse}},
    summary="Edit notes, status, case number or case name",
)
async def update_serve_attempt(
    serve_id: str,
    changes: ServeAttemptUpdate,
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> UpdateResult:
    """Only fields that differ from the stored record are written."""
    return await service.update(serve_id, changes)


@router.delete(
    "/serve-attempts/{serve_id}",
    response_model=DeleteResponse,
    responses={404: {"description": "Serve attempt not found", "model": ErrorResponse}},
    summary="Delete a serve attempt and its evidence",
)
async def delete_serve_attempt(
    serve_id: str,
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> DeleteResponse:
    deleted = await service.delete(serve_id)
    return DeleteResponse(success=deleted, id=serve_id)


@router.get(
    "/clients/{client_id}/serve-attempts",
    response_model=List[ServeAttempt],
    summary="Serve attempts for one client, newest first",
)
async def list_client_serve_attempts(
    client_id: str,
    service: ServeAttemptService = Depends(get_serve_attempt_service),
) -> List[ServeAttempt]:
    return await service.list_for_client(client_id)

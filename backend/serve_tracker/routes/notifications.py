"""
Serve Tracker Backend — Notification Route
============================================

What:  POST /api/notifications sends one serve-attempt email directly.
How:   Same contract as the serverless mail function: `to`, `subject` and
       `html` or `text` are required; the photo comes from `imageUrl`,
       then `serveId`, then `imageData`.
"""

from fastapi import APIRouter, Depends, Response, status

from serve_tracker.dependencies import Container, get_container
from serve_tracker.schemas.common import ErrorResponse
from serve_tracker.schemas.notification import DispatchResult, EmailRequest

router = APIRouter(prefix="/api", tags=["Notifications"])


@router.post(
    "/notifications",
    response_model=DispatchResult,
    responses={
        400: {"description": "Missing to, subject or body", "model": ErrorResponse},
        502: {"description": "Every mail transport failed", "model": DispatchResult},
    },
    summary="Send a serve-attempt email",
)
async def send_notification(
    request: EmailRequest,
    response: Response,
    container: Container = Depends(get_container),
) -> DispatchResult:
    result = await container.notifications.dispatch(request)
    if not result.success:
        response.status_code = status.HTTP_502_BAD_GATEWAY
    return result

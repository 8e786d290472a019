"""FastAPI routes over the queue service.

These endpoints are a thin transport: every rule lives in QueueService.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from testerqueue.errors import (
    ConflictError,
    CooldownActive,
    NotFoundError,
    PermissionDenied,
    QueueError,
    QueueValidationError,
)
from testerqueue.models.queue import QueueEntry
from testerqueue.models.ticket import Ticket
from testerqueue.service import QueueService

router = APIRouter(tags=["queue"])


class ActorRequest(BaseModel):
    user_id: str


class WaitlistRequest(BaseModel):
    user_id: str
    region: str
    preferred_target: str


class SubmitResponse(BaseModel):
    ticket_id: str
    revoke: list[str]


def get_service(request: Request) -> QueueService:
    return request.app.state.service


def to_http(error: QueueError) -> HTTPException:
    """Map the service error taxonomy onto HTTP statuses."""
    if isinstance(error, QueueValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, CooldownActive):
        return HTTPException(
            status_code=409,
            detail={"reason": "cooldown", "days_remaining": error.days_remaining},
        )
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail={"reason": error.reason.value, "message": str(error)})
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PermissionDenied):
        return HTTPException(status_code=403, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.get("/regions/{region}")
async def get_region(region: str, service: QueueService = Depends(get_service)) -> dict[str, Any]:
    """Current state of a region's queue."""
    try:
        return service.view_model(region)
    except QueueError as e:
        raise to_http(e)


@router.get("/regions/{region}/stream")
async def stream_region(region: str, service: QueueService = Depends(get_service)):
    """SSE endpoint for queue and ticket notifications."""
    try:
        region = service.region(region)
    except QueueError as e:
        raise to_http(e)
    return StreamingResponse(
        service.events.subscribe(region),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.put("/regions/{region}/reviewers/{reviewer_id}")
async def activate_reviewer(region: str, reviewer_id: str, service: QueueService = Depends(get_service)):
    try:
        state = service.activate_reviewer(region, reviewer_id)
    except QueueError as e:
        raise to_http(e)
    return {"state": state.value}


@router.delete("/regions/{region}/reviewers/{reviewer_id}")
async def deactivate_reviewer(region: str, reviewer_id: str, service: QueueService = Depends(get_service)):
    try:
        removed = service.deactivate_reviewer(region, reviewer_id)
    except QueueError as e:
        raise to_http(e)
    return {"removed": removed}


@router.post("/regions/{region}/queue", response_model=QueueEntry)
async def join_queue(region: str, body: ActorRequest, service: QueueService = Depends(get_service)):
    try:
        return service.request_join(region, body.user_id)
    except QueueError as e:
        raise to_http(e)


@router.delete("/regions/{region}/queue/{user_id}")
async def leave_queue(region: str, user_id: str, service: QueueService = Depends(get_service)):
    try:
        removed = service.leave_queue(region, user_id)
    except QueueError as e:
        raise to_http(e)
    if not removed:
        raise HTTPException(status_code=404, detail="Not in queue")
    return {"status": "ok"}


@router.post("/regions/{region}/confirmations")
async def confirm_still_active(region: str, body: ActorRequest, service: QueueService = Depends(get_service)):
    try:
        service.confirm_still_active(region, body.user_id)
    except QueueError as e:
        raise to_http(e)
    return {"status": "ok"}


@router.post("/waitlist")
async def join_waitlist(body: WaitlistRequest, service: QueueService = Depends(get_service)):
    try:
        membership = service.join_waitlist(body.user_id, body.region, body.preferred_target)
    except QueueError as e:
        raise to_http(e)
    return membership.model_dump(by_alias=True)


@router.get("/tickets", response_model=list[Ticket])
async def list_tickets(service: QueueService = Depends(get_service)):
    return service.tickets.all()


@router.post("/tickets/{ticket_id}/cancel")
async def cancel_ticket(ticket_id: str, body: ActorRequest, service: QueueService = Depends(get_service)):
    try:
        service.cancel_ticket(ticket_id, body.user_id)
    except QueueError as e:
        raise to_http(e)
    return {"status": "ok"}


@router.post("/tickets/{ticket_id}/submit", response_model=SubmitResponse)
async def submit_ticket(ticket_id: str, body: ActorRequest, service: QueueService = Depends(get_service)):
    try:
        revoke = service.submit_ticket(ticket_id, body.user_id)
    except QueueError as e:
        raise to_http(e)
    return SubmitResponse(ticket_id=ticket_id, revoke=revoke)


@router.post("/admin/clear/{scope}")
async def clear(scope: str, service: QueueService = Depends(get_service)):
    try:
        service.clear(scope)
    except QueueError as e:
        raise to_http(e)
    return {"status": "ok"}


@router.get("/health")
async def health_check():
    return {"status": "ok"}

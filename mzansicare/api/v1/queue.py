import json
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import StreamingResponse

from ...api.deps import get_current_user, get_operator_user, get_queue_service, is_staff
from ...core.config import settings
from ...core.errors import NotFound, PermissionDenied, Unavailable
from ...models.user import User
from ...schemas.queue import JoinRequest, JoinResponse, QueueEstimate, TicketResponse
from ...services.queue_service import QueueService

router = APIRouter(prefix="/queue", tags=["Queue"])

# Handlers calling QueueService are plain functions so FastAPI runs them in its
# threadpool: location lookups and notification webhooks block on httpx.

def _owned_or_staff(ticket, user: User):
    if ticket.user_id != user.id and not is_staff(user):
        raise PermissionDenied("This ticket belongs to another patient")
    return ticket

@router.post("/join", response_model=JoinResponse)
def join_queue(
    data: JoinRequest,
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service)
):
    """Join a facility's queue; returns the existing ticket if one is active."""
    ticket, created = service.join(
        current_user.id,
        data.facility_id,
        reason=data.reason,
        priority=data.priority,
        coords=data.coords,
        client_ip=request.client.host if request.client else None,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return JoinResponse(created=created, ticket=TicketResponse.model_validate(ticket))

@router.get("/me", response_model=TicketResponse)
def my_ticket(
    current_user: User = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service)
):
    """Current user's active ticket."""
    try:
        ticket = service.get_status(current_user.id)
    except Unavailable as e:
        # Clients render unknown position/ETA rather than blocking
        e.details.update({"position": None, "eta_minutes": None})
        raise
    if ticket is None:
        raise NotFound("You have no active ticket")
    return TicketResponse.model_validate(ticket)

@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    current_user: User = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service)
):
    ticket = _owned_or_staff(service.get_ticket(ticket_id), current_user)
    return TicketResponse.model_validate(ticket)

@router.get("/tickets/{ticket_id}/events")
async def watch_ticket(
    ticket_id: str,
    current_user: User = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service)
):
    """Server-Sent Events stream of the ticket's position and status."""
    _owned_or_staff(service.get_ticket(ticket_id), current_user)
    updates = service.watch(ticket_id, heartbeat=settings.WATCH_HEARTBEAT_SECONDS)

    async def event_stream():
        async for snapshot in updates:
            if snapshot is None:
                yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
            else:
                yield f"data: {json.dumps({'type': 'ticket', 'ticket': snapshot})}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )

@router.post("/tickets/{ticket_id}/cancel", response_model=TicketResponse)
def cancel_ticket(
    ticket_id: str,
    current_user: User = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service)
):
    """Cancel a ticket (owner or operator)."""
    ticket = service.cancel(ticket_id, current_user.id, is_staff=is_staff(current_user))
    return TicketResponse.model_validate(ticket)

@router.post("/tickets/{ticket_id}/call", response_model=TicketResponse)
def call_ticket(
    ticket_id: str,
    operator: User = Depends(get_operator_user),
    service: QueueService = Depends(get_queue_service)
):
    ticket = service.call_by_id(ticket_id, operator.id)
    return TicketResponse.model_validate(ticket)

@router.post("/tickets/{ticket_id}/serve", response_model=TicketResponse)
def serve_ticket(
    ticket_id: str,
    operator: User = Depends(get_operator_user),
    service: QueueService = Depends(get_queue_service)
):
    ticket = service.mark_served(ticket_id, operator.id)
    return TicketResponse.model_validate(ticket)

@router.post(
    "/facilities/{facility_id}/call-next",
    response_model=TicketResponse,
    responses={204: {"description": "Nobody is waiting"}},
)
def call_next(
    facility_id: str,
    operator: User = Depends(get_operator_user),
    service: QueueService = Depends(get_queue_service)
):
    """Call the earliest waiting patient."""
    ticket = service.call_next(facility_id, operator.id)
    if ticket is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return TicketResponse.model_validate(ticket)

@router.get("/facilities/{facility_id}/tickets", response_model=List[TicketResponse])
def facility_board(
    facility_id: str,
    include_closed: bool = False,
    operator: User = Depends(get_operator_user),
    service: QueueService = Depends(get_queue_service)
):
    """Operator board for one facility, in admission order."""
    return [
        TicketResponse.model_validate(t)
        for t in service.list_queue(facility_id, include_closed=include_closed)
    ]

@router.get("/facilities/{facility_id}/estimate", response_model=QueueEstimate)
def facility_estimate(
    facility_id: str,
    service: QueueService = Depends(get_queue_service)
):
    """Position and wait a patient joining now would get."""
    return service.estimate(facility_id)

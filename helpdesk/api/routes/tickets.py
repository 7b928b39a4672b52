from __future__ import annotations

from fastapi import APIRouter, Query, status

from helpdesk.api.errors import to_http_exception
from helpdesk.api.schemas import (
    QueueResponse,
    QueueStatsResponse,
    RequesterViewResponse,
    TicketCreateRequest,
    TicketReassignRequest,
    TicketResponse,
    TicketStatusChangeRequest,
    TicketUpdateRequest,
    to_queue_response,
    to_requester_response,
    to_stats_response,
    to_ticket_response,
)
from helpdesk.dependencies.auth import AgentSession, CurrentSession
from helpdesk.dependencies.tickets import HelpdeskServiceDep
from helpdesk.tickets.errors import HelpdeskError
from helpdesk.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: HelpdeskServiceDep,
    session: CurrentSession,
) -> TicketResponse:
    try:
        ticket = await service.create_ticket(
            session,
            subject=payload.subject,
            description=payload.description,
            priority=payload.priority,
        )
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_ticket_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: HelpdeskServiceDep,
    _: CurrentSession,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
) -> list[TicketResponse]:
    try:
        tickets = await service.list_tickets(status=status_filter)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return [to_ticket_response(ticket) for ticket in tickets]


@router.get("/queue", response_model=QueueResponse)
async def get_queue(service: HelpdeskServiceDep, _: AgentSession) -> QueueResponse:
    try:
        view = await service.queue_view()
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_queue_response(view)


@router.get("/stats", response_model=QueueStatsResponse)
async def get_stats(service: HelpdeskServiceDep, _: CurrentSession) -> QueueStatsResponse:
    try:
        view = await service.queue_view()
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_stats_response(view.stats)


@router.get("/mine", response_model=RequesterViewResponse)
async def get_my_tickets(service: HelpdeskServiceDep, session: CurrentSession) -> RequesterViewResponse:
    try:
        view = await service.requester_view(session)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_requester_response(view)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: HelpdeskServiceDep, _: CurrentSession) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_ticket_response(ticket)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: HelpdeskServiceDep,
    session: CurrentSession,
) -> TicketResponse:
    payload.ensure_payload()
    try:
        ticket = await service.edit_ticket(
            ticket_id,
            session,
            subject=payload.subject,
            description=payload.description,
            priority=payload.priority,
        )
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_ticket_response(ticket)


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: HelpdeskServiceDep,
    session: CurrentSession,
) -> TicketResponse:
    try:
        if payload.status == TicketStatus.CANCELLED:
            ticket = await service.cancel(ticket_id, session)
        else:
            ticket = await service.change_status(ticket_id, payload.status, session)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_ticket_response(ticket)


@router.put("/{ticket_id}/agent", response_model=TicketResponse)
async def reassign_ticket(
    ticket_id: str,
    payload: TicketReassignRequest,
    service: HelpdeskServiceDep,
    session: AgentSession,
) -> TicketResponse:
    try:
        ticket = await service.reassign(ticket_id, payload.agent, session)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return to_ticket_response(ticket)

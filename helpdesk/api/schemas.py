from __future__ import annotations

from datetime import datetime

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.security.roles import AppRole
from helpdesk.tickets.models import DEFAULT_CATEGORY, Ticket
from helpdesk.tickets.queue import QueueStats, QueueView
from helpdesk.tickets.service import RequesterView
from helpdesk.tickets.state import TicketPriority, TicketStatus


class TicketCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="")
    priority: TicketPriority = Field(default=TicketPriority.MEDIUM)


class TicketUpdateRequest(BaseModel):
    subject: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None)
    priority: TicketPriority | None = Field(default=None)

    def ensure_payload(self) -> None:
        if self.subject is None and self.description is None and self.priority is None:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus


class TicketReassignRequest(BaseModel):
    agent: str = Field(..., min_length=1, max_length=255)


class AgentCreateRequest(BaseModel):
    identity: str = Field(..., min_length=1, max_length=255)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    requester_id: str
    requester_name: str
    subject: str
    description: str = ""
    status: TicketStatus
    priority: TicketPriority = TicketPriority.MEDIUM
    category: str = DEFAULT_CATEGORY
    ai_summary: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    agent_id: str | None = None
    agent_name: str | None = None

    def to_ticket(self) -> Ticket:
        return Ticket(
            id=self.id,
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            subject=self.subject,
            description=self.description,
            status=self.status,
            priority=self.priority,
            created_at=self.created_at,
            category=self.category or DEFAULT_CATEGORY,
            ai_summary=self.ai_summary,
            started_at=self.started_at,
            completed_at=self.completed_at,
            agent_id=self.agent_id,
            agent_name=self.agent_name,
        )


class QueueStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    average_wait_minutes: int
    active_count: int
    completed_today_count: int


class QueuedTicketResponse(BaseModel):
    ticket: TicketResponse
    position: int
    estimated_wait_minutes: int


class QueueResponse(BaseModel):
    waiting: list[QueuedTicketResponse]
    in_progress: list[TicketResponse]
    resolved: list[TicketResponse]
    stats: QueueStatsResponse


class RequesterViewResponse(BaseModel):
    tickets: list[QueuedTicketResponse]
    average_wait_minutes: int


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identity: str
    display_name: str
    role: AppRole
    is_admin: bool


class AgentListResponse(BaseModel):
    agents: list[str]


def to_ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def to_stats_response(stats: QueueStats) -> QueueStatsResponse:
    return QueueStatsResponse.model_validate(stats)


def to_queue_response(view: QueueView) -> QueueResponse:
    return QueueResponse(
        waiting=[
            QueuedTicketResponse(
                ticket=to_ticket_response(ticket),
                position=view.position_of(ticket.id),
                estimated_wait_minutes=view.estimated_wait_of(ticket.id),
            )
            for ticket in view.partition.waiting
        ],
        in_progress=[to_ticket_response(ticket) for ticket in view.partition.in_progress],
        resolved=[to_ticket_response(ticket) for ticket in view.partition.resolved],
        stats=to_stats_response(view.stats),
    )


def to_requester_response(view: RequesterView) -> RequesterViewResponse:
    return RequesterViewResponse(
        tickets=[
            QueuedTicketResponse(
                ticket=to_ticket_response(item.ticket),
                position=item.position,
                estimated_wait_minutes=item.estimated_wait_minutes,
            )
            for item in view.tickets
        ],
        average_wait_minutes=view.average_wait_minutes,
    )

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .state import TicketPriority, TicketStatus

DEFAULT_CATEGORY = "General"


@dataclass(frozen=True, slots=True)
class AgentRef:
    """Identity of the agent handling a ticket."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Ticket:
    """Aggregate representing a support request in the queue."""

    id: str
    requester_id: str
    requester_name: str
    subject: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    created_at: datetime
    category: str = DEFAULT_CATEGORY
    ai_summary: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    agent_id: str | None = None
    agent_name: str | None = None

    @property
    def agent(self) -> AgentRef | None:
        if self.agent_id is None:
            return None
        return AgentRef(id=self.agent_id, name=self.agent_name or self.agent_id)


@dataclass(frozen=True, slots=True)
class TicketDraft:
    """Requester submission handed to the store for insertion."""

    requester_id: str
    requester_name: str
    subject: str
    description: str = ""
    priority: TicketPriority = TicketPriority.MEDIUM
    category: str = DEFAULT_CATEGORY
    ai_summary: str | None = None


@dataclass(frozen=True, slots=True)
class StatusChange:
    """Full next value of the lifecycle fields written by a status update.

    Every field is written as-is, so ``None`` clears the stored value.
    """

    status: TicketStatus
    agent_id: str | None
    agent_name: str | None
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def of(cls, ticket: Ticket) -> "StatusChange":
        return cls(
            status=ticket.status,
            agent_id=ticket.agent_id,
            agent_name=ticket.agent_name,
            started_at=ticket.started_at,
            completed_at=ticket.completed_at,
        )

"""Pure lifecycle operations computing the next value of a ticket."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from .errors import InvalidTransitionError, TicketNotEditableError, ValidationError
from .models import AgentRef, Ticket, TicketDraft
from .state import TicketPriority, TicketStateMachine, TicketStatus

_DEFAULT_MACHINE = TicketStateMachine()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition(
    ticket: Ticket,
    new_status: TicketStatus,
    agent: AgentRef | None = None,
    *,
    now: datetime | None = None,
    state_machine: TicketStateMachine | None = None,
) -> Ticket:
    """Return ``ticket`` moved to ``new_status`` with the lifecycle side effects applied.

    The input is never mutated. Moving to the current status is a no-op.
    """

    machine = state_machine or _DEFAULT_MACHINE
    current = ticket.status
    if current == new_status:
        return ticket

    machine.assert_transition(current, new_status)
    if not machine.is_defined(current, new_status):
        return replace(ticket, status=new_status)

    moment = now or _utcnow()

    if new_status == TicketStatus.IN_PROGRESS:
        assignee = agent or ticket.agent
        if assignee is None:
            raise ValidationError("An agent is required to start work on a ticket")
        return replace(
            ticket,
            status=new_status,
            agent_id=assignee.id,
            agent_name=assignee.name,
            started_at=ticket.started_at or moment,
            completed_at=None,
        )

    if new_status == TicketStatus.WAITING:
        return replace(
            ticket,
            status=new_status,
            agent_id=None,
            agent_name=None,
            started_at=None,
            completed_at=None,
        )

    # completed / cancelled
    completed_at = moment
    if ticket.started_at is not None and completed_at < ticket.started_at:
        completed_at = ticket.started_at
    return replace(ticket, status=new_status, completed_at=completed_at)


def edit_waiting_ticket(
    ticket: Ticket,
    *,
    subject: str | None = None,
    description: str | None = None,
    priority: TicketPriority | None = None,
) -> Ticket:
    """Overwrite the requester-editable fields of a waiting ticket."""

    if ticket.status != TicketStatus.WAITING:
        raise TicketNotEditableError(
            f"Ticket {ticket.id} is {ticket.status.value} and can no longer be edited"
        )
    if subject is not None and not subject.strip():
        raise ValidationError("Subject must not be empty")

    return replace(
        ticket,
        subject=subject.strip() if subject is not None else ticket.subject,
        description=description if description is not None else ticket.description,
        priority=priority if priority is not None else ticket.priority,
    )


def reassign(ticket: Ticket, agent: AgentRef) -> Ticket:
    """Hand an in-progress ticket over to another agent, keeping its start time."""

    if ticket.status != TicketStatus.IN_PROGRESS:
        raise InvalidTransitionError(
            f"Only in-progress tickets can be reassigned (ticket {ticket.id} is {ticket.status.value})"
        )
    return replace(ticket, agent_id=agent.id, agent_name=agent.name)


def validate_draft(draft: TicketDraft) -> None:
    """Reject submissions missing the fields the store requires."""

    missing = [name for name in ("subject", "requester_id") if not (getattr(draft, name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required ticket fields: {', '.join(missing)}")

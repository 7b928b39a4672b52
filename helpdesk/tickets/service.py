from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

from opentelemetry import trace

from helpdesk.security.roles import AgentAllowList, SessionContext, normalise_identity, open_session

from .errors import StoreUnavailable, TicketAccessError, ValidationError
from .lifecycle import edit_waiting_ticket, reassign, transition, validate_draft
from .models import AgentRef, StatusChange, Ticket, TicketDraft
from .queue import QueueView, StatsOptions, build_queue_view, requester_active_tickets
from .state import TicketPriority, TicketStateMachine, TicketStatus
from .triage import TriageFunction, triage_ticket

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketStore(Protocol):
    """Request/response data access consumed by the service."""

    async def list_tickets(self, *, status: TicketStatus | None = None) -> list[Ticket]: ...

    async def get_ticket(self, ticket_id: str) -> Ticket: ...

    async def create_ticket(self, draft: TicketDraft) -> Ticket: ...

    async def update_ticket_status(self, ticket_id: str, change: StatusChange) -> bool: ...

    async def update_ticket_fields(
        self, ticket_id: str, *, subject: str, description: str, priority: TicketPriority
    ) -> bool: ...

    async def list_agents(self) -> list[str]: ...

    async def add_agent(self, identity: str) -> bool: ...

    async def remove_agent(self, identity: str) -> None: ...


@dataclass(frozen=True, slots=True)
class RequesterTicket:
    """A requester's active ticket with its place in the queue."""

    ticket: Ticket
    position: int
    estimated_wait_minutes: int


@dataclass(frozen=True, slots=True)
class RequesterView:
    tickets: tuple[RequesterTicket, ...]
    average_wait_minutes: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def agent_of(session: SessionContext) -> AgentRef:
    return AgentRef(id=session.key, name=session.display_name)


@dataclass
class HelpdeskService:
    """High level orchestration of queue operations over a ticket store."""

    store: TicketStore
    triage: TriageFunction | None = None
    state_machine: TicketStateMachine = field(default_factory=TicketStateMachine)
    stats_options: StatsOptions = field(default_factory=StatsOptions)
    admins: tuple[str, ...] = ()
    clock: Callable[[], datetime] = _utcnow

    async def allow_list(self) -> AgentAllowList:
        return AgentAllowList.of(await self.store.list_agents())

    async def resolve_session(self, identity: str, display_name: str | None = None) -> SessionContext:
        if not normalise_identity(identity):
            raise ValidationError("An identity is required")
        return open_session(identity, display_name, await self.allow_list(), admins=self.admins)

    async def create_ticket(
        self,
        session: SessionContext,
        *,
        subject: str,
        description: str = "",
        priority: TicketPriority = TicketPriority.MEDIUM,
    ) -> Ticket:
        draft = TicketDraft(
            requester_id=session.key,
            requester_name=session.display_name,
            subject=(subject or "").strip(),
            description=description or "",
            priority=priority,
        )
        validate_draft(draft)

        with tracer.start_as_current_span("helpdesk.create_ticket"):
            result = await triage_ticket(self.triage, draft.subject, draft.description)
            ticket = await self.store.create_ticket(
                replace(draft, category=result.category, ai_summary=result.summary)
            )
        logger.info("Ticket %s created by %s (%s)", ticket.id, session.key, ticket.priority.value)
        return ticket

    async def list_tickets(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        return await self.store.list_tickets(status=status)

    async def get_ticket(self, ticket_id: str) -> Ticket:
        return await self.store.get_ticket(ticket_id)

    async def queue_view(self) -> QueueView:
        tickets = await self.store.list_tickets()
        return build_queue_view(tickets, now=self.clock(), options=self.stats_options)

    async def requester_view(self, session: SessionContext) -> RequesterView:
        tickets = await self.store.list_tickets()
        view = build_queue_view(tickets, now=self.clock(), options=self.stats_options)
        mine = tuple(
            RequesterTicket(
                ticket=ticket,
                position=view.position_of(ticket.id),
                estimated_wait_minutes=view.estimated_wait_of(ticket.id),
            )
            for ticket in requester_active_tickets(tickets, session.key)
        )
        return RequesterView(tickets=mine, average_wait_minutes=view.stats.average_wait_minutes)

    async def _write_status(self, current: Ticket, updated: Ticket, actor: str) -> Ticket:
        if updated == current:
            return current
        with tracer.start_as_current_span("helpdesk.update_status") as span:
            span.set_attribute("helpdesk.ticket_id", current.id)
            span.set_attribute("helpdesk.status", updated.status.value)
            await self.store.update_ticket_status(current.id, StatusChange.of(updated))
        logger.info(
            "Ticket %s %s -> %s by %s",
            current.id,
            current.status.value,
            updated.status.value,
            actor,
        )
        return updated

    async def change_status(
        self,
        ticket_id: str,
        new_status: TicketStatus,
        session: SessionContext,
    ) -> Ticket:
        """Apply an agent-driven status change."""

        if not session.is_agent:
            raise TicketAccessError("Only agents can change ticket status")
        current = await self.store.get_ticket(ticket_id)
        updated = transition(
            current,
            new_status,
            agent_of(session),
            now=self.clock(),
            state_machine=self.state_machine,
        )
        return await self._write_status(current, updated, session.key)

    async def claim(self, ticket_id: str, session: SessionContext) -> Ticket:
        return await self.change_status(ticket_id, TicketStatus.IN_PROGRESS, session)

    async def release(self, ticket_id: str, session: SessionContext) -> Ticket:
        return await self.change_status(ticket_id, TicketStatus.WAITING, session)

    async def resolve(self, ticket_id: str, session: SessionContext) -> Ticket:
        return await self.change_status(ticket_id, TicketStatus.COMPLETED, session)

    async def cancel(self, ticket_id: str, session: SessionContext) -> Ticket:
        if session.is_agent:
            return await self.change_status(ticket_id, TicketStatus.CANCELLED, session)
        return await self.cancel_own_ticket(ticket_id, session)

    async def reopen(
        self,
        ticket_id: str,
        session: SessionContext,
        *,
        to: TicketStatus = TicketStatus.WAITING,
    ) -> Ticket:
        if to not in (TicketStatus.WAITING, TicketStatus.IN_PROGRESS):
            raise ValidationError("Tickets can only be reopened to waiting or in_progress")
        return await self.change_status(ticket_id, to, session)

    async def cancel_own_ticket(self, ticket_id: str, session: SessionContext) -> Ticket:
        """Let a requester withdraw a ticket that nobody has picked up yet."""

        current = await self.store.get_ticket(ticket_id)
        if current.requester_id != session.key:
            raise TicketAccessError("Only the requester can cancel this ticket")
        if current.status not in (TicketStatus.WAITING, TicketStatus.CANCELLED):
            raise TicketAccessError("Tickets already being handled can only be cancelled by an agent")
        updated = transition(
            current,
            TicketStatus.CANCELLED,
            now=self.clock(),
            state_machine=self.state_machine,
        )
        return await self._write_status(current, updated, session.key)

    async def reassign(self, ticket_id: str, agent_identity: str, session: SessionContext) -> Ticket:
        if not session.is_agent:
            raise TicketAccessError("Only agents can reassign tickets")
        allow_list = await self.allow_list()
        if agent_identity not in allow_list:
            raise ValidationError(f"{agent_identity!r} is not an agent")
        current = await self.store.get_ticket(ticket_id)
        target = AgentRef(id=normalise_identity(agent_identity), name=agent_identity.strip())
        updated = reassign(current, target)
        return await self._write_status(current, updated, session.key)

    async def edit_ticket(
        self,
        ticket_id: str,
        session: SessionContext,
        *,
        subject: str | None = None,
        description: str | None = None,
        priority: TicketPriority | None = None,
    ) -> Ticket:
        current = await self.store.get_ticket(ticket_id)
        if current.requester_id != session.key and not session.is_agent:
            raise TicketAccessError("Only the requester or an agent can edit this ticket")
        updated = edit_waiting_ticket(
            current, subject=subject, description=description, priority=priority
        )
        if updated != current:
            await self.store.update_ticket_fields(
                ticket_id,
                subject=updated.subject,
                description=updated.description,
                priority=updated.priority,
            )
        return updated

    async def list_agents(self) -> list[str]:
        return (await self.allow_list()).sorted()

    async def add_agent(self, identity: str, session: SessionContext) -> bool:
        if not session.is_admin:
            raise TicketAccessError("Only administrators can manage agents")
        return await self.store.add_agent(identity)

    async def remove_agent(self, identity: str, session: SessionContext) -> None:
        if not session.is_admin:
            raise TicketAccessError("Only administrators can manage agents")
        await self.store.remove_agent(identity)

    async def bootstrap_agents(self, identities: Iterable[str]) -> int:
        """Seed the allow-list at startup; failures are logged, not raised."""

        added = 0
        for identity in identities:
            try:
                if await self.store.add_agent(identity):
                    added += 1
            except (StoreUnavailable, ValidationError) as exc:
                logger.warning("Could not seed agent %r: %s", identity, exc)
        return added

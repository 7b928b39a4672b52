from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from helpdesk.db.models import AgentTable, TicketTable
from helpdesk.security.roles import normalise_identity

from .errors import AgentNotFoundError, StoreUnavailable, TicketNotFoundError, ValidationError
from .lifecycle import validate_draft
from .models import DEFAULT_CATEGORY, StatusChange, Ticket, TicketDraft
from .state import TicketPriority, TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except (OperationalError, InterfaceError, OSError, TimeoutError) as exc:
        logger.warning("Ticket store unavailable: %s", exc)
        raise StoreUnavailable(f"Ticket store unavailable: {exc}") from exc


class TicketRepository:
    """Persistence for tickets and the agent allow-list."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._last_created_at: datetime | None = None

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        with _store_errors():
            async with self._engine.begin() as connection:
                await connection.run_sync(SQLModel.metadata.create_all)

    def _next_created_at(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + _TICK
        self._last_created_at = now
        return now

    async def list_tickets(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        statement = select(TicketTable).order_by(TicketTable.created_at.desc())
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        with _store_errors():
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def get_ticket(self, ticket_id: str) -> Ticket:
        with _store_errors():
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return self._table_to_ticket(row)

    async def create_ticket(self, draft: TicketDraft) -> Ticket:
        validate_draft(draft)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            requester_id=draft.requester_id.strip(),
            requester_name=draft.requester_name.strip() or draft.requester_id.strip(),
            subject=draft.subject.strip(),
            description=draft.description or "",
            status=TicketStateMachine.initial_state(),
            priority=draft.priority,
            created_at=self._next_created_at(),
            category=draft.category or DEFAULT_CATEGORY,
            ai_summary=draft.ai_summary,
        )
        with _store_errors():
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TicketTable(
                            id=ticket.id,
                            requester_id=ticket.requester_id,
                            requester_name=ticket.requester_name,
                            subject=ticket.subject,
                            description=ticket.description,
                            status=ticket.status.value,
                            priority=ticket.priority.value,
                            category=ticket.category,
                            ai_summary=ticket.ai_summary,
                            created_at=ticket.created_at,
                        )
                    )
        return ticket

    async def update_ticket_status(self, ticket_id: str, change: StatusChange) -> bool:
        with _store_errors():
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                row.status = change.status.value
                row.agent_id = change.agent_id
                row.agent_name = change.agent_name
                row.started_at = change.started_at
                row.completed_at = change.completed_at
                await session.commit()
        return True

    async def update_ticket_fields(
        self,
        ticket_id: str,
        *,
        subject: str,
        description: str,
        priority: TicketPriority,
    ) -> bool:
        with _store_errors():
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                row.subject = subject
                row.description = description
                row.priority = priority.value
                await session.commit()
        return True

    async def list_agents(self) -> list[str]:
        with _store_errors():
            async with self._session_factory() as session:
                result = await session.execute(select(AgentTable).order_by(AgentTable.identity))
                return [row.identity for row in result.scalars().all()]

    async def add_agent(self, identity: str) -> bool:
        """Insert ``identity``; returns ``False`` when it was already present."""

        normalised = normalise_identity(identity)
        if not normalised:
            raise ValidationError("Agent identity must not be empty")
        with _store_errors():
            async with self._session_factory() as session:
                if await session.get(AgentTable, normalised) is not None:
                    return False
                session.add(AgentTable(identity=normalised, created_at=datetime.now(timezone.utc)))
                try:
                    await session.commit()
                except IntegrityError:
                    # inserted concurrently by another request
                    await session.rollback()
                    return False
        logger.info("Agent %s added to allow-list", normalised)
        return True

    async def remove_agent(self, identity: str) -> None:
        normalised = normalise_identity(identity)
        with _store_errors():
            async with self._session_factory() as session:
                row = await session.get(AgentTable, normalised)
                if row is None:
                    raise AgentNotFoundError(f"Agent {normalised or identity!r} not found")
                await session.delete(row)
                await session.commit()
        logger.info("Agent %s removed from allow-list", normalised)

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            requester_id=row.requester_id,
            requester_name=row.requester_name or row.requester_id,
            subject=row.subject,
            description=row.description or "",
            status=TicketStatus.parse(row.status),
            priority=TicketPriority.parse(row.priority),
            created_at=_ensure_datetime(row.created_at),
            category=row.category or DEFAULT_CATEGORY,
            ai_summary=row.ai_summary or None,
            started_at=_optional_datetime(row.started_at),
            completed_at=_optional_datetime(row.completed_at),
            agent_id=row.agent_id or None,
            agent_name=row.agent_name or None,
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


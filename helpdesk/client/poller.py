"""Background polling of the helpdesk API with optimistic local mutations.

The poller holds the last snapshot that was fetched successfully. Local
mutations are applied to that snapshot immediately and flagged as unsynced; the
next successful poll replaces the whole snapshot with server state.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable

import httpx

from helpdesk.core.config import Settings
from helpdesk.security.roles import AgentAllowList, SessionContext, open_session, refresh_session
from helpdesk.tickets.errors import HelpdeskError, StoreUnavailable, TicketNotFoundError
from helpdesk.tickets.lifecycle import edit_waiting_ticket, transition, validate_draft
from helpdesk.tickets.models import AgentRef, Ticket, TicketDraft
from helpdesk.tickets.queue import QueueView, StatsOptions, build_queue_view
from helpdesk.tickets.state import TicketPriority, TicketStateMachine, TicketStatus

from .api import HelpdeskAPIClient

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QueueSnapshot:
    tickets: tuple[Ticket, ...]
    allow_list: AgentAllowList
    session: SessionContext
    view: QueueView
    fetched_at: datetime | None = None
    offline: bool = False
    unsynced: frozenset[str] = field(default_factory=frozenset)

    def find(self, ticket_id: str) -> Ticket | None:
        for ticket in self.tickets:
            if ticket.id == ticket_id:
                return ticket
        return None


class QueuePoller:
    """Keeps a :class:`QueueSnapshot` current for one client identity."""

    def __init__(
        self,
        client: HelpdeskAPIClient,
        *,
        interval: float = 5.0,
        admins: tuple[str, ...] = (),
        stats_options: StatsOptions | None = None,
        state_machine: TicketStateMachine | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_change: Callable[[QueueSnapshot], None] | None = None,
    ) -> None:
        self._client = client
        self._interval = interval
        self._stats_options = stats_options or StatsOptions()
        self._state_machine = state_machine or TicketStateMachine()
        self._clock = clock
        self._on_change = on_change
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        allow_list = AgentAllowList.of(())
        session = open_session(client.identity, client.display_name, allow_list, admins=admins)
        self._snapshot = QueueSnapshot(
            tickets=(),
            allow_list=allow_list,
            session=session,
            view=self._build_view(()),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity: str,
        display_name: str | None = None,
        *,
        on_change: Callable[[QueueSnapshot], None] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> "QueuePoller":
        """Build a poller whose local rules match a server running with ``settings``."""

        client = HelpdeskAPIClient(
            base_url=settings.api_base_url,
            identity=identity,
            display_name=display_name,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )
        return cls(
            client,
            interval=settings.poll_interval_seconds,
            admins=settings.admin_identities,
            stats_options=StatsOptions(
                default_wait_minutes=settings.default_wait_minutes,
                min_wait_minutes=settings.min_wait_minutes,
                tz=settings.tzinfo(),
            ),
            state_machine=TicketStateMachine(strict=settings.strict_transitions),
            on_change=on_change,
        )

    @property
    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _build_view(self, tickets: tuple[Ticket, ...]) -> QueueView:
        return build_queue_view(tickets, now=self._clock(), options=self._stats_options)

    def _publish(self, snapshot: QueueSnapshot) -> QueueSnapshot:
        with self._lock:
            self._snapshot = snapshot
        if self._on_change is not None:
            self._on_change(snapshot)
        return snapshot

    def _with_tickets(
        self,
        snapshot: QueueSnapshot,
        tickets: tuple[Ticket, ...],
        unsynced: frozenset[str],
        *,
        offline: bool | None = None,
    ) -> QueueSnapshot:
        return replace(
            snapshot,
            tickets=tickets,
            view=self._build_view(tickets),
            unsynced=unsynced,
            offline=snapshot.offline if offline is None else offline,
        )

    def _replace_ticket(self, ticket_id: str, ticket: Ticket | None, *, synced: bool, offline: bool | None = None) -> QueueSnapshot:
        """Swap (or drop, when ``ticket`` is None) one ticket in the current snapshot."""

        with self._lock:
            current = self._snapshot
            tickets = tuple(
                ticket if item.id == ticket_id else item
                for item in current.tickets
                if ticket is not None or item.id != ticket_id
            )
            unsynced = current.unsynced - {ticket_id} if synced else current.unsynced | {ticket_id}
            return self._publish(self._with_tickets(current, tickets, unsynced, offline=offline))

    def refresh(self) -> QueueSnapshot:
        """Fetch tickets and the allow-list; keep the last good snapshot on failure."""

        try:
            tickets = tuple(self._client.list_tickets())
            allow_list = AgentAllowList.of(self._client.list_agents())
        except StoreUnavailable as exc:
            logger.warning("Helpdesk store unavailable, keeping cached queue: %s", exc)
            with self._lock:
                return self._publish(replace(self._snapshot, offline=True))

        with self._lock:
            previous = self._snapshot
            session = refresh_session(previous.session, allow_list)
            return self._publish(
                QueueSnapshot(
                    tickets=tickets,
                    allow_list=allow_list,
                    session=session,
                    view=self._build_view(tickets),
                    fetched_at=self._clock(),
                    offline=False,
                )
            )

    def apply_transition(self, ticket_id: str, new_status: TicketStatus) -> Ticket:
        """Move a ticket locally, then push the change to the server.

        Invalid transitions are rejected before the server is contacted. When the
        server cannot be reached the tentative value stays in place, flagged as
        unsynced. A rejection by the server restores the previous value.
        """

        snapshot = self.snapshot
        current = snapshot.find(ticket_id)
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} is not in the local queue")
        session = snapshot.session
        tentative = transition(
            current,
            new_status,
            AgentRef(id=session.key, name=session.display_name),
            now=self._clock(),
            state_machine=self._state_machine,
        )
        if tentative == current:
            return current

        self._replace_ticket(ticket_id, tentative, synced=False)
        try:
            confirmed = self._client.change_status(ticket_id, new_status)
        except StoreUnavailable as exc:
            logger.warning("Status change of %s kept locally until the next refresh: %s", ticket_id, exc)
            self._replace_ticket(ticket_id, tentative, synced=False, offline=True)
            return tentative
        except HelpdeskError:
            self._replace_ticket(ticket_id, current, synced=True)
            raise
        self._replace_ticket(ticket_id, confirmed, synced=True)
        return confirmed

    def edit(
        self,
        ticket_id: str,
        *,
        subject: str | None = None,
        description: str | None = None,
        priority: TicketPriority | None = None,
    ) -> Ticket:
        current = self.snapshot.find(ticket_id)
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} is not in the local queue")
        tentative = edit_waiting_ticket(current, subject=subject, description=description, priority=priority)
        if tentative == current:
            return current

        self._replace_ticket(ticket_id, tentative, synced=False)
        try:
            confirmed = self._client.edit_ticket(
                ticket_id, subject=subject, description=description, priority=priority
            )
        except StoreUnavailable as exc:
            logger.warning("Edit of %s kept locally until the next refresh: %s", ticket_id, exc)
            self._replace_ticket(ticket_id, tentative, synced=False, offline=True)
            return tentative
        except HelpdeskError:
            self._replace_ticket(ticket_id, current, synced=True)
            raise
        self._replace_ticket(ticket_id, confirmed, synced=True)
        return confirmed

    def submit(
        self,
        subject: str,
        description: str = "",
        priority: TicketPriority = TicketPriority.MEDIUM,
    ) -> Ticket:
        """Create a ticket, showing it in the queue before the server confirms it.

        A failed submission is removed from the local queue and the error re-raised.
        """

        session = self.snapshot.session
        draft = TicketDraft(
            requester_id=session.key,
            requester_name=session.display_name,
            subject=(subject or "").strip(),
            description=description or "",
            priority=priority,
        )
        validate_draft(draft)

        placeholder = Ticket(
            id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}",
            requester_id=draft.requester_id,
            requester_name=draft.requester_name,
            subject=draft.subject,
            description=draft.description,
            status=TicketStatus.WAITING,
            priority=draft.priority,
            created_at=self._clock(),
        )
        with self._lock:
            current = self._snapshot
            self._publish(
                self._with_tickets(
                    current,
                    current.tickets + (placeholder,),
                    current.unsynced | {placeholder.id},
                )
            )

        try:
            created = self._client.create_ticket(draft)
        except HelpdeskError:
            self._replace_ticket(placeholder.id, None, synced=True)
            raise

        with self._lock:
            current = self._snapshot
            tickets = tuple(created if item.id == placeholder.id else item for item in current.tickets)
            self._publish(self._with_tickets(current, tickets, current.unsynced - {placeholder.id}))
        return created

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="helpdesk-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.refresh()
            except Exception:
                logger.exception("Queue refresh failed, retrying in %.1fs", self._interval)
            self._stop.wait(self._interval)

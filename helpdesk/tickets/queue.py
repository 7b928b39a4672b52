"""Queue ordering and statistics derived from the ticket collection.

Everything here is a pure function of its inputs: the ordered queue, positions
and aggregate statistics are recomputed on each refresh instead of being stored,
so they always agree with the ticket set they were derived from.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Iterable, Mapping, Sequence

from .models import Ticket
from .state import TicketStatus

DEFAULT_WAIT_MINUTES = 5
MIN_WAIT_MINUTES = 1


@dataclass(frozen=True, slots=True)
class QueuePartition:
    """Tickets split by lifecycle group; ``waiting`` is in service order."""

    waiting: tuple[Ticket, ...]
    in_progress: tuple[Ticket, ...]
    resolved: tuple[Ticket, ...]


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Aggregate figures shown to agents and requesters."""

    average_wait_minutes: int
    active_count: int
    completed_today_count: int


@dataclass(frozen=True, slots=True)
class StatsOptions:
    """Tunables for :func:`compute_stats`."""

    default_wait_minutes: int = DEFAULT_WAIT_MINUTES
    min_wait_minutes: int = MIN_WAIT_MINUTES
    tz: tzinfo = timezone.utc


@dataclass(frozen=True, slots=True)
class QueueView:
    """Everything a refresh derives from one ticket snapshot."""

    partition: QueuePartition
    stats: QueueStats
    positions: Mapping[str, int] = field(default_factory=dict)

    def position_of(self, ticket_id: str) -> int:
        return self.positions.get(ticket_id, 0)

    def estimated_wait_of(self, ticket_id: str) -> int:
        return estimated_wait_minutes(self.position_of(ticket_id), self.stats.average_wait_minutes)


def _sort_key(ticket: Ticket) -> tuple[int, datetime]:
    return (-ticket.priority.rank, ticket.created_at)


def order_waiting(tickets: Iterable[Ticket]) -> list[Ticket]:
    """Highest priority first, oldest first within a priority band.

    ``sorted`` is stable, so tickets with identical priority and ``created_at``
    keep their input order.
    """

    return sorted(tickets, key=_sort_key)


def partition(tickets: Iterable[Ticket]) -> QueuePartition:
    waiting: list[Ticket] = []
    in_progress: list[Ticket] = []
    resolved: list[Ticket] = []
    for ticket in tickets:
        if ticket.status == TicketStatus.WAITING:
            waiting.append(ticket)
        elif ticket.status == TicketStatus.IN_PROGRESS:
            in_progress.append(ticket)
        else:
            resolved.append(ticket)
    return QueuePartition(
        waiting=tuple(order_waiting(waiting)),
        in_progress=tuple(in_progress),
        resolved=tuple(resolved),
    )


def queue_position(ticket_id: str, waiting: Sequence[Ticket]) -> int:
    """Return the 1-based position of ``ticket_id`` in the ordered queue, 0 if absent."""

    for index, ticket in enumerate(order_waiting(waiting), start=1):
        if ticket.id == ticket_id:
            return index
    return 0


def estimated_wait_minutes(position: int, average_wait_minutes: int) -> int:
    """Linear estimate: every ticket ahead takes the average wait."""

    if position <= 0:
        return 0
    return max(1, position * average_wait_minutes)


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def average_wait_minutes(
    tickets: Iterable[Ticket],
    *,
    now: datetime,
    options: StatsOptions | None = None,
) -> int:
    """Mean time from submission to first response over completed tickets.

    Tickets completed without a recorded start fall back to ``completed_at``
    and then to ``now``.
    """

    options = options or StatsOptions()
    waits = [
        _minutes_between(ticket.created_at, ticket.started_at or ticket.completed_at or now)
        for ticket in tickets
        if ticket.status == TicketStatus.COMPLETED
    ]
    if not waits:
        return options.default_wait_minutes
    average = _round_half_up(sum(waits) / len(waits))
    return max(options.min_wait_minutes, average)


def _is_same_local_day(moment: datetime, reference: datetime, tz: tzinfo) -> bool:
    return moment.astimezone(tz).date() == reference.astimezone(tz).date()


def compute_stats(
    tickets: Iterable[Ticket],
    *,
    now: datetime | None = None,
    options: StatsOptions | None = None,
) -> QueueStats:
    options = options or StatsOptions()
    moment = now or datetime.now(timezone.utc)
    snapshot = list(tickets)

    active = sum(1 for ticket in snapshot if ticket.status.is_active)
    completed_today = sum(
        1
        for ticket in snapshot
        if ticket.status == TicketStatus.COMPLETED
        and ticket.completed_at is not None
        and _is_same_local_day(ticket.completed_at, moment, options.tz)
    )
    return QueueStats(
        average_wait_minutes=average_wait_minutes(snapshot, now=moment, options=options),
        active_count=active,
        completed_today_count=completed_today,
    )


def build_queue_view(
    tickets: Iterable[Ticket],
    *,
    now: datetime | None = None,
    options: StatsOptions | None = None,
) -> QueueView:
    snapshot = list(tickets)
    groups = partition(snapshot)
    positions = {ticket.id: index for index, ticket in enumerate(groups.waiting, start=1)}
    return QueueView(
        partition=groups,
        stats=compute_stats(snapshot, now=now, options=options),
        positions=positions,
    )


def requester_active_tickets(tickets: Iterable[Ticket], requester_id: str) -> list[Ticket]:
    """Waiting and in-progress tickets submitted by ``requester_id``, oldest first."""

    mine = [
        ticket
        for ticket in tickets
        if ticket.requester_id == requester_id and ticket.status.is_active
    ]
    return sorted(mine, key=lambda ticket: ticket.created_at)

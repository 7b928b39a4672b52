from __future__ import annotations

from enum import Enum
from typing import Mapping

from .errors import InvalidTransitionError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (TicketStatus.WAITING, TicketStatus.IN_PROGRESS)

    @classmethod
    def parse(cls, value: str) -> "TicketStatus":
        # Older clients sent the hyphenated spelling.
        return cls(str(value).strip().lower().replace("-", "_"))


class TicketPriority(str, Enum):
    """Requester-chosen urgency of a ticket."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: str | None, default: "TicketPriority | None" = None) -> "TicketPriority":
        fallback = default or cls.MEDIUM
        if not value:
            return fallback
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return fallback


PRIORITY_RANK: Mapping[TicketPriority, int] = {
    TicketPriority.URGENT: 4,
    TicketPriority.HIGH: 3,
    TicketPriority.MEDIUM: 2,
    TicketPriority.LOW: 1,
}


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    Completed and cancelled tickets are soft-terminal: both may be reopened. In
    permissive mode transitions outside the table are accepted and only the
    status is written.
    """

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.WAITING: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED}),
        TicketStatus.IN_PROGRESS: frozenset(
            {TicketStatus.WAITING, TicketStatus.COMPLETED, TicketStatus.CANCELLED}
        ),
        TicketStatus.COMPLETED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.WAITING}),
        TicketStatus.CANCELLED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.WAITING}),
    }

    def __init__(
        self,
        transitions: Mapping[TicketStatus, frozenset[TicketStatus]] | None = None,
        *,
        strict: bool = True,
    ) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS
        self.strict = strict

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.WAITING

    def is_defined(self, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        return new in self._transitions.get(current, frozenset())

    def can_transition(self, current: TicketStatus, new: TicketStatus) -> bool:
        return not self.strict or self.is_defined(current, new)

    def assert_transition(self, current: TicketStatus, new: TicketStatus) -> None:
        if not self.can_transition(current, new):
            raise InvalidTransitionError(
                f"Invalid ticket status transition: {current.value} -> {new.value}"
            )

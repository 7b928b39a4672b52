"""Ticket lifecycle, queue engine and store."""

from .errors import (
    AgentNotFoundError,
    HelpdeskError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailable,
    TicketAccessError,
    TicketNotEditableError,
    TicketNotFoundError,
    TriageUnavailable,
    ValidationError,
)
from .lifecycle import edit_waiting_ticket, reassign, transition
from .models import AgentRef, StatusChange, Ticket, TicketDraft
from .queue import (
    QueuePartition,
    QueueStats,
    QueueView,
    StatsOptions,
    build_queue_view,
    compute_stats,
    estimated_wait_minutes,
    order_waiting,
    partition,
    queue_position,
)
from .state import TicketPriority, TicketStateMachine, TicketStatus

__all__ = [
    "AgentNotFoundError",
    "AgentRef",
    "HelpdeskError",
    "InvalidTransitionError",
    "NotFoundError",
    "QueuePartition",
    "QueueStats",
    "QueueView",
    "StatsOptions",
    "StatusChange",
    "StoreUnavailable",
    "Ticket",
    "TicketAccessError",
    "TicketDraft",
    "TicketNotEditableError",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketStateMachine",
    "TicketStatus",
    "TriageUnavailable",
    "ValidationError",
    "build_queue_view",
    "compute_stats",
    "edit_waiting_ticket",
    "estimated_wait_minutes",
    "order_waiting",
    "partition",
    "queue_position",
    "reassign",
    "transition",
]

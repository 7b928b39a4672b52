from __future__ import annotations


class HelpdeskError(RuntimeError):
    """Base error for helpdesk queue issues."""


class ValidationError(HelpdeskError, ValueError):
    """Raised when required input is missing; the store is never called."""


class StoreUnavailable(HelpdeskError):
    """Raised when the backing store cannot be reached."""


class TriageUnavailable(HelpdeskError):
    """Raised when the triage function is unavailable or returns garbage."""


class NotFoundError(HelpdeskError, LookupError):
    """Raised when an operation targets a record that does not exist."""


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket could not be located."""


class AgentNotFoundError(NotFoundError):
    """Raised when an identity is not on the agent allow-list."""


class InvalidTransitionError(HelpdeskError, ValueError):
    """Raised when attempting a status change outside the lifecycle table."""


class TicketNotEditableError(HelpdeskError):
    """Raised when editing a ticket that is no longer waiting."""


class TicketAccessError(HelpdeskError, PermissionError):
    """Raised when a session acts on a ticket it does not own."""

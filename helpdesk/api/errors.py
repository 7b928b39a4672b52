from __future__ import annotations

from fastapi import HTTPException

from helpdesk.tickets.errors import (
    HelpdeskError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailable,
    TicketAccessError,
    TicketNotEditableError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[HelpdeskError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (InvalidTransitionError, 409),
    (TicketNotEditableError, 409),
    (TicketAccessError, 403),
    (StoreUnavailable, 503),
)


def to_http_exception(exc: HelpdeskError) -> HTTPException:
    """Translate a domain error into the matching HTTP error."""

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))

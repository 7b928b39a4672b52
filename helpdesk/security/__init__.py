"""Role resolution for helpdesk sessions."""

from .roles import (
    AgentAllowList,
    AppRole,
    SessionContext,
    normalise_identity,
    open_session,
    refresh_session,
    resolve_role,
)

__all__ = [
    "AgentAllowList",
    "AppRole",
    "SessionContext",
    "normalise_identity",
    "open_session",
    "refresh_session",
    "resolve_role",
]

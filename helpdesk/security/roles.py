"""Agent allow-list and session role resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

logger = logging.getLogger(__name__)


class AppRole(str, Enum):
    """Role a session acts under."""

    USER = "user"
    AGENT = "agent"


def normalise_identity(identity: str | None) -> str:
    """Identities compare case-insensitively and ignore surrounding whitespace."""

    return (identity or "").strip().lower()


def _matches_pattern(identity: str, pattern: str) -> bool:
    if not pattern:
        return False
    if pattern.startswith("*@"):
        return identity.endswith(pattern[1:])
    return identity == pattern


@dataclass(frozen=True)
class AgentAllowList:
    """Immutable set of identities authorised to act as agents.

    Entries of the form ``*@example.com`` grant every identity of that domain.
    """

    identities: frozenset[str] = frozenset()

    @classmethod
    def of(cls, identities: Iterable[str]) -> "AgentAllowList":
        return cls(frozenset(n for n in (normalise_identity(i) for i in identities) if n))

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, str):
            return False
        candidate = normalise_identity(identity)
        if not candidate:
            return False
        return any(_matches_pattern(candidate, pattern) for pattern in self.identities)

    def __len__(self) -> int:
        return len(self.identities)

    def sorted(self) -> list[str]:
        return sorted(self.identities)


def resolve_role(identity: str | None, allow_list: AgentAllowList) -> AppRole:
    """Return ``AppRole.AGENT`` when ``identity`` is on the allow-list."""

    return AppRole.AGENT if identity in allow_list else AppRole.USER


@dataclass(frozen=True)
class SessionContext:
    """Explicit per-request/per-client session state."""

    identity: str
    display_name: str
    role: AppRole = AppRole.USER
    is_admin: bool = False

    @property
    def is_agent(self) -> bool:
        return self.role == AppRole.AGENT

    @property
    def key(self) -> str:
        return normalise_identity(self.identity)


def open_session(
    identity: str,
    display_name: str | None,
    allow_list: AgentAllowList,
    *,
    admins: Iterable[str] = (),
) -> SessionContext:
    session = SessionContext(
        identity=identity.strip(),
        display_name=(display_name or "").strip() or identity.strip(),
        role=resolve_role(identity, allow_list),
        is_admin=normalise_identity(identity) in {normalise_identity(a) for a in admins},
    )
    logger.debug("Session opened for %s as %s", session.key, session.role.value)
    return session


def refresh_session(session: SessionContext, allow_list: AgentAllowList) -> SessionContext:
    """Re-evaluate the role of a live session against the current allow-list."""

    role = resolve_role(session.identity, allow_list)
    if role == session.role:
        return session
    logger.info("Role of %s changed: %s -> %s", session.key, session.role.value, role.value)
    return replace(session, role=role)

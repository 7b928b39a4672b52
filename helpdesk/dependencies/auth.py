from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from helpdesk.dependencies.tickets import get_helpdesk_service
from helpdesk.security.roles import AppRole, SessionContext
from helpdesk.tickets.errors import StoreUnavailable
from helpdesk.tickets.service import HelpdeskService

IDENTITY_HEADER = "X-Helpdesk-Identity"
NAME_HEADER = "X-Helpdesk-Name"


async def get_session(
    request: Request,
    service: Annotated[HelpdeskService, Depends(get_helpdesk_service)],
    identity: Annotated[str | None, Header(alias=IDENTITY_HEADER)] = None,
    display_name: Annotated[str | None, Header(alias=NAME_HEADER)] = None,
) -> SessionContext:
    """Resolve the calling session from the hosting platform's identity headers.

    The role is looked up against the stored allow-list on every request so that
    agents added or removed while a client is connected take effect immediately.
    """

    cached = getattr(request.state, "session", None)
    if isinstance(cached, SessionContext):
        return cached

    if not identity or not identity.strip():
        raise HTTPException(status_code=401, detail="Missing identity")

    try:
        session = await service.resolve_session(identity, display_name)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    request.state.session = session
    return session


def role_required(role: AppRole) -> Callable[[SessionContext], SessionContext]:
    """Dependency factory ensuring the current session acts under ``role``."""

    async def dependency(session: Annotated[SessionContext, Depends(get_session)]) -> SessionContext:
        if session.role != role:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return session

    return dependency


async def require_admin(session: Annotated[SessionContext, Depends(get_session)]) -> SessionContext:
    if not session.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return session


require_agent = role_required(AppRole.AGENT)

CurrentSession = Annotated[SessionContext, Depends(get_session)]
AgentSession = Annotated[SessionContext, Depends(require_agent)]
AdminSession = Annotated[SessionContext, Depends(require_admin)]

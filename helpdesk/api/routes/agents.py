from __future__ import annotations

from fastapi import APIRouter, Response, status

from helpdesk.api.errors import to_http_exception
from helpdesk.api.schemas import AgentCreateRequest, AgentListResponse
from helpdesk.dependencies.auth import AdminSession, CurrentSession
from helpdesk.dependencies.tickets import HelpdeskServiceDep
from helpdesk.tickets.errors import HelpdeskError

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", response_model=AgentListResponse)
async def list_agents(service: HelpdeskServiceDep, _: CurrentSession) -> AgentListResponse:
    try:
        agents = await service.list_agents()
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    return AgentListResponse(agents=agents)


@router.post("", response_model=AgentListResponse)
async def add_agent(
    payload: AgentCreateRequest,
    service: HelpdeskServiceDep,
    session: AdminSession,
    response: Response,
) -> AgentListResponse:
    try:
        added = await service.add_agent(payload.identity, session)
        agents = await service.list_agents()
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc
    response.status_code = status.HTTP_201_CREATED if added else status.HTTP_200_OK
    return AgentListResponse(agents=agents)


@router.delete("/{agent_identity}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_agent(agent_identity: str, service: HelpdeskServiceDep, session: AdminSession) -> None:
    try:
        await service.remove_agent(agent_identity, session)
    except HelpdeskError as exc:
        raise to_http_exception(exc) from exc

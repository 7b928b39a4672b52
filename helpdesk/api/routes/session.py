from fastapi import APIRouter

from helpdesk.api.schemas import SessionResponse
from helpdesk.dependencies.auth import CurrentSession

router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionResponse, summary="Role of the calling identity")
async def get_session_info(session: CurrentSession) -> SessionResponse:
    return SessionResponse.model_validate(session)

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.tickets.service import HelpdeskService


async def get_helpdesk_service(request: Request) -> HelpdeskService:
    service = getattr(request.app.state, "helpdesk_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Helpdesk service is not configured")
    return service


HelpdeskServiceDep = Annotated[HelpdeskService, Depends(get_helpdesk_service)]

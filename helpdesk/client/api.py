from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from helpdesk.api.schemas import SessionResponse, TicketResponse
from helpdesk.dependencies.auth import IDENTITY_HEADER, NAME_HEADER
from helpdesk.tickets.errors import (
    AgentNotFoundError,
    HelpdeskError,
    InvalidTransitionError,
    StoreUnavailable,
    TicketAccessError,
    TicketNotEditableError,
    TicketNotFoundError,
    ValidationError,
)
from helpdesk.tickets.models import StatusChange, Ticket, TicketDraft
from helpdesk.tickets.state import TicketPriority, TicketStatus


class APIError(HelpdeskError):
    """Unexpected response from the helpdesk API."""

    def __init__(self, message: str, *, status_code: int | None = None, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown server error"

    if isinstance(data, Mapping):
        detail = data.get("detail")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, Mapping) and "msg" in detail:
            return str(detail["msg"])
        if isinstance(detail, list) and detail and isinstance(detail[0], Mapping) and "msg" in detail[0]:
            return str(detail[0]["msg"])
    return "The request could not be completed"


def _error_for(method: str, path: str, response: httpx.Response) -> HelpdeskError:
    """Map an error response back onto the domain exception the server raised."""

    message = _extract_error_message(response)
    code = response.status_code
    if code == 404:
        if path.startswith("/agents"):
            return AgentNotFoundError(message)
        return TicketNotFoundError(message)
    if code in (400, 422):
        return ValidationError(message)
    if code == 409:
        if method == "PATCH":
            return TicketNotEditableError(message)
        return InvalidTransitionError(message)
    if code in (401, 403):
        return TicketAccessError(message)
    if code >= 500:
        return StoreUnavailable(message)
    return APIError(message, status_code=code, response=response)


def _to_ticket(data: Any) -> Ticket:
    try:
        return TicketResponse.model_validate(data).to_ticket()
    except ValueError as exc:
        raise StoreUnavailable(f"Malformed ticket payload: {exc}") from exc


def _to_agents(data: Any) -> list[str]:
    if not isinstance(data, Mapping):
        raise StoreUnavailable("Malformed agent list payload")
    return [str(item) for item in data.get("agents", [])]


@dataclass(slots=True)
class HelpdeskAPIClient:
    """Synchronous client exposing the ticket store over the HTTP API."""

    base_url: str
    identity: str
    display_name: str | None = None
    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._build_url(path)
        headers: dict[str, str] = {"Accept": "application/json", IDENTITY_HEADER: self.identity}
        if self.display_name:
            headers[NAME_HEADER] = self.display_name
        headers.update(kwargs.pop("headers", {}))

        try:
            with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
                response = client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Helpdesk API request failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_for(method, path, response)

        if response.status_code == 204 or not response.content:
            return None

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError as exc:
                raise StoreUnavailable(f"Malformed response from {path}: {exc}") from exc
        return response.text

    def _build_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url.rstrip('/')}{normalized}"

    # Health and session
    def ping(self) -> Mapping[str, Any]:
        return self._request("GET", "/ping")

    def get_session(self) -> SessionResponse:
        return SessionResponse.model_validate(self._request("GET", "/session"))

    # Tickets
    def list_tickets(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        params = {"status": status.value} if status is not None else None
        data = self._request("GET", "/tickets", params=params)
        return [_to_ticket(item) for item in data or []]

    def get_ticket(self, ticket_id: str) -> Ticket:
        return _to_ticket(self._request("GET", f"/tickets/{ticket_id}"))

    def create_ticket(self, draft: TicketDraft) -> Ticket:
        """Submit a draft; the requester is whoever this client authenticates as."""

        payload = {
            "subject": draft.subject,
            "description": draft.description,
            "priority": draft.priority.value,
        }
        return _to_ticket(self._request("POST", "/tickets", json=payload))

    def change_status(self, ticket_id: str, status: TicketStatus) -> Ticket:
        payload = {"status": status.value}
        return _to_ticket(self._request("POST", f"/tickets/{ticket_id}/status", json=payload))

    def update_ticket_status(self, ticket_id: str, change: StatusChange) -> bool:
        """Send only ``change.status``.

        The server derives the agent and timestamps from its own transition
        rules, so the remaining fields of ``change`` are not transmitted.
        """

        self.change_status(ticket_id, change.status)
        return True

    def edit_ticket(
        self,
        ticket_id: str,
        *,
        subject: str | None = None,
        description: str | None = None,
        priority: TicketPriority | None = None,
    ) -> Ticket:
        payload: dict[str, Any] = {}
        if subject is not None:
            payload["subject"] = subject
        if description is not None:
            payload["description"] = description
        if priority is not None:
            payload["priority"] = priority.value
        return _to_ticket(self._request("PATCH", f"/tickets/{ticket_id}", json=payload))

    def reassign(self, ticket_id: str, agent_identity: str) -> Ticket:
        payload = {"agent": agent_identity}
        return _to_ticket(self._request("PUT", f"/tickets/{ticket_id}/agent", json=payload))

    # Agent allow-list
    def list_agents(self) -> list[str]:
        return _to_agents(self._request("GET", "/agents"))

    def add_agent(self, identity: str) -> list[str]:
        return _to_agents(self._request("POST", "/agents", json={"identity": identity}))

    def remove_agent(self, identity: str) -> None:
        self._request("DELETE", f"/agents/{quote(identity, safe='')}")

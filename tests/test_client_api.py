from __future__ import annotations

import json

import httpx
import pytest

from helpdesk.client.api import APIError, HelpdeskAPIClient
from helpdesk.tickets.errors import (
    AgentNotFoundError,
    InvalidTransitionError,
    StoreUnavailable,
    TicketAccessError,
    TicketNotEditableError,
    TicketNotFoundError,
    ValidationError,
)
from helpdesk.tickets.models import StatusChange, TicketDraft
from helpdesk.tickets.state import TicketPriority, TicketStatus

TICKET_JSON = {
    "id": "t-1",
    "requester_id": "alice@example.com",
    "requester_name": "Alice",
    "subject": "Printer jammed",
    "description": "",
    "status": "waiting",
    "priority": "high",
    "category": "Hardware",
    "ai_summary": None,
    "created_at": "2024-03-04T09:00:00+00:00",
    "started_at": None,
    "completed_at": None,
    "agent_id": None,
    "agent_name": None,
}


def _client(handler, **kwargs) -> HelpdeskAPIClient:
    return HelpdeskAPIClient(
        base_url="http://helpdesk.test/",
        identity="alice@example.com",
        display_name="Alice",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_requests_carry_identity_headers():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[TICKET_JSON])

    tickets = _client(handler).list_tickets(status=TicketStatus.WAITING)

    assert tickets[0].id == "t-1"
    assert tickets[0].priority == TicketPriority.HIGH
    assert tickets[0].created_at.tzinfo is not None
    request = seen[0]
    assert request.url.path == "/tickets"
    assert request.url.params["status"] == "waiting"
    assert request.headers["X-Helpdesk-Identity"] == "alice@example.com"
    assert request.headers["X-Helpdesk-Name"] == "Alice"


def test_create_ticket_posts_draft_fields():
    payloads: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(201, json=TICKET_JSON)

    draft = TicketDraft(
        requester_id="alice@example.com",
        requester_name="Alice",
        subject="Printer jammed",
        priority=TicketPriority.HIGH,
    )
    ticket = _client(handler).create_ticket(draft)

    assert ticket.category == "Hardware"
    assert payloads == [{"subject": "Printer jammed", "description": "", "priority": "high"}]


def test_update_ticket_status_sends_status_only():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={**TICKET_JSON, "status": "cancelled"})

    change = StatusChange(
        status=TicketStatus.CANCELLED, agent_id=None, agent_name=None, started_at=None, completed_at=None
    )

    assert _client(handler).update_ticket_status("t-1", change) is True
    assert requests[0].method == "POST"
    assert requests[0].url.path == "/tickets/t-1/status"
    assert json.loads(requests[0].content) == {"status": "cancelled"}


def test_edit_ticket_omits_unset_fields():
    payloads: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json=TICKET_JSON)

    _client(handler).edit_ticket("t-1", priority=TicketPriority.URGENT)

    assert payloads == [{"priority": "urgent"}]


def test_agent_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"agents": ["bob@example.com"]})

    client = _client(handler)

    assert client.list_agents() == ["bob@example.com"]
    assert client.add_agent("bob@example.com") == ["bob@example.com"]
    assert client.remove_agent("bob@example.com") is None


@pytest.mark.parametrize(
    ("method", "status_code", "error"),
    [
        ("get_ticket", 404, TicketNotFoundError),
        ("get_ticket", 503, StoreUnavailable),
        ("get_ticket", 403, TicketAccessError),
        ("get_ticket", 418, APIError),
    ],
)
def test_error_responses_map_to_domain_errors(method, status_code, error):
    client = _client(lambda request: httpx.Response(status_code, json={"detail": "nope"}))

    with pytest.raises(error) as exc:
        getattr(client, method)("t-1")
    assert "nope" in str(exc.value)


def test_status_conflicts_and_validation():
    client = _client(lambda request: httpx.Response(409, json={"detail": "conflict"}))
    with pytest.raises(InvalidTransitionError):
        client.change_status("t-1", TicketStatus.COMPLETED)
    with pytest.raises(TicketNotEditableError):
        client.edit_ticket("t-1", subject="New")

    invalid = _client(
        lambda request: httpx.Response(422, json={"detail": [{"msg": "field required"}]})
    )
    with pytest.raises(ValidationError) as exc:
        invalid.change_status("t-1", TicketStatus.COMPLETED)
    assert "field required" in str(exc.value)


def test_missing_agent_maps_to_agent_not_found():
    client = _client(lambda request: httpx.Response(404, json={"detail": "Agent not found"}))
    with pytest.raises(AgentNotFoundError):
        client.remove_agent("ghost@example.com")


def test_malformed_success_body_is_store_unavailable():
    gateway_page = _client(
        lambda request: httpx.Response(
            200, headers={"Content-Type": "application/json"}, content=b"<html>Bad gateway</html>"
        )
    )
    with pytest.raises(StoreUnavailable):
        gateway_page.list_tickets()

    broken_ticket = _client(lambda request: httpx.Response(200, json=[{**TICKET_JSON, "status": "lost"}]))
    with pytest.raises(StoreUnavailable):
        broken_ticket.list_tickets()

    wrong_shape = _client(lambda request: httpx.Response(200, json=["bob@example.com"]))
    with pytest.raises(StoreUnavailable):
        wrong_shape.list_agents()


def test_remove_agent_quotes_identity():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    _client(handler).remove_agent("ops#1?@example.com")

    assert seen[0].url.path == "/agents/ops#1?@example.com"
    assert not seen[0].url.query


def test_transport_failure_is_store_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StoreUnavailable):
        _client(handler).list_tickets()


def test_get_session_parses_role():
    client = _client(
        lambda request: httpx.Response(
            200,
            json={"identity": "alice@example.com", "display_name": "Alice", "role": "user", "is_admin": False},
        )
    )

    session = client.get_session()

    assert session.role.value == "user"

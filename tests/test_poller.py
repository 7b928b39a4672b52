from __future__ import annotations

import json
import threading
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from helpdesk.api.schemas import to_ticket_response
from helpdesk.client.poller import LOCAL_ID_PREFIX, QueuePoller
from helpdesk.core.config import Settings
from helpdesk.security.roles import AppRole
from helpdesk.tickets.errors import (
    InvalidTransitionError,
    StoreUnavailable,
    TicketNotFoundError,
    ValidationError,
)
from helpdesk.tickets.state import TicketPriority, TicketStatus

NOW = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


class FakeClient:
    def __init__(self, tickets=(), agents=()):
        self.identity = "bob@example.com"
        self.display_name = "Bob"
        self.tickets = list(tickets)
        self.agents = list(agents)
        self.list_tickets = MagicMock(side_effect=lambda: list(self.tickets))
        self.list_agents = MagicMock(side_effect=lambda: list(self.agents))
        self.change_status = MagicMock()
        self.edit_ticket = MagicMock()
        self.create_ticket = MagicMock()


def _poller(client: FakeClient, **kwargs) -> QueuePoller:
    return QueuePoller(client, interval=0.01, clock=lambda: NOW, **kwargs)


def _ticket_json(ticket) -> dict:
    return to_ticket_response(ticket).model_dump(mode="json")


def test_refresh_builds_snapshot_and_resolves_role(make_ticket):
    waiting = make_ticket(minute=0)
    urgent = make_ticket(minute=1, priority=TicketPriority.URGENT)
    client = FakeClient([waiting, urgent], agents=["BOB@example.com"])
    poller = _poller(client)
    assert poller.snapshot.session.role == AppRole.USER

    snapshot = poller.refresh()

    assert snapshot.session.role == AppRole.AGENT
    assert [t.id for t in snapshot.view.partition.waiting] == [urgent.id, waiting.id]
    assert snapshot.fetched_at == NOW
    assert not snapshot.offline


def test_refresh_promotes_and_demotes_live_session(make_ticket):
    client = FakeClient([make_ticket()])
    poller = _poller(client)

    assert poller.refresh().session.role == AppRole.USER
    client.agents = ["bob@example.com"]
    assert poller.refresh().session.role == AppRole.AGENT
    client.agents = []
    assert poller.refresh().session.role == AppRole.USER


def test_refresh_keeps_last_known_good_snapshot_when_offline(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket])
    poller = _poller(client)
    poller.refresh()

    client.list_tickets.side_effect = StoreUnavailable("database down")
    snapshot = poller.refresh()

    assert snapshot.offline
    assert [t.id for t in snapshot.tickets] == [ticket.id]

    client.list_tickets.side_effect = lambda: [ticket]
    assert not poller.refresh().offline


def test_apply_transition_confirms_with_server_value(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket], agents=["bob@example.com"])
    confirmed = replace(
        ticket,
        status=TicketStatus.IN_PROGRESS,
        agent_id="bob@example.com",
        agent_name="Bob",
        started_at=NOW,
    )
    client.change_status.return_value = confirmed
    poller = _poller(client)
    poller.refresh()

    result = poller.apply_transition(ticket.id, TicketStatus.IN_PROGRESS)

    assert result == confirmed
    assert poller.snapshot.find(ticket.id) == confirmed
    assert poller.snapshot.unsynced == frozenset()
    assert poller.snapshot.view.stats.active_count == 1
    client.change_status.assert_called_once_with(ticket.id, TicketStatus.IN_PROGRESS)


def test_apply_transition_stays_unsynced_when_store_unavailable(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket], agents=["bob@example.com"])
    client.change_status.side_effect = StoreUnavailable("database down")
    poller = _poller(client)
    poller.refresh()

    tentative = poller.apply_transition(ticket.id, TicketStatus.IN_PROGRESS)

    snapshot = poller.snapshot
    assert tentative.status == TicketStatus.IN_PROGRESS
    assert tentative.agent_id == "bob@example.com"
    assert snapshot.find(ticket.id) == tentative
    assert ticket.id in snapshot.unsynced
    assert snapshot.offline

    # the next successful poll replaces local state with the server's
    refreshed = poller.refresh()
    assert refreshed.find(ticket.id) == ticket
    assert refreshed.unsynced == frozenset()


def test_apply_transition_reverts_when_server_rejects(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket], agents=["bob@example.com"])
    client.change_status.side_effect = TicketNotFoundError("gone")
    poller = _poller(client)
    poller.refresh()

    with pytest.raises(TicketNotFoundError):
        poller.apply_transition(ticket.id, TicketStatus.CANCELLED)

    assert poller.snapshot.find(ticket.id) == ticket
    assert poller.snapshot.unsynced == frozenset()


def test_invalid_transition_rejected_locally(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket], agents=["bob@example.com"])
    poller = _poller(client)
    poller.refresh()

    with pytest.raises(InvalidTransitionError):
        poller.apply_transition(ticket.id, TicketStatus.COMPLETED)
    with pytest.raises(TicketNotFoundError):
        poller.apply_transition("unknown", TicketStatus.CANCELLED)
    client.change_status.assert_not_called()


def test_edit_is_applied_optimistically(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket])
    client.edit_ticket.side_effect = StoreUnavailable("database down")
    poller = _poller(client)
    poller.refresh()

    edited = poller.edit(ticket.id, priority=TicketPriority.URGENT)

    assert edited.priority == TicketPriority.URGENT
    assert poller.snapshot.find(ticket.id).priority == TicketPriority.URGENT
    assert ticket.id in poller.snapshot.unsynced


def test_submit_replaces_placeholder_with_created_ticket(make_ticket):
    created = make_ticket(requester_id="bob@example.com")
    client = FakeClient()
    seen_during_submit = []

    def create(draft):
        seen_during_submit.append(poller.snapshot)
        return created

    client.create_ticket.side_effect = create
    poller = _poller(client)
    poller.refresh()

    result = poller.submit("Printer jammed", priority=TicketPriority.HIGH)

    pending = seen_during_submit[0]
    assert len(pending.tickets) == 1
    assert pending.tickets[0].id.startswith(LOCAL_ID_PREFIX)
    assert pending.tickets[0].id in pending.unsynced
    assert pending.view.position_of(pending.tickets[0].id) == 1
    assert result == created
    assert poller.snapshot.tickets == (created,)
    assert poller.snapshot.unsynced == frozenset()


def test_failed_submit_is_rolled_back():
    client = FakeClient()
    client.create_ticket.side_effect = StoreUnavailable("database down")
    poller = _poller(client)
    poller.refresh()

    with pytest.raises(StoreUnavailable):
        poller.submit("Printer jammed")

    assert poller.snapshot.tickets == ()
    assert poller.snapshot.unsynced == frozenset()


def test_submit_validation_never_calls_server():
    client = FakeClient()
    poller = _poller(client)

    with pytest.raises(ValidationError):
        poller.submit("   ")
    client.create_ticket.assert_not_called()


def test_background_polling_stops_on_teardown(make_ticket):
    client = FakeClient([make_ticket()])
    refreshed = threading.Event()
    poller = _poller(client, on_change=lambda snapshot: refreshed.set())

    poller.start()
    try:
        assert refreshed.wait(timeout=2)
        assert poller.running
    finally:
        poller.stop(timeout=2)

    assert not poller.running
    assert client.list_tickets.call_count >= 1


def test_polling_survives_unexpected_refresh_errors(make_ticket):
    ticket = make_ticket()
    client = FakeClient([ticket])
    calls = []

    def list_tickets():
        calls.append(None)
        if len(calls) == 1:
            raise RuntimeError("unexpected payload")
        return [ticket]

    client.list_tickets.side_effect = list_tickets
    refreshed = threading.Event()
    poller = _poller(client, on_change=lambda snapshot: refreshed.set())

    poller.start()
    try:
        assert refreshed.wait(timeout=2)
        assert poller.running
    finally:
        poller.stop(timeout=2)

    assert poller.snapshot.tickets == (ticket,)
    assert len(calls) >= 2


def test_gateway_page_marks_snapshot_offline(make_ticket):
    ticket = make_ticket()
    responses = {"healthy": True}

    def handler(request: httpx.Request) -> httpx.Response:
        if not responses["healthy"]:
            return httpx.Response(200, headers={"Content-Type": "application/json"}, content=b"<html>")
        if request.url.path == "/agents":
            return httpx.Response(200, json={"agents": []})
        return httpx.Response(200, json=[_ticket_json(ticket)])

    settings = Settings(_env_file=None, api_base_url="http://helpdesk.test")
    poller = QueuePoller.from_settings(settings, "bob@example.com", "Bob", transport=httpx.MockTransport(handler))
    poller.refresh()

    responses["healthy"] = False
    snapshot = poller.refresh()

    assert snapshot.offline
    assert snapshot.tickets == (ticket,)


def test_from_settings_follows_permissive_transitions(make_ticket):
    ticket = make_ticket()
    pushed: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/agents":
            return httpx.Response(200, json={"agents": ["bob@example.com"]})
        if request.method == "POST":
            pushed.append(json.loads(request.content))
            return httpx.Response(200, json={**_ticket_json(ticket), "status": "completed"})
        return httpx.Response(200, json=[_ticket_json(ticket)])

    settings = Settings(_env_file=None, api_base_url="http://helpdesk.test", strict_transitions=False)
    poller = QueuePoller.from_settings(settings, "bob@example.com", "Bob", transport=httpx.MockTransport(handler))
    poller.refresh()

    result = poller.apply_transition(ticket.id, TicketStatus.COMPLETED)

    assert result.status == TicketStatus.COMPLETED
    assert pushed == [{"status": "completed"}]

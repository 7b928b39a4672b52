from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from helpdesk.tickets.models import Ticket
from helpdesk.tickets.state import TicketPriority, TicketStatus

BASE_TIME = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def make_ticket():
    """Factory building tickets whose ``created_at`` is minutes after ``BASE_TIME``."""

    ids = count(1)

    def factory(
        *,
        minute: float = 0,
        status: TicketStatus = TicketStatus.WAITING,
        priority: TicketPriority = TicketPriority.MEDIUM,
        requester_id: str = "alice@example.com",
        **overrides,
    ) -> Ticket:
        fields = {
            "id": f"t-{next(ids)}",
            "requester_id": requester_id,
            "requester_name": requester_id.split("@")[0].title(),
            "subject": "Printer jammed",
            "description": "",
            "status": status,
            "priority": priority,
            "created_at": BASE_TIME + timedelta(minutes=minute),
        }
        fields.update(overrides)
        return Ticket(**fields)

    return factory

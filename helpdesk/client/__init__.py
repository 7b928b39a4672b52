"""Polling client for the helpdesk API."""

from .api import APIError, HelpdeskAPIClient
from .poller import QueuePoller, QueueSnapshot

__all__ = ["APIError", "HelpdeskAPIClient", "QueuePoller", "QueueSnapshot"]

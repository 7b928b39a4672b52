"""Database models and utilities."""

from .models import AgentTable, TicketTable

__all__ = ["AgentTable", "TicketTable"]

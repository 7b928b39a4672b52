"""SQLModel table definitions for the helpdesk store."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class TicketTable(SQLModel, table=True):
    """Support requests submitted to the queue."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    requester_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    requester_name: str = Field(sa_column=Column(String(255), nullable=False))
    subject: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(32), nullable=False, index=True))
    priority: str = Field(sa_column=Column(String(32), nullable=False))
    category: str = Field(default="General", sa_column=Column(String(100), nullable=False))
    ai_summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    agent_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    agent_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))


class AgentTable(SQLModel, table=True):
    """Identities allowed to work the queue."""

    __tablename__ = "helpdesk_agents"

    identity: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))

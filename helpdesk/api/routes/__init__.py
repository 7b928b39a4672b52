"""Route modules exposed by the API package."""

from . import agents, ping, session, tickets

__all__ = ["agents", "ping", "session", "tickets"]

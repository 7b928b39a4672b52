"""Top-level package for the internal helpdesk queue."""

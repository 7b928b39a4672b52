"""HTTP surface of the helpdesk queue."""

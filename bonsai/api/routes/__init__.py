"""Route modules exposed by the API package."""

from . import audit, comments, documents, personas, ping, tickets

__all__ = ["audit", "comments", "documents", "personas", "ping", "tickets"]

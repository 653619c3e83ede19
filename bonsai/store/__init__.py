"""Persistence backends for tickets, documents, comments and audit events."""

from .base import EntityStore
from .memory import InMemoryEntityStore
from .sql import SqlEntityStore, to_async_dsn

__all__ = ["EntityStore", "InMemoryEntityStore", "SqlEntityStore", "to_async_dsn"]

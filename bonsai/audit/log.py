"""Append-only audit trail written by the workflow, document and dispatch layers."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from .models import Actor, AuditEvent, AuditEventName

if TYPE_CHECKING:
    from bonsai.store.base import EntityStore

logger = logging.getLogger(__name__)


class AuditLog:
    """Record and read ticket audit events.

    Events are never updated. :meth:`clear` is a maintenance action for the
    admin surface only; no other component calls it.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def record(
        self,
        ticket_id: str,
        event: AuditEventName | str,
        actor: Actor,
        detail: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        name = event.value if isinstance(event, AuditEventName) else str(event)
        entry = AuditEvent(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            event=name,
            actor_type=actor.type,
            actor_id=actor.id,
            actor_name=actor.name,
            detail=detail,
            metadata=dict(metadata or {}),
            created_at=datetime.now(timezone.utc),
        )
        await self._store.append_audit_event(entry)
        logger.debug("Audit %s on ticket %s by %s: %s", name, ticket_id, actor.name, detail)
        return entry

    async def events(self, ticket_id: str) -> Sequence[AuditEvent]:
        return await self._store.list_audit_events(ticket_id)

    async def clear(self, ticket_id: str) -> int:
        removed = await self._store.delete_audit_events(ticket_id)
        logger.info("Cleared %d audit events for ticket %s", removed, ticket_id)
        return removed

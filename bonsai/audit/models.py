from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from bonsai.tickets.models import ActorType


class AuditEventName(str, Enum):
    """Names of the events written to a ticket's audit trail."""

    TICKET_CREATED = "ticket_created"
    TICKET_DELETED = "ticket_deleted"
    STATE_CHANGED = "state_changed"
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_APPROVED = "document_approved"
    APPROVAL_REVOKED = "approval_revoked"
    DOCUMENT_DELETED = "document_deleted"
    COMMENT_ADDED = "comment_added"
    DISPATCH_ATTEMPTED = "dispatch_attempted"
    TICKET_SHIPPED = "ticket_shipped"
    SHIP_FAILED = "ship_failed"


@dataclass(frozen=True, slots=True)
class Actor:
    type: ActorType
    id: str | None
    name: str

    @classmethod
    def system(cls, name: str = "System") -> "Actor":
        return cls(type=ActorType.SYSTEM, id=None, name=name)


@dataclass(slots=True)
class AuditEvent:
    """History entry describing a discrete ticket action."""

    id: str
    ticket_id: str
    event: str
    actor_type: ActorType
    actor_id: str | None
    actor_name: str
    detail: str
    created_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from .state import TicketState


class TicketType(str, Enum):
    FEATURE = "feature"
    BUG = "bug"
    CHORE = "chore"


class ActorType(str, Enum):
    """Who authored a comment or caused an audited action."""

    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a unit of work on the board."""

    id: str
    title: str
    type: TicketType
    state: TicketState
    description: str
    acceptance_criteria: str
    created_at: datetime
    updated_at: datetime
    is_epic: bool = False
    parent_epic_id: str | None = None
    revision: int = 1


@dataclass(frozen=True, slots=True)
class Attachment:
    name: str
    mime_type: str
    data: str


@dataclass(slots=True)
class Comment:
    """Immutable message in either the ticket thread or one document's thread."""

    id: str
    ticket_id: str
    author_type: ActorType
    author_id: str | None
    content: str
    created_at: datetime
    document_id: str | None = None
    attachments: Sequence[Attachment] = field(default_factory=tuple)

    @property
    def scope(self) -> tuple[str, str | None]:
        return (self.ticket_id, self.document_id)

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DocumentType(str, Enum):
    """Kinds of versioned work artifacts attached to a ticket."""

    RESEARCH = "research"
    IMPLEMENTATION_PLAN = "implementation_plan"
    DESIGN = "design"
    SECURITY_REVIEW = "security_review"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    DocumentType.RESEARCH: "research document",
    DocumentType.IMPLEMENTATION_PLAN: "implementation plan",
    DocumentType.DESIGN: "design document",
    DocumentType.SECURITY_REVIEW: "security review",
}


@dataclass(slots=True)
class Document:
    """One immutable version of a ticket artifact."""

    id: str
    ticket_id: str
    type: DocumentType
    version: int
    content: str
    author_id: str | None
    created_at: datetime
    updated_at: datetime
    approved: bool = False
    approved_at: datetime | None = None
    approved_by: str | None = None

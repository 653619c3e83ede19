from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from bonsai.audit.models import AuditEvent
from bonsai.dispatch.mentions import Persona
from bonsai.documents.models import Document, DocumentType
from bonsai.tickets.models import Comment, Ticket
from bonsai.tickets.state import TicketState


class EntityStore(Protocol):
    """Persistence contract for tickets, documents, comments and audit events.

    Implementations raise :class:`~bonsai.errors.VersionConflict` when a
    ``(ticket, type, version)`` triple already exists, and
    :class:`~bonsai.errors.StaleTicketError` when a ticket's revision moved
    between read and write. Clearing approvals or deleting documents bumps the
    owning ticket's revision in the same write, so a transition gated on the
    old documents fails as stale.
    """

    async def ensure_schema(self) -> None:
        ...

    async def create_ticket(self, ticket: Ticket) -> None:
        ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def list_tickets(
        self, *, state: TicketState | None = None, parent_epic_id: str | None = None
    ) -> Sequence[Ticket]:
        ...

    async def update_ticket_state(
        self,
        ticket_id: str,
        *,
        state: TicketState,
        expected_revision: int,
        updated_at: datetime,
    ) -> Ticket | None:
        ...

    async def delete_ticket(self, ticket_id: str) -> bool:
        ...

    async def insert_document(self, document: Document) -> None:
        ...

    async def max_document_version(self, ticket_id: str, doc_type: DocumentType) -> int:
        ...

    async def get_document(self, ticket_id: str, doc_type: DocumentType, version: int) -> Document | None:
        ...

    async def latest_document(self, ticket_id: str, doc_type: DocumentType) -> Document | None:
        ...

    async def list_documents(self, ticket_id: str, doc_type: DocumentType | None = None) -> Sequence[Document]:
        ...

    async def approve_document(
        self, document_id: str, *, approved_at: datetime, approved_by: str | None
    ) -> Document | None:
        ...

    async def clear_document_approval(self, ticket_id: str, doc_type: DocumentType) -> int:
        ...

    async def delete_documents_of_type(self, ticket_id: str, doc_type: DocumentType) -> int:
        ...

    async def create_comment(self, comment: Comment) -> None:
        ...

    async def list_comments(self, ticket_id: str, document_id: str | None = None) -> Sequence[Comment]:
        ...

    async def append_audit_event(self, event: AuditEvent) -> None:
        ...

    async def list_audit_events(self, ticket_id: str) -> Sequence[AuditEvent]:
        ...

    async def delete_audit_events(self, ticket_id: str) -> int:
        ...

    async def save_persona(self, persona: Persona) -> None:
        ...

    async def list_personas(self) -> Sequence[Persona]:
        ...

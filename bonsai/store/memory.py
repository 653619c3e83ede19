from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Sequence

from bonsai.audit.models import AuditEvent
from bonsai.dispatch.mentions import Persona
from bonsai.documents.models import Document, DocumentType
from bonsai.errors import StaleTicketError, VersionConflict
from bonsai.tickets.models import Comment, Ticket
from bonsai.tickets.state import TicketState


class InMemoryEntityStore:
    """Process-local store used by embedded hosts and the test-suite.

    Every read returns a copy so callers cannot mutate stored rows. All
    methods run without awaiting in between, which makes each one atomic on
    a single event loop.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._documents: dict[str, Document] = {}
        self._comments: list[Comment] = []
        self._audit: list[AuditEvent] = []
        self._personas: dict[str, Persona] = {}

    async def ensure_schema(self) -> None:
        return None

    async def create_ticket(self, ticket: Ticket) -> None:
        self._tickets[ticket.id] = replace(ticket)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return replace(ticket) if ticket is not None else None

    async def list_tickets(
        self, *, state: TicketState | None = None, parent_epic_id: str | None = None
    ) -> Sequence[Ticket]:
        rows = [
            replace(ticket)
            for ticket in self._tickets.values()
            if (state is None or ticket.state == state)
            and (parent_epic_id is None or ticket.parent_epic_id == parent_epic_id)
        ]
        rows.sort(key=lambda ticket: ticket.created_at, reverse=True)
        return rows

    async def update_ticket_state(
        self,
        ticket_id: str,
        *,
        state: TicketState,
        expected_revision: int,
        updated_at: datetime,
    ) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            return None
        if ticket.revision != expected_revision:
            raise StaleTicketError(ticket_id)
        ticket.state = state
        ticket.updated_at = updated_at
        ticket.revision += 1
        return replace(ticket)

    async def delete_ticket(self, ticket_id: str) -> bool:
        if self._tickets.pop(ticket_id, None) is None:
            return False
        self._documents = {key: doc for key, doc in self._documents.items() if doc.ticket_id != ticket_id}
        self._comments = [comment for comment in self._comments if comment.ticket_id != ticket_id]
        return True

    async def insert_document(self, document: Document) -> None:
        for existing in self._documents.values():
            if (
                existing.ticket_id == document.ticket_id
                and existing.type == document.type
                and existing.version == document.version
            ):
                raise VersionConflict(document.ticket_id, document.type, document.version)
        self._documents[document.id] = replace(document)

    async def max_document_version(self, ticket_id: str, doc_type: DocumentType) -> int:
        versions = [doc.version for doc in self._of_type(ticket_id, doc_type)]
        return max(versions, default=0)

    async def get_document(self, ticket_id: str, doc_type: DocumentType, version: int) -> Document | None:
        for doc in self._of_type(ticket_id, doc_type):
            if doc.version == version:
                return replace(doc)
        return None

    async def latest_document(self, ticket_id: str, doc_type: DocumentType) -> Document | None:
        docs = self._of_type(ticket_id, doc_type)
        if not docs:
            return None
        return replace(max(docs, key=lambda doc: doc.version))

    async def list_documents(self, ticket_id: str, doc_type: DocumentType | None = None) -> Sequence[Document]:
        docs = [
            replace(doc)
            for doc in self._documents.values()
            if doc.ticket_id == ticket_id and (doc_type is None or doc.type == doc_type)
        ]
        docs.sort(key=lambda doc: (doc.type.value, doc.version))
        return docs

    async def approve_document(
        self, document_id: str, *, approved_at: datetime, approved_by: str | None
    ) -> Document | None:
        doc = self._documents.get(document_id)
        if doc is None:
            return None
        doc.approved = True
        doc.approved_at = approved_at
        doc.approved_by = approved_by
        doc.updated_at = approved_at
        return replace(doc)

    async def clear_document_approval(self, ticket_id: str, doc_type: DocumentType) -> int:
        cleared = 0
        for doc in self._of_type(ticket_id, doc_type):
            if doc.approved:
                doc.approved = False
                doc.approved_at = None
                doc.approved_by = None
                cleared += 1
        if cleared:
            self._bump_revision(ticket_id)
        return cleared

    async def delete_documents_of_type(self, ticket_id: str, doc_type: DocumentType) -> int:
        doomed = {doc.id for doc in self._of_type(ticket_id, doc_type)}
        for doc_id in doomed:
            del self._documents[doc_id]
        if doomed:
            self._bump_revision(ticket_id)
        return len(doomed)

    async def create_comment(self, comment: Comment) -> None:
        self._comments.append(replace(comment))

    async def list_comments(self, ticket_id: str, document_id: str | None = None) -> Sequence[Comment]:
        return [
            replace(comment)
            for comment in self._comments
            if comment.ticket_id == ticket_id and comment.document_id == document_id
        ]

    async def append_audit_event(self, event: AuditEvent) -> None:
        self._audit.append(replace(event, metadata=dict(event.metadata)))

    async def list_audit_events(self, ticket_id: str) -> Sequence[AuditEvent]:
        return [replace(event) for event in self._audit if event.ticket_id == ticket_id]

    async def delete_audit_events(self, ticket_id: str) -> int:
        before = len(self._audit)
        self._audit = [event for event in self._audit if event.ticket_id != ticket_id]
        return before - len(self._audit)

    async def save_persona(self, persona: Persona) -> None:
        self._personas[persona.id] = persona

    async def list_personas(self) -> Sequence[Persona]:
        return sorted(self._personas.values(), key=lambda persona: persona.name)

    def _bump_revision(self, ticket_id: str) -> None:
        ticket = self._tickets.get(ticket_id)
        if ticket is not None:
            ticket.revision += 1

    def _of_type(self, ticket_id: str, doc_type: DocumentType) -> list[Document]:
        return [doc for doc in self._documents.values() if doc.ticket_id == ticket_id and doc.type == doc_type]

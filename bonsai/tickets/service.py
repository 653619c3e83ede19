from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, Sequence

from bonsai.audit.log import AuditLog
from bonsai.audit.models import Actor, AuditEvent, AuditEventName
from bonsai.dispatch.coordinator import DispatchCoordinator, DocumentContext
from bonsai.dispatch.mentions import Persona
from bonsai.documents.models import Document, DocumentType
from bonsai.documents.versions import DocumentVersionManager
from bonsai.errors import TicketNotFoundError, WorkflowError

from .models import ActorType, Attachment, Comment, Ticket, TicketType
from .state import TicketState, TicketStateMachine

if TYPE_CHECKING:
    from bonsai.store.base import EntityStore

logger = logging.getLogger(__name__)


class InvalidEpicError(WorkflowError):
    """Raised when a sub-ticket names a parent that is missing or not an epic."""


class EmptyCommentError(WorkflowError):
    """Raised when a comment has neither text nor attachments."""


class ShipHook(Protocol):
    """Side effect run once a ticket reaches ``done`` (merge, cleanup)."""

    async def ship(self, ticket: Ticket) -> None:
        ...


class TicketService:
    """High level orchestration for ticket lifecycle, documents and comments."""

    def __init__(
        self,
        store: EntityStore,
        *,
        audit: AuditLog | None = None,
        versions: DocumentVersionManager | None = None,
        coordinator: DispatchCoordinator | None = None,
        state_machine: TicketStateMachine | None = None,
        ship_hook: ShipHook | None = None,
    ) -> None:
        self.store = store
        self.audit = audit or AuditLog(store)
        self.versions = versions or DocumentVersionManager(store, self.audit)
        self.coordinator = coordinator
        self.state_machine = state_machine or TicketStateMachine()
        self.ship_hook = ship_hook

    async def ensure_schema(self) -> None:
        await self.store.ensure_schema()

    # Tickets

    async def create_ticket(
        self,
        *,
        title: str,
        actor: Actor,
        type: TicketType = TicketType.FEATURE,
        description: str = "",
        acceptance_criteria: str = "",
        is_epic: bool = False,
        parent_epic_id: str | None = None,
    ) -> Ticket:
        if parent_epic_id is not None:
            parent = await self.store.get_ticket(parent_epic_id)
            if parent is None or not parent.is_epic:
                raise InvalidEpicError(f"Ticket {parent_epic_id} is not an epic")

        now = datetime.now(timezone.utc)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title,
            type=type,
            state=self.state_machine.initial_state(),
            description=description,
            acceptance_criteria=acceptance_criteria,
            created_at=now,
            updated_at=now,
            is_epic=is_epic,
            parent_epic_id=parent_epic_id,
        )
        await self.store.create_ticket(ticket)
        logger.info("Created ticket %s (%s)", ticket.id, ticket.type.value)
        await self.audit.record(
            ticket.id,
            AuditEventName.TICKET_CREATED,
            actor,
            f"Created {ticket.type.value} ticket '{ticket.title}'",
            {"state": ticket.state.value, "isEpic": is_epic, "parentEpicId": parent_epic_id},
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.store.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list_tickets(self, *, state: TicketState | None = None) -> Sequence[Ticket]:
        return await self.store.list_tickets(state=state)

    async def list_children(self, epic_id: str) -> Sequence[Ticket]:
        await self.get_ticket(epic_id)
        return await self.store.list_tickets(parent_epic_id=epic_id)

    async def delete_ticket(self, ticket_id: str, *, actor: Actor) -> None:
        deleted = await self.store.delete_ticket(ticket_id)
        if not deleted:
            raise TicketNotFoundError(ticket_id)
        if self.coordinator is not None:
            self.coordinator.forget(ticket_id)
        logger.info("Deleted ticket %s", ticket_id)
        await self.audit.record(ticket_id, AuditEventName.TICKET_DELETED, actor, "Deleted ticket")

    async def request_transition(
        self,
        ticket_id: str,
        target: TicketState,
        *,
        actor: Actor,
        note: str | None = None,
    ) -> Ticket:
        """Move a ticket to ``target`` if the workflow allows it.

        Raises :class:`~bonsai.errors.GateNotSatisfied`,
        :class:`~bonsai.errors.TerminalState` or
        :class:`~bonsai.errors.InvalidTransitionError` on rejection, and
        :class:`~bonsai.errors.StaleTicketError` when the ticket moved
        concurrently.
        """

        ticket = await self.get_ticket(ticket_id)
        documents: Sequence[Document] = ()
        if self.state_machine.required_gate(ticket.state, target) is not None:
            documents = await self.store.list_documents(ticket_id)
        new_state = self.state_machine.evaluate(ticket.state, target, documents)

        updated = await self.store.update_ticket_state(
            ticket_id,
            state=new_state,
            expected_revision=ticket.revision,
            updated_at=datetime.now(timezone.utc),
        )
        if updated is None:
            raise TicketNotFoundError(ticket_id)

        source = ticket.state
        logger.info("Ticket %s moved %s -> %s by %s", ticket_id, source.value, new_state.value, actor.name)
        metadata: dict[str, str] = {"from": source.value, "to": new_state.value}
        if note:
            metadata["note"] = note
        await self.audit.record(
            ticket_id,
            AuditEventName.STATE_CHANGED,
            actor,
            f"Moved from {source.value} to {new_state.value}",
            metadata,
        )

        if note:
            await self.post_comment(
                ticket_id,
                author=Actor.system(),
                content=f"Moved from **{source.value}** to **{new_state.value}** - {note}",
            )

        if new_state is TicketState.DONE:
            await self._ship(updated, actor)
        return updated

    # Documents

    async def create_document(
        self, ticket_id: str, doc_type: DocumentType, content: str, *, author: Actor
    ) -> Document:
        return await self.versions.create_version(ticket_id, doc_type, content, author)

    async def request_approval(self, ticket_id: str, doc_type: DocumentType, *, actor: Actor) -> Document:
        await self.get_ticket(ticket_id)
        return await self.versions.approve(ticket_id, doc_type, actor)

    async def revoke_approval(self, ticket_id: str, doc_type: DocumentType, *, actor: Actor) -> int:
        """Clear the approval flag without touching content or ticket state."""

        await self.get_ticket(ticket_id)
        return await self.versions.revoke_approval(ticket_id, doc_type, actor)

    async def delete_documents(self, ticket_id: str, doc_type: DocumentType, *, actor: Actor) -> int:
        await self.get_ticket(ticket_id)
        return await self.versions.delete(ticket_id, doc_type, actor)

    async def latest_document(self, ticket_id: str, doc_type: DocumentType) -> Document | None:
        return await self.versions.latest(ticket_id, doc_type)

    async def document_version(self, ticket_id: str, doc_type: DocumentType, version: int) -> Document:
        return await self.versions.by_version(ticket_id, doc_type, version)

    async def list_documents(self, ticket_id: str, doc_type: DocumentType | None = None) -> Sequence[Document]:
        await self.get_ticket(ticket_id)
        return await self.versions.list_versions(ticket_id, doc_type)

    # Comments

    async def post_comment(
        self,
        ticket_id: str,
        *,
        author: Actor,
        content: str,
        document_id: str | None = None,
        attachments: Sequence[Attachment] = (),
    ) -> Comment:
        """Persist a comment, then hand it to the dispatch coordinator."""

        if not content.strip() and not attachments:
            raise EmptyCommentError("Comment needs text or at least one attachment")
        await self.get_ticket(ticket_id)

        comment = Comment(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            author_type=author.type,
            author_id=author.id,
            content=content,
            created_at=datetime.now(timezone.utc),
            document_id=document_id,
            attachments=tuple(attachments),
        )
        await self.store.create_comment(comment)
        if self.coordinator is not None:
            context = await self._document_context(ticket_id, document_id) if document_id else None
            self.coordinator.comment_posted(comment, document=context)

        await self.audit.record(
            ticket_id,
            AuditEventName.COMMENT_ADDED,
            author,
            "Commented on document" if document_id else "Commented on ticket",
            {"commentId": comment.id, "documentId": document_id, "attachments": len(comment.attachments)},
        )
        return comment

    async def list_comments(self, ticket_id: str, document_id: str | None = None) -> Sequence[Comment]:
        await self.get_ticket(ticket_id)
        return await self.store.list_comments(ticket_id, document_id)

    def presence(self, ticket_id: str, document_id: str | None = None) -> Persona | None:
        if self.coordinator is None:
            return None
        return self.coordinator.presence(ticket_id, document_id)

    # Personas

    async def save_persona(self, persona: Persona) -> Persona:
        """Store a persona and make it mentionable straight away."""

        await self.store.save_persona(persona)
        personas = await self.store.list_personas()
        if self.coordinator is not None:
            self.coordinator.directory.refresh(personas)
        logger.info("Saved persona %s (%s)", persona.name, persona.id)
        return persona

    async def list_personas(self) -> Sequence[Persona]:
        return await self.store.list_personas()

    # Audit

    async def get_audit_log(self, ticket_id: str) -> Sequence[AuditEvent]:
        return await self.audit.events(ticket_id)

    async def clear_audit_log(self, ticket_id: str) -> int:
        return await self.audit.clear(ticket_id)

    async def _document_context(self, ticket_id: str, document_id: str) -> DocumentContext | None:
        for document in await self.store.list_documents(ticket_id):
            if document.id == document_id:
                return DocumentContext(label=document.type.label, author_id=document.author_id)
        return None

    async def _ship(self, ticket: Ticket, actor: Actor) -> None:
        if self.ship_hook is None:
            return
        try:
            await self.ship_hook.ship(ticket)
        except Exception as exc:
            logger.warning("Ship hook failed for ticket %s", ticket.id, exc_info=True)
            await self.audit.record(
                ticket.id,
                AuditEventName.SHIP_FAILED,
                Actor.system(),
                f"Ship step failed: {exc}",
                {"error": type(exc).__name__},
            )
            return
        await self.audit.record(ticket.id, AuditEventName.TICKET_SHIPPED, actor, "Ticket shipped")

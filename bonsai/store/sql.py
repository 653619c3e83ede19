from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from bonsai.audit.models import AuditEvent
from bonsai.db.models import CommentTable, PersonaTable, TicketAuditEventTable, TicketDocumentTable, TicketTable
from bonsai.dispatch.mentions import Persona
from bonsai.documents.models import Document, DocumentType
from bonsai.errors import StaleTicketError, VersionConflict
from bonsai.tickets.models import ActorType, Attachment, Comment, Ticket, TicketType
from bonsai.tickets.state import TicketState


def to_async_dsn(dsn: str) -> str:
    """Ensure a PostgreSQL DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


class SqlEntityStore:
    """Persistence helper wrapping tickets, documents, comments, audit events and personas."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    # Tickets

    async def create_ticket(self, ticket: Ticket) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    TicketTable(
                        id=ticket.id,
                        title=ticket.title,
                        type=ticket.type.value,
                        state=ticket.state.value,
                        description=ticket.description,
                        acceptance_criteria=ticket.acceptance_criteria,
                        is_epic=ticket.is_epic,
                        parent_epic_id=ticket.parent_epic_id,
                        revision=ticket.revision,
                        created_at=ticket.created_at,
                        updated_at=ticket.updated_at,
                    )
                )

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            return self._table_to_ticket(row) if row is not None else None

    async def list_tickets(
        self, *, state: TicketState | None = None, parent_epic_id: str | None = None
    ) -> Sequence[Ticket]:
        statement = select(TicketTable)
        if state is not None:
            statement = statement.where(TicketTable.state == state.value)
        if parent_epic_id is not None:
            statement = statement.where(TicketTable.parent_epic_id == parent_epic_id)
        async with self._session_factory() as session:
            result = await session.execute(statement.order_by(TicketTable.created_at.desc()))
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def update_ticket_state(
        self,
        ticket_id: str,
        *,
        state: TicketState,
        expected_revision: int,
        updated_at: datetime,
    ) -> Ticket | None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TicketTable)
                    .where(TicketTable.id == ticket_id, TicketTable.revision == expected_revision)
                    .values(state=state.value, updated_at=updated_at, revision=expected_revision + 1)
                )
                row = await session.get(TicketTable, ticket_id, populate_existing=True)
                if row is None:
                    return None
                if result.rowcount == 0:
                    raise StaleTicketError(ticket_id)
                return self._table_to_ticket(row)

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    return False
                await session.execute(delete(CommentTable).where(CommentTable.ticket_id == ticket_id))
                await session.execute(delete(TicketDocumentTable).where(TicketDocumentTable.ticket_id == ticket_id))
                await session.delete(row)
            return True

    # Documents

    async def insert_document(self, document: Document) -> None:
        async with self._session_factory() as session:
            session.add(
                TicketDocumentTable(
                    id=document.id,
                    ticket_id=document.ticket_id,
                    type=document.type.value,
                    version=document.version,
                    content=document.content,
                    author_id=document.author_id,
                    approved=document.approved,
                    approved_at=document.approved_at,
                    approved_by=document.approved_by,
                    created_at=document.created_at,
                    updated_at=document.updated_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise VersionConflict(document.ticket_id, document.type, document.version) from exc

    async def max_document_version(self, ticket_id: str, doc_type: DocumentType) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.max(TicketDocumentTable.version)).where(
                    TicketDocumentTable.ticket_id == ticket_id,
                    TicketDocumentTable.type == doc_type.value,
                )
            )
            value = result.scalar()
        return int(value or 0)

    async def get_document(self, ticket_id: str, doc_type: DocumentType, version: int) -> Document | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketDocumentTable).where(
                    TicketDocumentTable.ticket_id == ticket_id,
                    TicketDocumentTable.type == doc_type.value,
                    TicketDocumentTable.version == version,
                )
            )
            row = result.scalars().first()
        return self._table_to_document(row) if row is not None else None

    async def latest_document(self, ticket_id: str, doc_type: DocumentType) -> Document | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketDocumentTable)
                .where(
                    TicketDocumentTable.ticket_id == ticket_id,
                    TicketDocumentTable.type == doc_type.value,
                )
                .order_by(TicketDocumentTable.version.desc())
                .limit(1)
            )
            row = result.scalars().first()
        return self._table_to_document(row) if row is not None else None

    async def list_documents(self, ticket_id: str, doc_type: DocumentType | None = None) -> Sequence[Document]:
        statement = select(TicketDocumentTable).where(TicketDocumentTable.ticket_id == ticket_id)
        if doc_type is not None:
            statement = statement.where(TicketDocumentTable.type == doc_type.value)
        async with self._session_factory() as session:
            result = await session.execute(
                statement.order_by(TicketDocumentTable.type.asc(), TicketDocumentTable.version.asc())
            )
            return [self._table_to_document(row) for row in result.scalars().all()]

    async def approve_document(
        self, document_id: str, *, approved_at: datetime, approved_by: str | None
    ) -> Document | None:
        async with self._session_factory() as session:
            row = await session.get(TicketDocumentTable, document_id)
            if row is None:
                return None
            row.approved = True
            row.approved_at = approved_at
            row.approved_by = approved_by
            row.updated_at = approved_at
            await session.commit()
            await session.refresh(row)
            return self._table_to_document(row)

    async def clear_document_approval(self, ticket_id: str, doc_type: DocumentType) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TicketDocumentTable)
                    .where(
                        TicketDocumentTable.ticket_id == ticket_id,
                        TicketDocumentTable.type == doc_type.value,
                        TicketDocumentTable.approved.is_(True),
                    )
                    .values(approved=False, approved_at=None, approved_by=None)
                )
                cleared = int(result.rowcount or 0)
                if cleared:
                    await self._bump_revision(session, ticket_id)
            return cleared

    async def delete_documents_of_type(self, ticket_id: str, doc_type: DocumentType) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TicketDocumentTable).where(
                        TicketDocumentTable.ticket_id == ticket_id,
                        TicketDocumentTable.type == doc_type.value,
                    )
                )
                removed = int(result.rowcount or 0)
                if removed:
                    await self._bump_revision(session, ticket_id)
            return removed

    @staticmethod
    async def _bump_revision(session: AsyncSession, ticket_id: str) -> None:
        # Invalidates any transition whose gate check read the old documents.
        await session.execute(
            update(TicketTable).where(TicketTable.id == ticket_id).values(revision=TicketTable.revision + 1)
        )

    # Comments

    async def create_comment(self, comment: Comment) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    CommentTable(
                        id=comment.id,
                        ticket_id=comment.ticket_id,
                        document_id=comment.document_id,
                        author_type=comment.author_type.value,
                        author_id=comment.author_id,
                        content=comment.content,
                        attachments=[
                            {"name": item.name, "mime_type": item.mime_type, "data": item.data}
                            for item in comment.attachments
                        ],
                        created_at=comment.created_at,
                    )
                )

    async def list_comments(self, ticket_id: str, document_id: str | None = None) -> Sequence[Comment]:
        statement = select(CommentTable).where(CommentTable.ticket_id == ticket_id)
        if document_id is None:
            statement = statement.where(CommentTable.document_id.is_(None))
        else:
            statement = statement.where(CommentTable.document_id == document_id)
        async with self._session_factory() as session:
            result = await session.execute(statement.order_by(CommentTable.created_at.asc()))
            return [self._table_to_comment(row) for row in result.scalars().all()]

    # Audit

    async def append_audit_event(self, event: AuditEvent) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    TicketAuditEventTable(
                        id=event.id,
                        ticket_id=event.ticket_id,
                        event=event.event,
                        actor_type=event.actor_type.value,
                        actor_id=event.actor_id,
                        actor_name=event.actor_name,
                        detail=event.detail,
                        metadata_=dict(event.metadata),
                        created_at=event.created_at,
                    )
                )

    async def list_audit_events(self, ticket_id: str) -> Sequence[AuditEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketAuditEventTable)
                .where(TicketAuditEventTable.ticket_id == ticket_id)
                .order_by(TicketAuditEventTable.created_at.asc())
            )
            return [self._table_to_audit(row) for row in result.scalars().all()]

    async def delete_audit_events(self, ticket_id: str) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TicketAuditEventTable).where(TicketAuditEventTable.ticket_id == ticket_id)
                )
            return int(result.rowcount or 0)

    # Personas

    async def save_persona(self, persona: Persona) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(PersonaTable(id=persona.id, name=persona.name, role=persona.role))

    async def list_personas(self) -> Sequence[Persona]:
        async with self._session_factory() as session:
            result = await session.execute(select(PersonaTable).order_by(PersonaTable.name.asc()))
            return [Persona(id=row.id, name=row.name, role=row.role) for row in result.scalars().all()]

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            type=TicketType(row.type),
            state=TicketState(row.state),
            description=row.description or "",
            acceptance_criteria=row.acceptance_criteria or "",
            is_epic=bool(row.is_epic),
            parent_epic_id=row.parent_epic_id,
            revision=int(row.revision),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_document(row: TicketDocumentTable) -> Document:
        return Document(
            id=row.id,
            ticket_id=row.ticket_id,
            type=DocumentType(row.type),
            version=int(row.version),
            content=row.content,
            author_id=row.author_id,
            approved=bool(row.approved),
            approved_at=_ensure_datetime(row.approved_at) if row.approved_at is not None else None,
            approved_by=row.approved_by,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_comment(row: CommentTable) -> Comment:
        return Comment(
            id=row.id,
            ticket_id=row.ticket_id,
            document_id=row.document_id,
            author_type=ActorType(row.author_type),
            author_id=row.author_id,
            content=row.content,
            attachments=tuple(
                Attachment(name=str(item["name"]), mime_type=str(item["mime_type"]), data=str(item["data"]))
                for item in (row.attachments or [])
            ),
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_audit(row: TicketAuditEventTable) -> AuditEvent:
        return AuditEvent(
            id=row.id,
            ticket_id=row.ticket_id,
            event=row.event,
            actor_type=ActorType(row.actor_type),
            actor_id=row.actor_id,
            actor_name=row.actor_name,
            detail=row.detail,
            metadata=dict(row.metadata_ or {}),
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")

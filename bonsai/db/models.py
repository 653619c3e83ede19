"""SQLModel table definitions for the Bonsai data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class TicketTable(SQLModel, table=True):
    """Tickets moving through the research → done workflow."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    type: str = Field(sa_column=Column(String(20), nullable=False))
    state: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    acceptance_criteria: str = Field(default="", sa_column=Column(Text, nullable=False))
    is_epic: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    parent_epic_id: str | None = Field(
        default=None, sa_column=Column(String(36), nullable=True, index=True)
    )
    revision: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketDocumentTable(SQLModel, table=True):
    """Versioned documents; one row per (ticket, type, version)."""

    __tablename__ = "ticket_documents"
    __table_args__ = (
        UniqueConstraint("ticket_id", "type", "version", name="uq_ticket_documents_version"),
    )

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    )
    type: str = Field(sa_column=Column(String(50), nullable=False))
    version: int = Field(sa_column=Column(Integer, nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    author_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    approved: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    approved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    approved_by: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class CommentTable(SQLModel, table=True):
    """Ticket and document thread comments.

    ``document_id`` carries no foreign key: comments outlive the document
    versions they were written against.
    """

    __tablename__ = "comments"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    document_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    author_type: str = Field(sa_column=Column(String(20), nullable=False))
    author_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    content: str = Field(sa_column=Column(Text, nullable=False))
    attachments: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketAuditEventTable(SQLModel, table=True):
    """Audit trail; no foreign key so history survives ticket deletion."""

    __tablename__ = "ticket_audit_log"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    event: str = Field(sa_column=Column(String(100), nullable=False))
    actor_type: str = Field(sa_column=Column(String(20), nullable=False))
    actor_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    actor_name: str = Field(sa_column=Column(String(255), nullable=False))
    detail: str = Field(sa_column=Column(Text, nullable=False))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class PersonaTable(SQLModel, table=True):
    """AI personas that can be @mentioned and dispatched to."""

    __tablename__ = "personas"

    id: str = Field(primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))

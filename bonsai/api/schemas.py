"""Request and response models shared by the route modules."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from bonsai.audit.models import Actor
from bonsai.documents.models import DocumentType
from bonsai.errors import (
    InvalidTransitionError,
    NoSuchDocument,
    StaleTicketError,
    TicketNotFoundError,
    VersionConflict,
    WorkflowError,
)
from bonsai.tickets.models import ActorType, TicketType
from bonsai.tickets.state import TicketState


class ActorFields(BaseModel):
    actor_type: ActorType = ActorType.HUMAN
    actor_id: str | None = Field(default=None, max_length=255)
    actor_name: str = Field(default="Human", min_length=1, max_length=255)

    def to_actor(self) -> Actor:
        return Actor(type=self.actor_type, id=self.actor_id, name=self.actor_name)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    type: TicketType
    state: TicketState
    description: str
    acceptance_criteria: str
    is_epic: bool
    parent_epic_id: str | None
    revision: int
    created_at: datetime
    updated_at: datetime


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    type: DocumentType
    version: int
    content: str
    author_id: str | None
    approved: bool
    approved_at: datetime | None
    approved_by: str | None
    created_at: datetime
    updated_at: datetime


class AttachmentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=255)
    data: str


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    document_id: str | None
    author_type: ActorType
    author_id: str | None
    content: str
    attachments: list[AttachmentModel]
    created_at: datetime


class PersonaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    role: str | None


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    event: str
    actor_type: ActorType
    actor_id: str | None
    actor_name: str
    detail: str
    metadata: dict[str, Any]
    created_at: datetime


class CountResponse(BaseModel):
    count: int


def to_http_exception(exc: WorkflowError) -> HTTPException:
    """Map a workflow error onto the status code the board expects."""

    if isinstance(exc, (TicketNotFoundError, NoSuchDocument)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, StaleTicketError, VersionConflict)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

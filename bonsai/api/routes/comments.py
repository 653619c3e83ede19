from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from bonsai.api.schemas import ActorFields, AttachmentModel, CommentResponse, PersonaResponse, to_http_exception
from bonsai.dependencies.tickets import TicketServiceDep
from bonsai.errors import WorkflowError
from bonsai.tickets.models import Attachment, Comment

router = APIRouter(prefix="/tickets/{ticket_id}", tags=["comments"])


class CommentCreateRequest(ActorFields):
    content: str = Field(default="")
    document_id: str | None = Field(default=None)
    attachments: list[AttachmentModel] = Field(default_factory=list)


class PresenceResponse(BaseModel):
    ticket_id: str
    document_id: str | None
    persona: PersonaResponse | None


def _to_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


@router.post("/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def post_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
) -> CommentResponse:
    try:
        comment = await service.post_comment(
            ticket_id,
            author=payload.to_actor(),
            content=payload.content,
            document_id=payload.document_id,
            attachments=[
                Attachment(name=item.name, mime_type=item.mime_type, data=item.data) for item in payload.attachments
            ],
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(comment)


@router.get("/comments", response_model=list[CommentResponse])
async def list_comments(
    ticket_id: str,
    service: TicketServiceDep,
    document_id: str | None = Query(default=None),
) -> list[CommentResponse]:
    try:
        comments = await service.list_comments(ticket_id, document_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return [_to_response(comment) for comment in comments]


@router.get("/presence", response_model=PresenceResponse)
async def get_presence(
    ticket_id: str,
    service: TicketServiceDep,
    document_id: str | None = Query(default=None),
) -> PresenceResponse:
    persona = service.presence(ticket_id, document_id)
    return PresenceResponse(
        ticket_id=ticket_id,
        document_id=document_id,
        persona=PersonaResponse.model_validate(persona) if persona is not None else None,
    )

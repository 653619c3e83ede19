from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import Field

from bonsai.api.schemas import ActorFields, CountResponse, DocumentResponse, to_http_exception
from bonsai.dependencies.tickets import QueryActor, TicketServiceDep
from bonsai.documents.models import DocumentType
from bonsai.errors import WorkflowError

router = APIRouter(prefix="/tickets/{ticket_id}/documents", tags=["documents"])


class DocumentCreateRequest(ActorFields):
    type: DocumentType
    content: str = Field(..., min_length=1)


@router.get("", response_model=list[DocumentResponse])
async def list_documents(
    ticket_id: str,
    service: TicketServiceDep,
    type_filter: DocumentType | None = Query(default=None, alias="type"),
) -> list[DocumentResponse]:
    try:
        documents = await service.list_documents(ticket_id, type_filter)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return [DocumentResponse.model_validate(document) for document in documents]


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    ticket_id: str,
    payload: DocumentCreateRequest,
    service: TicketServiceDep,
) -> DocumentResponse:
    try:
        document = await service.create_document(
            ticket_id, payload.type, payload.content, author=payload.to_actor()
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return DocumentResponse.model_validate(document)


@router.get("/{doc_type}/latest", response_model=DocumentResponse)
async def latest_document(ticket_id: str, doc_type: DocumentType, service: TicketServiceDep) -> DocumentResponse:
    document = await service.latest_document(ticket_id, doc_type)
    if document is None:
        raise HTTPException(status_code=404, detail=f"No {doc_type.value} document for ticket {ticket_id}")
    return DocumentResponse.model_validate(document)


@router.get("/{doc_type}/versions/{version}", response_model=DocumentResponse)
async def document_version(
    ticket_id: str,
    doc_type: DocumentType,
    version: int,
    service: TicketServiceDep,
) -> DocumentResponse:
    try:
        document = await service.document_version(ticket_id, doc_type, version)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return DocumentResponse.model_validate(document)


@router.post("/{doc_type}/approval", response_model=DocumentResponse)
async def approve_document(
    ticket_id: str,
    doc_type: DocumentType,
    payload: ActorFields,
    service: TicketServiceDep,
) -> DocumentResponse:
    try:
        document = await service.request_approval(ticket_id, doc_type, actor=payload.to_actor())
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return DocumentResponse.model_validate(document)


@router.delete("/{doc_type}/approval", response_model=CountResponse)
async def revoke_approval(
    ticket_id: str,
    doc_type: DocumentType,
    service: TicketServiceDep,
    actor: QueryActor,
) -> CountResponse:
    try:
        cleared = await service.revoke_approval(ticket_id, doc_type, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return CountResponse(count=cleared)


@router.delete("/{doc_type}", response_model=CountResponse)
async def delete_documents(
    ticket_id: str,
    doc_type: DocumentType,
    service: TicketServiceDep,
    actor: QueryActor,
) -> CountResponse:
    try:
        removed = await service.delete_documents(ticket_id, doc_type, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return CountResponse(count=removed)

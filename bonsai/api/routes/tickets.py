from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import Field

from bonsai.api.schemas import ActorFields, TicketResponse, to_http_exception
from bonsai.dependencies.tickets import QueryActor, TicketServiceDep
from bonsai.errors import WorkflowError
from bonsai.tickets.models import Ticket, TicketType
from bonsai.tickets.state import TicketState

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(ActorFields):
    title: str = Field(..., min_length=1, max_length=255)
    type: TicketType = TicketType.FEATURE
    description: str = Field(default="")
    acceptance_criteria: str = Field(default="")
    is_epic: bool = False
    parent_epic_id: str | None = Field(default=None)


class TransitionRequest(ActorFields):
    target: TicketState
    note: str | None = Field(default=None, max_length=500)


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep) -> TicketResponse:
    try:
        ticket = await service.create_ticket(
            title=payload.title,
            actor=payload.to_actor(),
            type=payload.type,
            description=payload.description,
            acceptance_criteria=payload.acceptance_criteria,
            is_epic=payload.is_epic,
            parent_epic_id=payload.parent_epic_id,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    state_filter: TicketState | None = Query(default=None, alias="state"),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(state=state_filter)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(ticket)


@router.get("/{ticket_id}/children", response_model=list[TicketResponse])
async def list_children(ticket_id: str, service: TicketServiceDep) -> list[TicketResponse]:
    try:
        tickets = await service.list_children(ticket_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return [_to_response(ticket) for ticket in tickets]


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, actor: QueryActor) -> None:
    try:
        await service.delete_ticket(ticket_id, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{ticket_id}/transitions", response_model=TicketResponse)
async def request_transition(
    ticket_id: str,
    payload: TransitionRequest,
    service: TicketServiceDep,
) -> TicketResponse:
    try:
        ticket = await service.request_transition(
            ticket_id,
            payload.target,
            actor=payload.to_actor(),
            note=payload.note,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(ticket)

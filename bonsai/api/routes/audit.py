from __future__ import annotations

from fastapi import APIRouter

from bonsai.api.schemas import AuditEventResponse, CountResponse
from bonsai.dependencies.tickets import TicketServiceDep

router = APIRouter(prefix="/tickets/{ticket_id}/audit", tags=["audit"])


@router.get("", response_model=list[AuditEventResponse])
async def get_audit_log(ticket_id: str, service: TicketServiceDep) -> list[AuditEventResponse]:
    events = await service.get_audit_log(ticket_id)
    return [AuditEventResponse.model_validate(event) for event in events]


@router.delete("", response_model=CountResponse)
async def clear_audit_log(ticket_id: str, service: TicketServiceDep) -> CountResponse:
    """Maintenance action: remove every audit event recorded for a ticket."""

    removed = await service.clear_audit_log(ticket_id)
    return CountResponse(count=removed)

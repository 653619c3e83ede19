from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from bonsai.api.schemas import PersonaResponse
from bonsai.dependencies.tickets import TicketServiceDep
from bonsai.dispatch.mentions import Persona

router = APIRouter(prefix="/personas", tags=["personas"])


class PersonaUpsertRequest(BaseModel):
    name: str = Field(min_length=1)
    role: str | None = Field(default=None)


@router.get("", response_model=list[PersonaResponse])
async def list_personas(service: TicketServiceDep) -> list[PersonaResponse]:
    return [PersonaResponse.model_validate(persona) for persona in await service.list_personas()]


@router.put("/{persona_id}", response_model=PersonaResponse)
async def save_persona(
    persona_id: str,
    payload: PersonaUpsertRequest,
    service: TicketServiceDep,
) -> PersonaResponse:
    persona = await service.save_persona(Persona(id=persona_id, name=payload.name.strip(), role=payload.role))
    return PersonaResponse.model_validate(persona)

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request

from bonsai.audit.models import Actor
from bonsai.tickets.models import ActorType
from bonsai.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


async def get_query_actor(
    actor_type: Annotated[ActorType, Query()] = ActorType.HUMAN,
    actor_id: Annotated[str | None, Query(max_length=255)] = None,
    actor_name: Annotated[str, Query(min_length=1, max_length=255)] = "Human",
) -> Actor:
    """Actor for body-less requests (``DELETE``), taken from the query string."""

    return Actor(type=actor_type, id=actor_id, name=actor_name)


QueryActor = Annotated[Actor, Depends(get_query_actor)]

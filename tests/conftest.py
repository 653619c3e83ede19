from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bonsai.audit.log import AuditLog
from bonsai.audit.models import Actor
from bonsai.store.memory import InMemoryEntityStore
from bonsai.tickets.models import ActorType, Ticket, TicketType
from bonsai.tickets.state import TicketState


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def audit(store: InMemoryEntityStore) -> AuditLog:
    return AuditLog(store)


@pytest.fixture
def human() -> Actor:
    return Actor(type=ActorType.HUMAN, id="user-1", name="Dana")


@pytest.fixture
def make_ticket():
    def _make(ticket_id: str = "t-1", *, state: TicketState = TicketState.BACKLOG, **overrides) -> Ticket:
        now = datetime.now(timezone.utc)
        fields = {
            "id": ticket_id,
            "title": "Add dark mode",
            "type": TicketType.FEATURE,
            "state": state,
            "description": "Users want a dark theme",
            "acceptance_criteria": "Toggle persists across sessions",
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Ticket(**fields)

    return _make

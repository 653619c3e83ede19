import pytest

from bonsai.audit.models import Actor, AuditEventName
from bonsai.tickets.models import ActorType


@pytest.mark.asyncio
async def test_record_appends_events_in_order(audit, human):
    await audit.record("t-1", AuditEventName.TICKET_CREATED, human, "Created", {"state": "backlog"})
    await audit.record("t-1", "custom_event", Actor.system(), "Something else")
    await audit.record("t-2", AuditEventName.TICKET_CREATED, human, "Created")

    events = await audit.events("t-1")

    assert [event.event for event in events] == ["ticket_created", "custom_event"]
    assert events[0].actor_name == "Dana"
    assert events[0].metadata == {"state": "backlog"}
    assert events[1].actor_type is ActorType.SYSTEM
    assert events[1].actor_id is None


@pytest.mark.asyncio
async def test_recorded_metadata_is_copied(audit, human):
    metadata = {"from": "backlog"}
    await audit.record("t-1", AuditEventName.STATE_CHANGED, human, "Moved", metadata)
    metadata["from"] = "mutated"

    events = await audit.events("t-1")

    assert events[0].metadata == {"from": "backlog"}


@pytest.mark.asyncio
async def test_clear_only_touches_one_ticket(audit, human):
    await audit.record("t-1", AuditEventName.TICKET_CREATED, human, "Created")
    await audit.record("t-2", AuditEventName.TICKET_CREATED, human, "Created")

    assert await audit.clear("t-1") == 1
    assert await audit.events("t-1") == []
    assert len(await audit.events("t-2")) == 1

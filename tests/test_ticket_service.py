from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from bonsai.audit.models import Actor, AuditEventName
from bonsai.dispatch.coordinator import DispatchCoordinator
from bonsai.dispatch.mentions import MentionDirectory, Persona
from bonsai.dispatch.runtime import DispatchResult
from bonsai.documents.models import DocumentType
from bonsai.errors import GateNotSatisfied, StaleTicketError, TerminalState, TicketNotFoundError
from bonsai.store.memory import InMemoryEntityStore
from bonsai.tickets.models import ActorType, Attachment, TicketType
from bonsai.tickets.service import EmptyCommentError, InvalidEpicError, TicketService
from bonsai.tickets.state import TicketState

RESEARCHER = Persona(id="p-rex", name="Rex", role="researcher")
AGENT = Actor(type=ActorType.AGENT, id="p-rex", name="Rex")


@pytest.fixture
def runtime() -> AsyncMock:
    runtime = AsyncMock()
    runtime.dispatch = AsyncMock(return_value=DispatchResult(accepted_persona=RESEARCHER))
    return runtime


@pytest_asyncio.fixture
async def coordinator(runtime, audit):
    coordinator = DispatchCoordinator(
        runtime,
        MentionDirectory([RESEARCHER]),
        audit=audit,
        debounce_seconds=0.05,
        watchdog_seconds=5.0,
    )
    yield coordinator
    await coordinator.aclose()


@pytest.fixture
def service(store, audit, coordinator) -> TicketService:
    return TicketService(store, audit=audit, coordinator=coordinator)


async def _events(service: TicketService, ticket_id: str) -> list[str]:
    return [event.event for event in await service.get_audit_log(ticket_id)]


@pytest.mark.asyncio
async def test_create_ticket_starts_in_backlog_and_is_audited(service, human):
    ticket = await service.create_ticket(title="Dark mode", actor=human, type=TicketType.BUG)

    assert ticket.state is TicketState.BACKLOG
    assert ticket.type is TicketType.BUG
    assert (await service.get_ticket(ticket.id)).title == "Dark mode"
    assert await _events(service, ticket.id) == [AuditEventName.TICKET_CREATED.value]


@pytest.mark.asyncio
async def test_missing_ticket_raises(service, human):
    with pytest.raises(TicketNotFoundError):
        await service.get_ticket("nope")
    with pytest.raises(TicketNotFoundError):
        await service.request_transition("nope", TicketState.RESEARCH, actor=human)
    with pytest.raises(TicketNotFoundError):
        await service.delete_ticket("nope", actor=human)


@pytest.mark.asyncio
async def test_end_to_end_gated_workflow(service, human, runtime):
    ticket = await service.create_ticket(title="Export to CSV", actor=human)

    await service.post_comment(ticket.id, author=human, content="please research X")
    await asyncio.sleep(0.2)
    runtime.dispatch.assert_awaited_once()

    ticket = await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    assert ticket.state is TicketState.RESEARCH

    research = await service.create_document(ticket.id, DocumentType.RESEARCH, "findings", author=AGENT)
    assert research.version == 1

    with pytest.raises(GateNotSatisfied) as excinfo:
        await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)
    assert excinfo.value.gate.value == "research"

    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)
    ticket = await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)
    assert ticket.state is TicketState.PLAN_APPROVAL

    with pytest.raises(GateNotSatisfied) as excinfo:
        await service.request_transition(ticket.id, TicketState.IN_PROGRESS, actor=human)
    assert excinfo.value.gate.value == "plan"

    await service.create_document(ticket.id, DocumentType.IMPLEMENTATION_PLAN, "steps", author=AGENT)
    with pytest.raises(GateNotSatisfied):
        await service.request_transition(ticket.id, TicketState.IN_PROGRESS, actor=human)

    await service.request_approval(ticket.id, DocumentType.IMPLEMENTATION_PLAN, actor=human)
    ticket = await service.request_transition(ticket.id, TicketState.IN_PROGRESS, actor=human)
    assert ticket.state is TicketState.IN_PROGRESS
    assert ticket.revision == 4

    events = await _events(service, ticket.id)
    assert events.count(AuditEventName.STATE_CHANGED.value) == 3
    assert events.count(AuditEventName.DOCUMENT_APPROVED.value) == 2
    assert events.count(AuditEventName.DOCUMENT_CREATED.value) == 2
    assert events.count(AuditEventName.DISPATCH_ATTEMPTED.value) == 1


@pytest.mark.asyncio
async def test_deleting_research_blocks_future_transitions_without_reverting(service, human):
    ticket = await service.create_ticket(title="Search", actor=human)
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    await service.create_document(ticket.id, DocumentType.RESEARCH, "v1", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)
    await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)

    removed = await service.delete_documents(ticket.id, DocumentType.RESEARCH, actor=human)

    assert removed == 1
    assert (await service.get_ticket(ticket.id)).state is TicketState.PLAN_APPROVAL
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    with pytest.raises(GateNotSatisfied):
        await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)


@pytest.mark.asyncio
async def test_revoke_approval_keeps_state(service, human):
    ticket = await service.create_ticket(title="Search", actor=human)
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    await service.create_document(ticket.id, DocumentType.RESEARCH, "v1", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)

    assert await service.revoke_approval(ticket.id, DocumentType.RESEARCH, actor=human) == 1

    assert (await service.get_ticket(ticket.id)).state is TicketState.RESEARCH
    with pytest.raises(GateNotSatisfied):
        await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)
    assert AuditEventName.APPROVAL_REVOKED.value in await _events(service, ticket.id)


@pytest.mark.asyncio
async def test_transition_note_posts_system_comment(service, human, runtime):
    ticket = await service.create_ticket(title="Search", actor=human)

    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human, note="kick-off")

    comments = await service.list_comments(ticket.id)
    assert [comment.author_type for comment in comments] == [ActorType.SYSTEM]
    assert comments[0].content == "Moved from **backlog** to **research** - kick-off"
    await asyncio.sleep(0.2)
    runtime.dispatch.assert_not_awaited()


async def _ticket_in_verification(service: TicketService, human: Actor):
    ticket = await service.create_ticket(title="Ship me", actor=human)
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    await service.create_document(ticket.id, DocumentType.RESEARCH, "r", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)
    await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)
    await service.create_document(ticket.id, DocumentType.IMPLEMENTATION_PLAN, "p", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.IMPLEMENTATION_PLAN, actor=human)
    await service.request_transition(ticket.id, TicketState.IN_PROGRESS, actor=human)
    return await service.request_transition(ticket.id, TicketState.VERIFICATION, actor=AGENT)


@pytest.mark.asyncio
async def test_done_runs_ship_hook_and_is_terminal(service, human):
    ship_hook = AsyncMock()
    service.ship_hook = ship_hook
    ticket = await _ticket_in_verification(service, human)

    done = await service.request_transition(ticket.id, TicketState.DONE, actor=human)

    assert done.state is TicketState.DONE
    ship_hook.ship.assert_awaited_once()
    assert AuditEventName.TICKET_SHIPPED.value in await _events(service, ticket.id)
    with pytest.raises(TerminalState):
        await service.request_transition(ticket.id, TicketState.IN_PROGRESS, actor=human)


@pytest.mark.asyncio
async def test_ship_hook_failure_does_not_revert(service, human):
    ship_hook = AsyncMock()
    ship_hook.ship.side_effect = RuntimeError("merge conflict")
    service.ship_hook = ship_hook
    ticket = await _ticket_in_verification(service, human)

    done = await service.request_transition(ticket.id, TicketState.DONE, actor=human)

    assert done.state is TicketState.DONE
    assert (await service.get_ticket(ticket.id)).state is TicketState.DONE
    assert AuditEventName.SHIP_FAILED.value in await _events(service, ticket.id)


@pytest.mark.asyncio
async def test_concurrent_transition_is_rejected_as_stale(service, human, store):
    ticket = await service.create_ticket(title="Race", actor=human)
    stale = await service.get_ticket(ticket.id)
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)

    with pytest.raises(StaleTicketError):
        await store.update_ticket_state(
            ticket.id, state=TicketState.RESEARCH, expected_revision=stale.revision, updated_at=stale.updated_at
        )


@pytest.mark.asyncio
async def test_epics_and_children(service, human):
    epic = await service.create_ticket(title="Billing", actor=human, is_epic=True)
    child = await service.create_ticket(title="Invoices", actor=human, parent_epic_id=epic.id)
    plain = await service.create_ticket(title="Plain", actor=human)

    assert [ticket.id for ticket in await service.list_children(epic.id)] == [child.id]
    with pytest.raises(InvalidEpicError):
        await service.create_ticket(title="Orphan", actor=human, parent_epic_id=plain.id)
    with pytest.raises(InvalidEpicError):
        await service.create_ticket(title="Orphan", actor=human, parent_epic_id="missing")


@pytest.mark.asyncio
async def test_comments_need_text_or_attachment(service, human):
    ticket = await service.create_ticket(title="Screenshots", actor=human)

    with pytest.raises(EmptyCommentError):
        await service.post_comment(ticket.id, author=human, content="   ")

    comment = await service.post_comment(
        ticket.id,
        author=human,
        content="",
        attachments=[Attachment(name="bug.png", mime_type="image/png", data="aGk=")],
    )
    assert comment.attachments[0].name == "bug.png"


@pytest.mark.asyncio
async def test_cooldown_keeps_every_comment(service, human, runtime):
    runtime.dispatch.return_value = DispatchResult.cooldown()
    ticket = await service.create_ticket(title="Burst", actor=human)

    for text in ("one", "two", "three"):
        await service.post_comment(ticket.id, author=human, content=text)
    await asyncio.sleep(0.2)

    runtime.dispatch.assert_awaited_once()
    assert [comment.content for comment in await service.list_comments(ticket.id)] == ["one", "two", "three"]
    assert service.presence(ticket.id) is None


@pytest.mark.asyncio
async def test_document_thread_is_separate(service, human, runtime):
    ticket = await service.create_ticket(title="Threads", actor=human)
    document = await service.create_document(ticket.id, DocumentType.DESIGN, "mockups", author=AGENT)

    await service.post_comment(ticket.id, author=human, content="love the colours", document_id=document.id)
    await asyncio.sleep(0.2)

    assert await service.list_comments(ticket.id) == []
    assert len(await service.list_comments(ticket.id, document.id)) == 1
    assert runtime.dispatch.await_args.args[0].document_id == document.id
    assert service.presence(ticket.id, document.id) == RESEARCHER


@pytest.mark.asyncio
async def test_delete_ticket_keeps_audit_and_clear_removes_it(service, human):
    ticket = await service.create_ticket(title="Temp", actor=human)

    await service.delete_ticket(ticket.id, actor=human)

    with pytest.raises(TicketNotFoundError):
        await service.get_ticket(ticket.id)
    assert await _events(service, ticket.id) == [
        AuditEventName.TICKET_CREATED.value,
        AuditEventName.TICKET_DELETED.value,
    ]
    assert await service.clear_audit_log(ticket.id) == 2
    assert await service.get_audit_log(ticket.id) == []


@pytest.mark.asyncio
async def test_document_comment_goes_to_the_document_author(service, human, runtime):
    ticket = await service.create_ticket(title="Threads", actor=human)
    document = await service.create_document(ticket.id, DocumentType.RESEARCH, "findings", author=AGENT)

    await service.post_comment(ticket.id, author=human, content="Sources look thin.", document_id=document.id)
    await asyncio.sleep(0.2)

    request = runtime.dispatch.await_args.args[0]
    assert request.target.persona == RESEARCHER
    assert request.conversational
    assert request.combined_text == "[Comment on research document] Sources look thin."


@pytest.mark.asyncio
async def test_document_comment_mention_beats_the_author(service, human, runtime):
    designer = Persona(id="p-ada", name="Ada", role="designer")
    await service.save_persona(designer)
    ticket = await service.create_ticket(title="Threads", actor=human)
    document = await service.create_document(ticket.id, DocumentType.DESIGN, "mockups", author=AGENT)

    await service.post_comment(ticket.id, author=human, content="@Ada thoughts?", document_id=document.id)
    await asyncio.sleep(0.2)

    assert runtime.dispatch.await_args.args[0].target.persona == designer


@pytest.mark.asyncio
async def test_persona_saved_after_startup_is_mentionable(service, human, runtime):
    ticket = await service.create_ticket(title="Onboarding", actor=human)
    newcomer = Persona(id="p-ada", name="Ada", role="designer")

    await service.save_persona(newcomer)
    await service.post_comment(ticket.id, author=human, content="@Ada can you draft the flow")
    await asyncio.sleep(0.2)

    assert runtime.dispatch.await_args.args[0].target.persona == newcomer
    assert newcomer in await service.list_personas()


class DeletesDuringGateCheck(InMemoryEntityStore):
    def __init__(self) -> None:
        super().__init__()
        self.before_gate_check = None

    async def list_documents(self, ticket_id, doc_type=None):
        documents = await super().list_documents(ticket_id, doc_type)
        if self.before_gate_check is not None:
            hook, self.before_gate_check = self.before_gate_check, None
            await hook()
        return documents


@pytest.mark.asyncio
async def test_approval_removed_during_gate_check_makes_transition_stale(human):
    store = DeletesDuringGateCheck()
    service = TicketService(store)
    ticket = await service.create_ticket(title="Race", actor=human)
    await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    await service.create_document(ticket.id, DocumentType.RESEARCH, "v1", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)

    async def delete_research():
        await service.delete_documents(ticket.id, DocumentType.RESEARCH, actor=human)

    store.before_gate_check = delete_research
    with pytest.raises(StaleTicketError):
        await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)

    assert (await service.get_ticket(ticket.id)).state is TicketState.RESEARCH
    with pytest.raises(GateNotSatisfied):
        await service.request_transition(ticket.id, TicketState.PLAN_APPROVAL, actor=human)


@pytest.mark.asyncio
async def test_revoking_approval_bumps_ticket_revision(service, human):
    ticket = await service.create_ticket(title="Search", actor=human)
    ticket = await service.request_transition(ticket.id, TicketState.RESEARCH, actor=human)
    await service.create_document(ticket.id, DocumentType.RESEARCH, "v1", author=AGENT)
    await service.request_approval(ticket.id, DocumentType.RESEARCH, actor=human)

    await service.revoke_approval(ticket.id, DocumentType.RESEARCH, actor=human)

    assert (await service.get_ticket(ticket.id)).revision == ticket.revision + 1

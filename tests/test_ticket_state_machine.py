from datetime import datetime, timezone

import pytest

from bonsai.documents.models import Document, DocumentType
from bonsai.errors import GateNotSatisfied, InvalidTransitionError, TerminalState
from bonsai.tickets.state import (
    ApprovalGate,
    Transition,
    TicketState,
    TicketStateMachine,
    gate_satisfied,
)


def _doc(doc_type: DocumentType, version: int, *, approved: bool = False) -> Document:
    now = datetime.now(timezone.utc)
    return Document(
        id=f"{doc_type.value}-{version}",
        ticket_id="t-1",
        type=doc_type,
        version=version,
        content="...",
        author_id="persona-1",
        created_at=now,
        updated_at=now,
        approved=approved,
    )


def test_ticket_state_machine_allows_expected_transitions():
    machine = TicketStateMachine()
    assert machine.can_transition(TicketState.BACKLOG, TicketState.RESEARCH)
    assert machine.can_transition(TicketState.RESEARCH, TicketState.PLAN_APPROVAL)
    assert machine.can_transition(TicketState.RESEARCH, TicketState.BACKLOG)
    assert machine.can_transition(TicketState.PLAN_APPROVAL, TicketState.IN_PROGRESS)
    assert machine.can_transition(TicketState.PLAN_APPROVAL, TicketState.RESEARCH)
    assert machine.can_transition(TicketState.IN_PROGRESS, TicketState.VERIFICATION)
    assert machine.can_transition(TicketState.IN_PROGRESS, TicketState.RESEARCH)
    assert machine.can_transition(TicketState.VERIFICATION, TicketState.DONE)
    assert machine.can_transition(TicketState.VERIFICATION, TicketState.IN_PROGRESS)


def test_ticket_state_machine_blocks_invalid_transitions():
    machine = TicketStateMachine()
    assert not machine.can_transition(TicketState.BACKLOG, TicketState.DONE)
    with pytest.raises(InvalidTransitionError):
        machine.evaluate(TicketState.BACKLOG, TicketState.IN_PROGRESS)
    with pytest.raises(InvalidTransitionError):
        machine.evaluate(TicketState.RESEARCH, TicketState.RESEARCH)


def test_done_is_terminal():
    machine = TicketStateMachine()
    assert machine.is_terminal(TicketState.DONE)
    assert machine.allowed_targets(TicketState.DONE) == ()
    for target in TicketState:
        with pytest.raises(TerminalState):
            machine.evaluate(TicketState.DONE, target)


def test_research_gate_requires_approved_latest_version():
    machine = TicketStateMachine()

    with pytest.raises(GateNotSatisfied) as excinfo:
        machine.evaluate(TicketState.RESEARCH, TicketState.PLAN_APPROVAL, [])
    assert excinfo.value.gate is ApprovalGate.RESEARCH

    unapproved = [_doc(DocumentType.RESEARCH, 1)]
    with pytest.raises(GateNotSatisfied):
        machine.evaluate(TicketState.RESEARCH, TicketState.PLAN_APPROVAL, unapproved)

    approved = [_doc(DocumentType.RESEARCH, 1, approved=True)]
    assert machine.evaluate(TicketState.RESEARCH, TicketState.PLAN_APPROVAL, approved) is TicketState.PLAN_APPROVAL


def test_gate_only_counts_the_highest_version():
    docs = [_doc(DocumentType.RESEARCH, 1, approved=True), _doc(DocumentType.RESEARCH, 2)]
    assert not gate_satisfied(ApprovalGate.RESEARCH, docs)


def test_plan_gate_ignores_other_document_types():
    machine = TicketStateMachine()
    docs = [_doc(DocumentType.RESEARCH, 3, approved=True), _doc(DocumentType.DESIGN, 1, approved=True)]

    with pytest.raises(GateNotSatisfied) as excinfo:
        machine.evaluate(TicketState.PLAN_APPROVAL, TicketState.IN_PROGRESS, docs)
    assert excinfo.value.gate is ApprovalGate.PLAN

    docs.append(_doc(DocumentType.IMPLEMENTATION_PLAN, 1, approved=True))
    assert machine.evaluate(TicketState.PLAN_APPROVAL, TicketState.IN_PROGRESS, docs) is TicketState.IN_PROGRESS


def test_backward_transitions_are_ungated():
    machine = TicketStateMachine()
    assert machine.required_gate(TicketState.PLAN_APPROVAL, TicketState.RESEARCH) is None
    assert machine.evaluate(TicketState.VERIFICATION, TicketState.IN_PROGRESS) is TicketState.IN_PROGRESS


def test_every_result_is_a_defined_state():
    machine = TicketStateMachine()
    approved = [
        _doc(DocumentType.RESEARCH, 1, approved=True),
        _doc(DocumentType.IMPLEMENTATION_PLAN, 1, approved=True),
    ]
    for source in TicketState:
        for target in machine.allowed_targets(source):
            assert machine.evaluate(source, target, approved) in set(TicketState)


def test_custom_transition_table():
    machine = TicketStateMachine([Transition(TicketState.BACKLOG, TicketState.DONE)])
    assert machine.evaluate(TicketState.BACKLOG, TicketState.DONE) is TicketState.DONE
    assert machine.is_terminal(TicketState.RESEARCH)
    assert machine.initial_state() is TicketState.BACKLOG

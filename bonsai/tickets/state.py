from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

from bonsai.documents.models import Document, DocumentType
from bonsai.errors import GateNotSatisfied, InvalidTransitionError, TerminalState


class TicketState(str, Enum):
    """Supported states for a ticket's lifecycle."""

    BACKLOG = "backlog"
    RESEARCH = "research"
    PLAN_APPROVAL = "plan_approval"
    IN_PROGRESS = "in_progress"
    VERIFICATION = "verification"
    DONE = "done"


class ApprovalGate(str, Enum):
    """Approved-document requirements attached to forward transitions."""

    RESEARCH = "research"
    PLAN = "plan"


GATE_DOCUMENTS: Mapping[ApprovalGate, DocumentType] = {
    ApprovalGate.RESEARCH: DocumentType.RESEARCH,
    ApprovalGate.PLAN: DocumentType.IMPLEMENTATION_PLAN,
}


@dataclass(frozen=True, slots=True)
class Transition:
    """One edge of the workflow graph, optionally guarded by an approval gate."""

    source: TicketState
    target: TicketState
    gate: ApprovalGate | None = None


DEFAULT_TRANSITIONS: Sequence[Transition] = (
    Transition(TicketState.BACKLOG, TicketState.RESEARCH),
    Transition(TicketState.RESEARCH, TicketState.PLAN_APPROVAL, ApprovalGate.RESEARCH),
    Transition(TicketState.RESEARCH, TicketState.BACKLOG),
    Transition(TicketState.PLAN_APPROVAL, TicketState.IN_PROGRESS, ApprovalGate.PLAN),
    Transition(TicketState.PLAN_APPROVAL, TicketState.RESEARCH),
    Transition(TicketState.IN_PROGRESS, TicketState.VERIFICATION),
    Transition(TicketState.IN_PROGRESS, TicketState.RESEARCH),
    Transition(TicketState.VERIFICATION, TicketState.DONE),
    Transition(TicketState.VERIFICATION, TicketState.IN_PROGRESS),
)


def gate_satisfied(gate: ApprovalGate, documents: Iterable[Document]) -> bool:
    """Return ``True`` when the latest version of the gate's document is approved."""

    doc_type = GATE_DOCUMENTS[gate]
    latest: Document | None = None
    for document in documents:
        if document.type != doc_type:
            continue
        if latest is None or document.version > latest.version:
            latest = document
    return latest is not None and latest.approved


class TicketStateMachine:
    """Validate ticket lifecycle transitions against a transition table.

    The table is data: renaming or adding a state means editing
    ``DEFAULT_TRANSITIONS`` (or passing a custom sequence), not the checks below.
    """

    def __init__(self, transitions: Sequence[Transition] | None = None) -> None:
        table = transitions if transitions is not None else DEFAULT_TRANSITIONS
        self._transitions: dict[tuple[TicketState, TicketState], Transition] = {
            (transition.source, transition.target): transition for transition in table
        }
        self._outbound: dict[TicketState, tuple[TicketState, ...]] = {state: () for state in TicketState}
        for transition in table:
            self._outbound[transition.source] = (*self._outbound[transition.source], transition.target)

    @staticmethod
    def initial_state() -> TicketState:
        return TicketState.BACKLOG

    def is_terminal(self, state: TicketState) -> bool:
        return not self._outbound.get(state)

    def allowed_targets(self, current: TicketState) -> tuple[TicketState, ...]:
        return self._outbound.get(current, ())

    def can_transition(self, current: TicketState, target: TicketState) -> bool:
        return (current, target) in self._transitions

    def required_gate(self, current: TicketState, target: TicketState) -> ApprovalGate | None:
        transition = self._transitions.get((current, target))
        return transition.gate if transition is not None else None

    def evaluate(
        self,
        current: TicketState,
        target: TicketState,
        documents: Iterable[Document] = (),
    ) -> TicketState:
        """Return the state a ticket moves to, or raise the reason it cannot.

        ``documents`` are the ticket's documents; only the highest version of
        each gated type is consulted.
        """

        if self.is_terminal(current):
            raise TerminalState(current, target)
        transition = self._transitions.get((current, target))
        if transition is None:
            raise InvalidTransitionError(current, target)
        if transition.gate is not None and not gate_satisfied(transition.gate, documents):
            raise GateNotSatisfied(transition.gate, current, target)
        return transition.target

"""Error taxonomy shared by the workflow, document and store layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bonsai.documents.models import DocumentType
    from bonsai.tickets.state import ApprovalGate, TicketState


class WorkflowError(RuntimeError):
    """Base error for ticket workflow issues."""


class TicketNotFoundError(WorkflowError):
    """Raised when an operation targets a non-existent ticket."""

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket {ticket_id} not found")
        self.ticket_id = ticket_id


class InvalidTransitionError(WorkflowError):
    """Raised when a requested state change is not part of the transition table."""

    def __init__(self, source: TicketState, target: TicketState, message: str | None = None) -> None:
        super().__init__(message or f"Cannot transition {source.value} -> {target.value}")
        self.source = source
        self.target = target


class GateNotSatisfied(InvalidTransitionError):
    """Raised when a forward transition lacks its approved document."""

    def __init__(self, gate: ApprovalGate, source: TicketState, target: TicketState) -> None:
        super().__init__(
            source,
            target,
            f"Gate '{gate.value}' not satisfied for {source.value} -> {target.value}",
        )
        self.gate = gate


class TerminalState(InvalidTransitionError):
    """Raised when a transition is requested out of a terminal state."""

    def __init__(self, source: TicketState, target: TicketState) -> None:
        super().__init__(source, target, f"Ticket is in terminal state '{source.value}'")


class NoSuchDocument(WorkflowError):
    """Raised when a document lookup or approval finds nothing to act on."""

    def __init__(self, ticket_id: str, doc_type: DocumentType, version: int | None = None) -> None:
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"No {doc_type.value}{suffix} document for ticket {ticket_id}")
        self.ticket_id = ticket_id
        self.doc_type = doc_type
        self.version = version


class VersionConflict(WorkflowError):
    """Raised when two writers race for the same document version number."""

    def __init__(self, ticket_id: str, doc_type: DocumentType, version: int) -> None:
        super().__init__(f"{doc_type.value} v{version} already exists for ticket {ticket_id}")
        self.ticket_id = ticket_id
        self.doc_type = doc_type
        self.version = version


class StaleTicketError(WorkflowError):
    """Raised when a ticket changed between read and write."""

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket {ticket_id} was modified concurrently")
        self.ticket_id = ticket_id

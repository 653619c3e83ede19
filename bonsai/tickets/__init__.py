from .models import ActorType, Attachment, Comment, Ticket, TicketType
from .state import ApprovalGate, TicketState, TicketStateMachine

__all__ = [
    "ActorType",
    "ApprovalGate",
    "Attachment",
    "Comment",
    "Ticket",
    "TicketState",
    "TicketStateMachine",
    "TicketType",
]

"""Comment batching, mention routing and outbound agent dispatch."""

from .classify import is_conversational
from .coordinator import DispatchCoordinator, DispatchOutcome, DocumentContext
from .mentions import DispatchTarget, MentionDirectory, Persona, TargetKind
from .runtime import (
    AgentRuntime,
    AgentRuntimeError,
    CooldownAgentRuntime,
    DispatchRequest,
    DispatchResult,
    HttpAgentRuntime,
)

__all__ = [
    "AgentRuntime",
    "AgentRuntimeError",
    "CooldownAgentRuntime",
    "DispatchCoordinator",
    "DispatchOutcome",
    "DispatchRequest",
    "DispatchResult",
    "DispatchTarget",
    "DocumentContext",
    "HttpAgentRuntime",
    "MentionDirectory",
    "Persona",
    "TargetKind",
    "is_conversational",
]

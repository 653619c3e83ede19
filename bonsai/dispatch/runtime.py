"""Agent Runtime collaborators: the outbound side of a dispatch."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import httpx

from .mentions import DispatchTarget, Persona, TargetKind

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 120.0


@dataclass(frozen=True, slots=True)
class DispatchRequest:
    """A flushed batch, ready to be handed to the Agent Runtime."""

    ticket_id: str
    combined_text: str
    target: DispatchTarget
    conversational: bool
    document_id: str | None = None
    batch_size: int = 1


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome of a dispatch call.

    A result without ``accepted_persona`` simply means there is no presence
    indicator to show; it is not an error.
    """

    accepted_persona: Persona | None = None
    rejected_cooldown: bool = False

    @classmethod
    def cooldown(cls) -> "DispatchResult":
        return cls(rejected_cooldown=True)


class AgentRuntime(Protocol):
    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        ...


class AgentRuntimeError(RuntimeError):
    """Raised when the Agent Runtime could not be reached or failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


def _persona_from_payload(payload: Any) -> Persona | None:
    if not isinstance(payload, Mapping):
        return None
    persona = payload.get("persona")
    if not isinstance(persona, Mapping) or not persona.get("name"):
        return None
    return Persona(
        id=str(persona.get("id") or ""),
        name=str(persona["name"]),
        role=str(persona["role"]) if persona.get("role") else None,
    )


class HttpAgentRuntime:
    """Agent Runtime reached over HTTP at ``/api/tickets/{id}/dispatch``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @staticmethod
    def build_payload(request: DispatchRequest) -> dict[str, Any]:
        target = request.target
        return {
            "commentContent": request.combined_text,
            "targetPersonaName": target.persona.name if target.kind is TargetKind.PERSONA and target.persona else None,
            "targetPersonaId": target.persona.id if target.kind is TargetKind.PERSONA and target.persona else None,
            "targetRole": target.role if target.kind is TargetKind.ROLE else None,
            "team": target.kind is TargetKind.TEAM,
            "conversational": request.conversational,
            "documentId": request.document_id,
            "silent": True,
        }

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        url = f"{self._base_url}/api/tickets/{request.ticket_id}/dispatch"
        try:
            response = await self._get_client().post(
                url,
                json=self.build_payload(request),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AgentRuntimeError(f"Dispatch request failed: {exc}") from exc

        if response.status_code == 429:
            return DispatchResult.cooldown()
        if response.status_code >= 400:
            raise AgentRuntimeError(response.text or "Dispatch rejected", status_code=response.status_code)
        try:
            payload = response.json()
        except ValueError:
            return DispatchResult()
        if isinstance(payload, Mapping) and payload.get("cooldown"):
            return DispatchResult.cooldown()
        return DispatchResult(accepted_persona=_persona_from_payload(payload))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class CooldownAgentRuntime:
    """Wrap a runtime so it rejects repeat dispatches for a ticket inside a cooldown."""

    def __init__(
        self,
        inner: AgentRuntime,
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_dispatch: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            last = self._last_dispatch.get(request.ticket_id)
            if last is not None:
                logger.info(
                    "Dispatch for ticket %s rejected: cooldown %.0fs remaining",
                    request.ticket_id,
                    self._cooldown_seconds - (now - last),
                )
                return DispatchResult.cooldown()
            self._last_dispatch[request.ticket_id] = now
        try:
            return await self._inner.dispatch(request)
        except Exception:
            # A call that never reached the runtime must not block the next comment.
            async with self._lock:
                if self._last_dispatch.get(request.ticket_id) == now:
                    del self._last_dispatch[request.ticket_id]
            raise

    def _prune(self, now: float) -> None:
        expired = [
            ticket_id
            for ticket_id, started in self._last_dispatch.items()
            if now - started >= self._cooldown_seconds
        ]
        for ticket_id in expired:
            del self._last_dispatch[ticket_id]

    def tracked_tickets(self) -> int:
        return len(self._last_dispatch)

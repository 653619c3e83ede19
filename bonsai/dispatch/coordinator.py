"""Turn bursts of comments into debounced, targeted agent dispatches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Collection, Coroutine, Optional

from opentelemetry import trace

from bonsai.audit.models import Actor, AuditEventName
from bonsai.tickets.models import ActorType, Comment

from .classify import DEFAULT_CONVERSATIONAL_MAX_CHARS, is_conversational
from .mentions import DispatchTarget, MentionDirectory, Persona, TargetKind
from .runtime import AgentRuntime, DispatchRequest

if TYPE_CHECKING:
    from bonsai.audit.log import AuditLog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_DEBOUNCE_SECONDS = 3.0
DEFAULT_WATCHDOG_SECONDS = 120.0
DEFAULT_SEPARATOR = "\n\n---\n\n"

Scope = tuple[str, Optional[str]]

_COORDINATOR_ACTOR = Actor.system("Dispatch Coordinator")


class DispatchOutcome(str, Enum):
    """How a flushed batch ended."""

    ACCEPTED = "accepted"
    NO_PERSONA = "no_persona"
    COOLDOWN = "cooldown"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class DocumentContext:
    """What a document thread's dispatch needs to know about its document."""

    label: str
    author_id: str | None = None


@dataclass(slots=True)
class _ScopeState:
    pending: list[str] = field(default_factory=list)
    document: DocumentContext | None = None
    debounce: asyncio.Task[None] | None = None
    watchdog: asyncio.Task[None] | None = None
    presence: Persona | None = None
    last_dispatch_at: datetime | None = None


class DispatchCoordinator:
    """Batch comments per scope and notify the Agent Runtime.

    A scope is ``(ticket_id, document_id)``; the ticket thread uses
    ``document_id=None``. Scopes never share pending text or timers.

    Document threads are always conversational. Their dispatch text is
    prefixed with the document's label and, when no mention resolves, goes
    to the persona that authored the document.

    Each comment from an author in ``dispatch_author_types`` is appended to
    its scope and restarts the debounce timer. When the scope has been quiet
    for ``debounce_seconds`` the batch is joined, routed, classified and sent
    once. Runtime failures and cooldown rejections are logged and dropped;
    nothing is retried. Any comment in a scope clears its presence indicator.
    A scope's state is dropped once it has no pending text, timers or
    presence.
    """

    def __init__(
        self,
        runtime: AgentRuntime | None,
        directory: MentionDirectory,
        *,
        audit: AuditLog | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        watchdog_seconds: float = DEFAULT_WATCHDOG_SECONDS,
        separator: str = DEFAULT_SEPARATOR,
        conversational_max_chars: int = DEFAULT_CONVERSATIONAL_MAX_CHARS,
        dispatch_author_types: Collection[ActorType] = (ActorType.HUMAN,),
    ) -> None:
        if debounce_seconds <= 0 or watchdog_seconds <= 0:
            raise ValueError("debounce_seconds and watchdog_seconds must be positive")
        self._runtime = runtime
        self._directory = directory
        self._audit = audit
        self._debounce_seconds = debounce_seconds
        self._watchdog_seconds = watchdog_seconds
        self._separator = separator
        self._conversational_max_chars = conversational_max_chars
        self._dispatch_author_types = frozenset(dispatch_author_types)
        self._scopes: dict[Scope, _ScopeState] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def directory(self) -> MentionDirectory:
        return self._directory

    def comment_posted(self, comment: Comment, *, document: DocumentContext | None = None) -> None:
        """Feed a persisted comment into its scope."""

        if self._closed:
            return
        scope = comment.scope
        state = self._scopes.setdefault(scope, _ScopeState())

        self._clear_presence(scope, state)
        if document is not None:
            state.document = document

        if comment.author_type not in self._dispatch_author_types or not comment.content.strip():
            self._discard_if_idle(scope, state)
            return

        state.pending.append(comment.content)
        if state.debounce is not None:
            state.debounce.cancel()
            logger.debug("Debounce restarted for %s (%d pending)", _describe(scope), len(state.pending))
        state.debounce = self._spawn(self._debounce_then_flush(scope))

    def pending(self, ticket_id: str, document_id: str | None = None) -> tuple[str, ...]:
        state = self._scopes.get((ticket_id, document_id))
        return tuple(state.pending) if state is not None else ()

    def presence(self, ticket_id: str, document_id: str | None = None) -> Persona | None:
        state = self._scopes.get((ticket_id, document_id))
        return state.presence if state is not None else None

    def last_dispatch_at(self, ticket_id: str, document_id: str | None = None) -> datetime | None:
        """When the scope last called the runtime, while the scope is still active."""

        state = self._scopes.get((ticket_id, document_id))
        return state.last_dispatch_at if state is not None else None

    def active_scopes(self) -> int:
        return len(self._scopes)

    async def flush(self, ticket_id: str, document_id: str | None = None) -> DispatchOutcome | None:
        """Flush a scope immediately, skipping whatever is left of its debounce window."""

        scope = (ticket_id, document_id)
        state = self._scopes.get(scope)
        if state is not None and state.debounce is not None:
            state.debounce.cancel()
            state.debounce = None
        return await self._flush(scope)

    def forget(self, ticket_id: str) -> None:
        """Drop every scope of a deleted ticket, cancelling its timers."""

        for scope in [scope for scope in self._scopes if scope[0] == ticket_id]:
            state = self._scopes.pop(scope)
            for task in (state.debounce, state.watchdog):
                if task is not None:
                    task.cancel()

    async def aclose(self) -> None:
        """Cancel all timers. Pending text is dropped; its comments are already stored."""

        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        for state in self._scopes.values():
            state.debounce = None
            state.watchdog = None
            state.pending.clear()

    async def _debounce_then_flush(self, scope: Scope) -> None:
        await asyncio.sleep(self._debounce_seconds)
        state = self._scopes.get(scope)
        if state is None:
            return
        # Detach so a comment arriving mid-dispatch restarts a new timer
        # instead of cancelling the call in flight.
        if state.debounce is asyncio.current_task():
            state.debounce = None
        await self._flush(scope)

    async def _flush(self, scope: Scope) -> DispatchOutcome | None:
        state = self._scopes.get(scope)
        if state is None or not state.pending:
            return None

        texts, state.pending = state.pending, []
        ticket_id, document_id = scope
        combined = self._separator.join(texts)
        target = self._directory.resolve(combined)
        if document_id is None:
            conversational = is_conversational(combined, max_chars=self._conversational_max_chars)
        else:
            conversational = True
            target = self._document_target(target, state.document)
            if state.document is not None:
                combined = f"[Comment on {state.document.label}] {combined}"
        request = DispatchRequest(
            ticket_id=ticket_id,
            combined_text=combined,
            target=target,
            conversational=conversational,
            document_id=document_id,
            batch_size=len(texts),
        )

        responder: Persona | None = None
        with tracer.start_as_current_span("dispatch.flush") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("dispatch.target", target.describe())
            span.set_attribute("dispatch.conversational", conversational)
            span.set_attribute("dispatch.batch_size", len(texts))
            if document_id is not None:
                span.set_attribute("document.id", document_id)

            if self._runtime is None:
                outcome = DispatchOutcome.SKIPPED
                logger.info("No agent runtime configured; dropping dispatch for %s", _describe(scope))
            else:
                state.last_dispatch_at = datetime.now(timezone.utc)
                try:
                    result = await self._runtime.dispatch(request)
                except Exception as exc:
                    outcome = DispatchOutcome.FAILED
                    span.record_exception(exc)
                    logger.warning("Dispatch for %s failed", _describe(scope), exc_info=True)
                else:
                    if result.rejected_cooldown:
                        outcome = DispatchOutcome.COOLDOWN
                    elif result.accepted_persona is not None:
                        outcome = DispatchOutcome.ACCEPTED
                        responder = result.accepted_persona
                    else:
                        outcome = DispatchOutcome.NO_PERSONA
                    logger.info(
                        "Dispatched %d comment(s) for %s to %s: %s",
                        len(texts),
                        _describe(scope),
                        target.describe(),
                        outcome.value,
                    )
            span.set_attribute("dispatch.outcome", outcome.value)

        if responder is not None and self._scopes.get(scope) is state:
            state.presence = responder
            self._arm_watchdog(scope, state)
        else:
            self._discard_if_idle(scope, state)

        await self._record_attempt(request, outcome, responder)
        return outcome

    def _arm_watchdog(self, scope: Scope, state: _ScopeState) -> None:
        if state.watchdog is not None:
            state.watchdog.cancel()
        state.watchdog = self._spawn(self._watchdog(scope))
        logger.debug("Watchdog armed for %s (%.0fs)", _describe(scope), self._watchdog_seconds)

    async def _watchdog(self, scope: Scope) -> None:
        await asyncio.sleep(self._watchdog_seconds)
        state = self._scopes.get(scope)
        if state is None or state.watchdog is not asyncio.current_task():
            return
        state.watchdog = None
        if state.presence is not None:
            logger.info("No reply from %s on %s; clearing presence", state.presence.name, _describe(scope))
            state.presence = None
        self._discard_if_idle(scope, state)

    def _document_target(self, target: DispatchTarget, document: DocumentContext | None) -> DispatchTarget:
        if target.kind is not TargetKind.UNASSIGNED or document is None or document.author_id is None:
            return target
        author = self._directory.find(document.author_id)
        return DispatchTarget.for_persona(author) if author is not None else target

    def _discard_if_idle(self, scope: Scope, state: _ScopeState) -> None:
        if state.pending or state.debounce is not None or state.watchdog is not None or state.presence is not None:
            return
        if self._scopes.get(scope) is state:
            del self._scopes[scope]

    def _clear_presence(self, scope: Scope, state: _ScopeState) -> None:
        if state.watchdog is not None:
            state.watchdog.cancel()
            state.watchdog = None
        if state.presence is not None:
            logger.debug("Presence of %s cleared on %s by new comment", state.presence.name, _describe(scope))
            state.presence = None

    async def _record_attempt(
        self,
        request: DispatchRequest,
        outcome: DispatchOutcome,
        responder: Persona | None,
    ) -> None:
        if self._audit is None:
            return
        metadata: dict[str, Any] = {
            "outcome": outcome.value,
            "target": request.target.describe(),
            "conversational": request.conversational,
            "batchSize": request.batch_size,
        }
        if request.document_id is not None:
            metadata["documentId"] = request.document_id
        if responder is not None:
            metadata["personaId"] = responder.id
            metadata["personaName"] = responder.name
        try:
            await self._audit.record(
                request.ticket_id,
                AuditEventName.DISPATCH_ATTEMPTED,
                _COORDINATOR_ACTOR,
                f"Dispatch to {request.target.describe()}: {outcome.value}",
                metadata,
            )
        except Exception:
            logger.warning("Could not audit dispatch for ticket %s", request.ticket_id, exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _describe(scope: Scope) -> str:
    ticket_id, document_id = scope
    if document_id is None:
        return f"ticket {ticket_id}"
    return f"ticket {ticket_id} document {document_id}"

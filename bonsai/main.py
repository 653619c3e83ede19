from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from bonsai.api.routes import audit, comments, documents, personas, ping, tickets
from bonsai.audit.log import AuditLog
from bonsai.core.config import Settings, get_settings
from bonsai.core.logging import configure_logging, init_tracer, shutdown_tracer
from bonsai.dispatch.coordinator import DispatchCoordinator
from bonsai.dispatch.mentions import MentionDirectory
from bonsai.dispatch.runtime import AgentRuntime, CooldownAgentRuntime, HttpAgentRuntime
from bonsai.store.sql import SqlEntityStore
from bonsai.tickets.models import ActorType
from bonsai.tickets.service import TicketService


def build_runtime(settings: Settings) -> tuple[AgentRuntime | None, HttpAgentRuntime | None]:
    """Return the runtime the coordinator calls and the HTTP client to close on shutdown."""

    if not settings.agent_runtime_url:
        return None, None
    http_runtime = HttpAgentRuntime(settings.agent_runtime_url, timeout=settings.agent_runtime_timeout)
    if settings.dispatch_cooldown_seconds <= 0:
        return http_runtime, http_runtime
    return CooldownAgentRuntime(http_runtime, cooldown_seconds=settings.dispatch_cooldown_seconds), http_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    db_engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    store = SqlEntityStore(session_factory, engine=db_engine)
    await store.ensure_schema()

    directory = MentionDirectory(await store.list_personas(), settings.role_slugs)
    runtime, http_runtime = build_runtime(settings)
    if runtime is None:
        logger.warning("BONSAI_AGENT_RUNTIME_URL is not set; comments will not be dispatched")

    audit_log = AuditLog(store)
    coordinator = DispatchCoordinator(
        runtime,
        directory,
        audit=audit_log,
        debounce_seconds=settings.debounce_seconds,
        watchdog_seconds=settings.watchdog_seconds,
        separator=settings.dispatch_separator,
        conversational_max_chars=settings.conversational_max_chars,
        dispatch_author_types=[ActorType(item) for item in settings.dispatch_author_types],
    )
    app.state.db_engine = db_engine
    app.state.coordinator = coordinator
    app.state.ticket_service = TicketService(store, audit=audit_log, coordinator=coordinator)
    try:
        yield
    finally:
        await coordinator.aclose()
        if http_runtime is not None:
            await http_runtime.aclose()
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(documents.router)
    app.include_router(comments.router)
    app.include_router(audit.router)
    app.include_router(personas.router)
    return app


app = create_app()

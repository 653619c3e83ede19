import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider
from pydantic import ValidationError

from bonsai.core.config import Settings
from bonsai.core.logging import TraceContextFilter, _parse_headers, configure_logging, init_tracer
from bonsai.dispatch.runtime import CooldownAgentRuntime, HttpAgentRuntime
from bonsai.main import build_runtime


def test_defaults_match_dispatch_timings():
    settings = Settings(_env_file=None)

    assert settings.debounce_seconds == 3.0
    assert settings.watchdog_seconds == 120.0
    assert settings.conversational_max_chars == 200
    assert settings.dispatch_separator == "\n\n---\n\n"
    assert settings.agent_runtime_url is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BONSAI_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("BONSAI_DATABASE_URL", "postgresql://bonsai:secret@db:5432/bonsai")
    monkeypatch.setenv("BONSAI_ROLE_SLUGS", '["developer", "critic"]')

    settings = Settings(_env_file=None)

    assert settings.debounce_seconds == 0.5
    assert settings.database_url == "postgresql+asyncpg://bonsai:secret@db:5432/bonsai"
    assert settings.role_slugs == ("developer", "critic")


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debounce_seconds=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, dispatch_author_types=("robot",))


def test_parse_headers_skips_malformed_items():
    assert _parse_headers("api-key=abc, x-team = bonsai,broken,") == {"api-key": "abc", "x-team": "bonsai"}
    assert _parse_headers(None) == {}


def test_configure_logging_sets_level():
    logger = configure_logging(Settings(_env_file=None, log_level="debug", app_name="bonsai-test"))

    assert logger.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_dispatch_loggers_can_run_at_their_own_level():
    configure_logging(Settings(_env_file=None, log_level="warning", dispatch_log_level="debug"))

    assert logging.getLogger("bonsai.dispatch").level == logging.DEBUG
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_trace_context_filter_stamps_active_span():
    record = logging.LogRecord("bonsai.dispatch", logging.INFO, __file__, 1, "flushed", None, None)
    tracer = TracerProvider().get_tracer(__name__)

    TraceContextFilter().filter(record)
    assert record.trace_id == "-"

    with tracer.start_as_current_span("dispatch.flush") as span:
        TraceContextFilter().filter(record)
    assert record.trace_id == format(span.get_span_context().trace_id, "032x")
    assert len(record.span_id) == 16


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(_env_file=None)) is None


def test_build_runtime_wraps_http_runtime_with_cooldown():
    runtime, http_runtime = build_runtime(Settings(_env_file=None, agent_runtime_url="http://agents.local"))
    bare, _ = build_runtime(
        Settings(_env_file=None, agent_runtime_url="http://agents.local", dispatch_cooldown_seconds=0)
    )

    assert isinstance(runtime, CooldownAgentRuntime)
    assert isinstance(http_runtime, HttpAgentRuntime)
    assert isinstance(bare, HttpAgentRuntime)
    assert build_runtime(Settings(_env_file=None)) == (None, None)

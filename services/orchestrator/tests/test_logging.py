import json
import logging

import pytest

from paperchat.infra.logging.context import bind_log_context, get_log_context
from paperchat.infra.logging.setup import (
    ContextInjectionFilter,
    SessionDebugFilter,
    StructuredJsonFormatter,
    redact_text,
    render_payload_preview,
)
from paperchat.worker.celery_app import INDEX_QUEUE, celery_config
from paperchat.config import Settings


def _record(level: int = logging.INFO, name: str = "paperchat.application.orchestrator", **extra) -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 1, "chat turn completed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bind_log_context_nests_and_restores() -> None:
    with bind_log_context(request_id="r1", session_id="s1"):
        with bind_log_context(skill_id="paper_search", session_id=None):
            assert get_log_context() == {"request_id": "r1", "session_id": None, "skill_id": "paper_search", "task_id": None}
        assert get_log_context()["session_id"] == "s1"
        assert get_log_context()["skill_id"] is None
    assert get_log_context()["request_id"] is None


def test_bind_log_context_rejects_unknown_fields() -> None:
    with pytest.raises(TypeError):
        with bind_log_context(job_id="j1"):
            pass


def test_redaction_masks_credentials() -> None:
    text = "api-key: abc123 url=postgresql://app:hunter2@db:5432/papers Authorization: Bearer tok.en"
    redacted = redact_text(text, "standard")
    assert "abc123" not in redacted
    assert "hunter2" not in redacted
    assert "tok.en" not in redacted
    assert redact_text(text, "off") == text
    assert redact_text(None, "strict") is None


def test_payload_preview_is_truncated() -> None:
    preview = render_payload_preview({"query": "x" * 100}, max_chars=20, redaction_mode="standard")
    assert preview.endswith("...(truncated)")
    assert len(preview) == 20 + len("...(truncated)")


def test_session_debug_filter_opens_debug_for_selected_sessions_and_modules() -> None:
    debug_filter = SessionDebugFilter(
        min_level=logging.INFO, debug_modules=("paperchat.application.hybrid_search",), debug_session_ids=("s-debug",)
    )
    assert debug_filter.filter(_record(logging.WARNING))
    assert not debug_filter.filter(_record(logging.DEBUG))
    assert debug_filter.filter(_record(logging.DEBUG, session_id="s-debug"))
    assert debug_filter.filter(_record(logging.DEBUG, name="paperchat.application.hybrid_search"))
    assert not debug_filter.filter(_record(logging.DEBUG, name="paperchat.application.hybrid_search_extra"))


def test_formatter_emits_one_json_line_with_context() -> None:
    formatter = StructuredJsonFormatter(process_role="api")
    record = _record(event="chat.turn.completed", chain_depth="2", paper_id="p1", payload_preview={"api_key": "k"})
    with bind_log_context(session_id="s1", skill_id="paper_explain"):
        ContextInjectionFilter().filter(record)
    entry = json.loads(formatter.format(record))

    assert entry["event"] == "chat.turn.completed"
    assert entry["session_id"] == "s1"
    assert entry["skill_id"] == "paper_explain"
    assert entry["chain_depth"] == 2.0
    assert entry["paper_id"] == "p1"
    assert entry["process_role"] == "api"
    assert "\n" not in formatter.format(record)


def test_celery_config_routes_indexing_queue() -> None:
    config = celery_config(Settings(celery_task_always_eager=True, index_soft_timeout_seconds=60))
    assert config["task_routes"]["paperchat.worker.tasks.index_paper_task"]["queue"] == INDEX_QUEUE
    assert config["task_soft_time_limit"] == 60
    assert config["task_always_eager"] is True

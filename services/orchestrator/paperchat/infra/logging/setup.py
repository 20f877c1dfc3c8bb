"""日志初始化：每个进程角色写一份 JSONL，经队列由后台线程落盘。

记录在入队前补齐上下文字段（请求、会话、技能、任务），并按级别、模块与会话决定是否放行 DEBUG。
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from paperchat.config import Settings
from paperchat.infra.logging.context import LOG_CONTEXT_FIELDS, get_log_context

SERVICE_NAME = "paperchat-orchestrator"
LOG_FILE_NAME = "paperchat.jsonl"

# extra 中允许出现的业务字段，按类型分组后写入 JSON 行
TEXT_FIELDS: tuple[str, ...] = ("paper_id", "external_service", "op", "error_type")
NUMERIC_FIELDS: tuple[str, ...] = ("duration_ms", "status_code", "retry", "chain_depth", "result_count")

QUIET_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery.worker.strategy": logging.WARNING,
    "fitz": logging.ERROR,
}

_listener: QueueListener | None = None

# Azure 请求头里的 api-key、连接串里的密码、Bearer 令牌
_CREDENTIAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(api[-_]key[\"']?\s*[:=]\s*[\"']?)[^\s,;\"']+"), r"\1***"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"), r"\1***"),
    (re.compile(r"(\w+://[^:/@\s]*:)[^@\s]+(@)"), r"\1***\2"),
    (re.compile(r"(?i)(password[\"']?\s*[:=]\s*[\"']?)[^\s,;\"']+"), r"\1***"),
)
_STRICT_PATTERN = re.compile(r"(?i)\b(api[-_]?key|password|secret|token)\b[^,\s}]*")


def redact_text(value: str | None, mode: str) -> str | None:
    """mode 取 off / standard / strict；strict 连字段名后的整段值一起抹掉。"""
    if value is None:
        return None
    text = str(value)
    mode = mode.lower()
    if mode == "off":
        return text
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        text = pattern.sub(replacement, text)
    if mode == "strict":
        text = _STRICT_PATTERN.sub(lambda m: f"{m.group(1)}=***", text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    if payload is None:
        return None
    if isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
    text = redact_text(text, redaction_mode) or ""
    return text if len(text) <= max_chars else f"{text[:max_chars]}...(truncated)"


def _number(value: Any) -> int | float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ContextInjectionFilter(logging.Filter):
    """把当前协程的上下文字段写到 record 上；监听线程里已经读不到 contextvars。"""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in get_log_context().items():
            if value is not None and getattr(record, name, None) is None:
                setattr(record, name, value)
        return True


class SessionDebugFilter(logging.Filter):
    """正常按 min_level 过滤；DEBUG 记录在模块前缀或会话命中白名单时放行。"""

    def __init__(self, min_level: int = logging.INFO, debug_modules: tuple[str, ...] = (), debug_session_ids: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.min_level = min_level
        self.debug_modules = tuple(debug_modules)
        self.debug_session_ids = frozenset(debug_session_ids)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self.min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if any(record.name == name or record.name.startswith(f"{name}.") for name in self.debug_modules):
            return True
        return getattr(record, "session_id", None) in self.debug_session_ids


class StructuredJsonFormatter(logging.Formatter):
    """一条记录一行 JSON，字段集合固定，缺省值为 null。"""

    def __init__(self, *, process_role: str, redaction_mode: str = "standard", payload_preview_chars: int = 512) -> None:
        super().__init__()
        self.process_role = process_role
        self.redaction_mode = redaction_mode
        self.payload_preview_chars = payload_preview_chars

    def _entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "process_role": self.process_role,
            "module": record.name,
            "event": getattr(record, "event", None),
        }
        entry.update({name: getattr(record, name, None) for name in LOG_CONTEXT_FIELDS})
        entry.update({name: getattr(record, name, None) for name in TEXT_FIELDS})
        entry.update({name: _number(getattr(record, name, None)) for name in NUMERIC_FIELDS})
        return entry

    def format(self, record: logging.LogRecord) -> str:
        entry = self._entry(record)
        entry["message"] = redact_text(record.getMessage(), self.redaction_mode)
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        entry["error"] = redact_text(str(error), self.redaction_mode) if error is not None else None
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self.payload_preview_chars,
            redaction_mode=self.redaction_mode,
        )
        return json.dumps(entry, ensure_ascii=False)


def log_file_for(settings: Settings, process_role: str) -> Path:
    """api / worker / cli 各自一个目录，避免多进程轮转同一个文件。"""
    root = settings.log_dir if settings.log_dir.is_absolute() else (Path.cwd() / settings.log_dir).resolve()
    directory = root / process_role
    directory.mkdir(parents=True, exist_ok=True)
    return directory / LOG_FILE_NAME


def _output_handlers(settings: Settings, log_file: Path, formatter: logging.Formatter) -> list[logging.Handler]:
    file_handler = RotatingFileHandler(
        log_file, maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, encoding="utf-8"
    )
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    for handler in (file_handler, stderr_handler):
        handler.setFormatter(formatter)
    return [file_handler, stderr_handler]


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """重复调用会先停掉旧监听器；返回本进程的日志文件路径。"""
    global _listener
    shutdown_logging()

    log_file = log_file_for(settings, process_role)
    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "context": {"()": ContextInjectionFilter},
                "debug_routing": {
                    "()": SessionDebugFilter,
                    "min_level": getattr(logging, settings.log_level.upper(), logging.INFO),
                    "debug_modules": tuple(settings.log_debug_modules_list()),
                    "debug_session_ids": tuple(settings.log_debug_session_ids_list()),
                },
            },
            "handlers": {
                "queue": {
                    "class": "logging.handlers.QueueHandler",
                    "queue": records,
                    "filters": ["context", "debug_routing"],
                }
            },
            "root": {"level": "DEBUG", "handlers": ["queue"]},
            "loggers": {name: {"level": level} for name, level in QUIET_LOGGERS.items()},
        }
    )

    formatter = StructuredJsonFormatter(
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    _listener = QueueListener(records, *_output_handlers(settings, log_file, formatter), respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    global _listener
    listener, _listener = _listener, None
    if listener is None:
        return
    listener.stop()
    for handler in listener.handlers:
        handler.close()
    for handler in logging.getLogger().handlers:
        if isinstance(handler, QueueHandler):
            logging.getLogger().removeHandler(handler)

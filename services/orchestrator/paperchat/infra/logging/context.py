"""日志上下文：一轮对话或一次任务内共享的标识字段，随协程传播。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

LOG_CONTEXT_FIELDS: tuple[str, ...] = ("request_id", "session_id", "skill_id", "task_id")

_log_context: ContextVar[dict[str, str | None]] = ContextVar("paperchat_log_context", default={})


def get_log_context() -> dict[str, str | None]:
    current = _log_context.get()
    return {name: current.get(name) for name in LOG_CONTEXT_FIELDS}


@contextmanager
def bind_log_context(**fields: str | None) -> Iterator[None]:
    """叠加绑定字段，退出时恢复到进入前的状态。

    只接受 LOG_CONTEXT_FIELDS 中的字段名；显式传 None 可以在内层清除某个字段。
    """
    unknown = set(fields) - set(LOG_CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"unsupported log context fields: {sorted(unknown)}")
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)

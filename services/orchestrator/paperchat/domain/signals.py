"""模型回复协议解析：<signals> JSON、<prompt_buttons> 数组以及正文清洗。

解析失败一律回退到默认值，不重试、不抛异常。
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any

from paperchat.domain.enums import Confidence, Coverage, NextActionHint
from paperchat.domain.models import ExecutionSignals

logger = logging.getLogger(__name__)

HIDDEN_TAGS: tuple[str, ...] = ("signals", "prompt_buttons", "action_buttons", "suggestion_buttons")

_SIGNALS_RE = re.compile(r"<signals>([\s\S]*?)</signals>")
_BUTTONS_RE = re.compile(r"<prompt_buttons>([\s\S]*?)</prompt_buttons>")
_HIDDEN_BLOCK_RES = tuple(re.compile(rf"<{tag}>[\s\S]*?</{tag}>") for tag in HIDDEN_TAGS)

_ENUM_FIELDS: dict[str, type[Enum]] = {
    "coverage": Coverage,
    "confidence": Confidence,
    "next_action_hint": NextActionHint,
    "user_understanding": Confidence,
    "diversity_score": Confidence,
}
_BOOL_FIELDS = ("knowledge_gap", "explanation_complete", "intent_clarified")
_INT_FIELDS = ("recommendations_count", "search_result_count")
_STR_FIELDS = ("suggested_skill_id", "gap_reason")


def _coerce_enum(enum_type: type[Enum], value: Any, default: Any) -> Any:
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        return default


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def signals_from_mapping(parsed: dict[str, Any]) -> ExecutionSignals:
    """把解析出的键覆盖到默认信号上；非法取值按字段回退默认。"""
    signals = ExecutionSignals()
    for key, enum_type in _ENUM_FIELDS.items():
        if parsed.get(key) is not None:
            setattr(signals, key, _coerce_enum(enum_type, parsed[key], getattr(signals, key)))
    for key in _BOOL_FIELDS:
        if isinstance(parsed.get(key), bool):
            setattr(signals, key, parsed[key])
    for key in _INT_FIELDS:
        setattr(signals, key, _coerce_int(parsed.get(key)))
    for key in _STR_FIELDS:
        value = parsed.get(key)
        if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
            setattr(signals, key, value.strip())
    return signals


def parse_signals(response: str) -> ExecutionSignals:
    match = _SIGNALS_RE.search(response or "")
    if match is None:
        return ExecutionSignals()
    try:
        parsed = json.loads(match.group(1).strip())
    except json.JSONDecodeError as exc:
        logger.warning("malformed signals block", extra={"event": "signals.parse.failed", "error": str(exc)})
        return ExecutionSignals()
    if not isinstance(parsed, dict):
        return ExecutionSignals()
    return signals_from_mapping(parsed)


def parse_prompt_buttons(response: str) -> list[str] | None:
    match = _BUTTONS_RE.search(response or "")
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(1).strip())
    except json.JSONDecodeError as exc:
        logger.warning("malformed prompt_buttons block", extra={"event": "buttons.parse.failed", "error": str(exc)})
        return None
    if not isinstance(parsed, list):
        return None
    buttons = [str(item).strip() for item in parsed if isinstance(item, (str, int, float)) and str(item).strip()]
    return buttons or None


def clean_content(response: str) -> str:
    """去掉所有协议块后返回用户可见正文。"""
    text = response or ""
    for pattern in _HIDDEN_BLOCK_RES:
        text = pattern.sub("", text)
    return text.strip()


class TaggedBlockFilter:
    """流式增量过滤器：协议块内的文本不下发，其余文本按到达顺序原样输出。

    只有在无法判断 "<" 是否为协议块开头时才暂存少量字符。
    """

    def __init__(self, tags: tuple[str, ...] = HIDDEN_TAGS) -> None:
        self._open_tags = {f"<{tag}>": f"</{tag}>" for tag in tags}
        self._buffer = ""
        self._closing: str | None = None

    def _could_open(self, text: str) -> bool:
        return any(tag.startswith(text) for tag in self._open_tags)

    def feed(self, delta: str) -> str:
        self._buffer += delta
        visible: list[str] = []
        while self._buffer:
            if self._closing is not None:
                end = self._buffer.find(self._closing)
                if end < 0:
                    # 只保留可能是结束标签前缀的尾巴
                    self._buffer = self._buffer[-(len(self._closing) - 1):]
                    break
                self._buffer = self._buffer[end + len(self._closing):]
                self._closing = None
                continue

            start = self._buffer.find("<")
            if start < 0:
                visible.append(self._buffer)
                self._buffer = ""
                break
            visible.append(self._buffer[:start])
            rest = self._buffer[start:]
            opened = next((tag for tag in self._open_tags if rest.startswith(tag)), None)
            if opened is not None:
                self._closing = self._open_tags[opened]
                self._buffer = rest[len(opened):]
                continue
            if self._could_open(rest):
                self._buffer = rest
                break
            visible.append("<")
            self._buffer = rest[1:]
        return "".join(visible)

    def flush(self) -> str:
        """上游结束时调用；未闭合的协议块直接丢弃。"""
        pending = "" if self._closing is not None else self._buffer
        self._buffer = ""
        self._closing = None
        return pending

"""技能执行器：组装消息、调用生成模型（批量或流式）并解析回复协议。

模型未配置或调用失败时不向上抛出：批量返回致歉文案与低置信信号，流式输出 error 事件。
"""

from __future__ import annotations

import logging
import time
from typing import AsyncGenerator, AsyncIterator, Protocol

import httpx

from paperchat.domain.enums import StreamEventType
from paperchat.domain.models import ChatMessage, ExecutionResult, ExecutionSignals, StreamEvent
from paperchat.domain.signals import TaggedBlockFilter, clean_content, parse_prompt_buttons, parse_signals
from paperchat.domain.skills.prompts import BASE_PERSONA_PROMPT
from paperchat.domain.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 8
EVENT_TRIGGER_PLACEHOLDER = "(이벤트 트리거)"
UNAVAILABLE_MESSAGE = "죄송합니다. AI 서비스에 연결할 수 없습니다. 잠시 후 다시 시도해주세요."
FAILURE_MESSAGE = "죄송합니다. 응답 생성 중 오류가 발생했습니다. 다시 시도해주세요."
STREAM_UNAVAILABLE_MESSAGE = "AI 서비스에 연결할 수 없습니다."
STREAM_FAILURE_MESSAGE = "응답 생성 중 오류가 발생했습니다."


class ChatModel(Protocol):
    @property
    def configured(self) -> bool: ...

    async def complete(self, messages: list[dict[str, str]]) -> str: ...

    def stream(self, messages: list[dict[str, str]]) -> AsyncGenerator[str, None]: ...


class SkillExecutor:
    """每次执行只调用一次模型，不做重试。"""
    def __init__(self, *, registry: SkillRegistry, model: ChatModel) -> None:
        self._registry = registry
        self._model = model

    def build_messages(
        self,
        skill_id: str,
        context_pack: str,
        message: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> list[dict[str, str]]:
        skill = self._registry.get(skill_id)
        messages = [{"role": "system", "content": f"{BASE_PERSONA_PROMPT}\n\n{skill.instructions()}"}]
        for item in (history or [])[-HISTORY_WINDOW:]:
            if item.role in ("user", "assistant"):
                messages.append({"role": item.role, "content": item.content})
        messages.append(
            {
                "role": "user",
                "content": (
                    f"[CONTEXT_PACK]\n{context_pack}\n[/CONTEXT_PACK]\n\n"
                    f"사용자 메시지: {message or EVENT_TRIGGER_PLACEHOLDER}"
                ),
            }
        )
        return messages

    @staticmethod
    def _fallback(content: str) -> ExecutionResult:
        return ExecutionResult(content=content, raw_response="", signals=ExecutionSignals.failure())

    async def execute(
        self,
        skill_id: str,
        context_pack: str,
        message: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> ExecutionResult:
        if not self._model.configured:
            logger.error("chat model is not configured", extra={"event": "executor.unconfigured", "skill_id": skill_id})
            return self._fallback(UNAVAILABLE_MESSAGE)

        messages = self.build_messages(skill_id, context_pack, message, history)
        started = time.perf_counter()
        try:
            raw = await self._model.complete(messages)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.error(
                "skill execution failed",
                extra={
                    "event": "executor.execute.failed",
                    "skill_id": skill_id,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return self._fallback(FAILURE_MESSAGE)

        signals = parse_signals(raw)
        logger.info(
            "skill executed",
            extra={
                "event": "executor.execute.completed",
                "skill_id": skill_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": signals.to_dict(),
            },
        )
        return ExecutionResult(
            content=clean_content(raw),
            raw_response=raw,
            signals=signals,
            prompt_buttons=parse_prompt_buttons(raw),
        )

    async def execute_stream(
        self,
        skill_id: str,
        context_pack: str,
        message: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """按到达顺序转发正文增量，结束后依次输出 signals、buttons（如有）与 done。

        调用方关闭生成器时，上游连接随 aclose 一并释放。
        """
        if not self._model.configured:
            logger.error("chat model is not configured", extra={"event": "executor.unconfigured", "skill_id": skill_id})
            yield StreamEvent(StreamEventType.error.value, {"message": STREAM_UNAVAILABLE_MESSAGE})
            return

        messages = self.build_messages(skill_id, context_pack, message, history)
        tag_filter = TaggedBlockFilter()
        parts: list[str] = []
        started = time.perf_counter()
        upstream = self._model.stream(messages)
        try:
            async for delta in upstream:
                parts.append(delta)
                visible = tag_filter.feed(delta)
                if visible:
                    yield StreamEvent(StreamEventType.content.value, visible)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.error(
                "skill stream failed",
                extra={
                    "event": "executor.stream.failed",
                    "skill_id": skill_id,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            yield StreamEvent(StreamEventType.error.value, {"message": STREAM_FAILURE_MESSAGE})
            return
        finally:
            await upstream.aclose()

        tail = tag_filter.flush()
        if tail:
            yield StreamEvent(StreamEventType.content.value, tail)

        raw = "".join(parts)
        result = ExecutionResult(
            content=clean_content(raw),
            raw_response=raw,
            signals=parse_signals(raw),
            prompt_buttons=parse_prompt_buttons(raw),
        )
        logger.info(
            "skill stream completed",
            extra={
                "event": "executor.stream.completed",
                "skill_id": skill_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": result.signals.to_dict(),
            },
        )
        yield StreamEvent(StreamEventType.signals.value, result.signals.to_dict())
        if result.prompt_buttons:
            yield StreamEvent(StreamEventType.buttons.value, result.prompt_buttons)
        yield StreamEvent(
            StreamEventType.done.value,
            {"content": result.content, "signals": result.signals.to_dict(), "prompt_buttons": result.prompt_buttons},
            result=result,
        )

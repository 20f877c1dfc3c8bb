"""对话接口：同一入口同时支持 JSON 响应与 SSE 流式响应。"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from paperchat.api.v1.responses import bad_request, error_response, internal_error, success_response
from paperchat.api.v1.schemas import ChatRequest
from paperchat.application.container import get_chat_service
from paperchat.application.orchestrator import ChatOrchestratorService, ChatTurn, OrchestrationError
from paperchat.domain.enums import StreamEventType
from paperchat.domain.models import ChatOutcome
from paperchat.infra.logging.context import bind_log_context

router = APIRouter()
logger = logging.getLogger(__name__)

# 对外的流只包含这几类事件，signals 已随 done 一并返回
FORWARDED_EVENTS = frozenset(
    {StreamEventType.content.value, StreamEventType.buttons.value, StreamEventType.done.value, StreamEventType.error.value}
)
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def _service() -> ChatOrchestratorService:
    return get_chat_service()


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _turn(body: ChatRequest, session_id: str) -> ChatTurn:
    return ChatTurn(
        session_id=session_id,
        trigger=body.trigger,
        message=body.message,
        history=body.history_messages(),
        user_context=body.user_context_for(session_id),
        paper_context=body.paper_context.to_domain() if body.paper_context else None,
        additional_data=body.additional_data.to_domain(),
    )


def _outcome_payload(outcome: ChatOutcome) -> dict[str, Any]:
    data: dict[str, Any] = {
        "message": outcome.message,
        "skill_id": outcome.skill_id,
        "signals": outcome.signals.to_dict(),
        "follow_up_skills": outcome.follow_up_skills,
    }
    if outcome.prompt_buttons:
        data["prompt_buttons"] = outcome.prompt_buttons
    if outcome.search_results:
        data["search_results"] = [item.to_dict() for item in outcome.search_results]
    if outcome.recommended_papers:
        data["recommended_papers"] = [item.to_dict() for item in outcome.recommended_papers]
    return data


@router.post("/chat")
async def chat(
    request: Request,
    body: ChatRequest,
    service: ChatOrchestratorService = Depends(_service),
) -> Any:
    session_id = (body.session_id or "").strip()
    if not session_id:
        return bad_request("session_id is required")

    turn = _turn(body, session_id)
    streaming = body.stream or "text/event-stream" in request.headers.get("accept", "")
    if streaming:
        return StreamingResponse(_event_stream(request, service, turn), media_type="text/event-stream", headers=SSE_HEADERS)

    with bind_log_context(session_id=session_id):
        try:
            outcome = await service.run(turn)
        except OrchestrationError as exc:
            logger.error("chat produced no result", extra={"event": "chat.request.empty", "error": str(exc)})
            return error_response("EXECUTION_FAILED", "응답 생성에 실패했습니다.", 500)
        except Exception as exc:
            logger.exception(
                "chat request failed",
                extra={"event": "chat.request.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return internal_error()
    return success_response(_outcome_payload(outcome))


async def _event_stream(request: Request, service: ChatOrchestratorService, turn: ChatTurn) -> AsyncIterator[str]:
    """客户端断开后停止转发，关闭编排流以释放上游模型连接。"""
    events = service.stream(turn)
    try:
        async for event in events:
            if await request.is_disconnected():
                logger.info("chat stream client disconnected", extra={"event": "chat.stream.disconnected", "session_id": turn.session_id})
                break
            if event.type in FORWARDED_EVENTS:
                yield _sse(event.to_dict())
    except Exception as exc:
        logger.exception(
            "chat stream failed",
            extra={"event": "chat.stream.failed", "session_id": turn.session_id, "error_type": type(exc).__name__, "error": str(exc)},
        )
        yield _sse({"type": StreamEventType.error.value, "data": {"message": "응답 생성 중 오류가 발생했습니다."}})
    finally:
        await events.aclose()

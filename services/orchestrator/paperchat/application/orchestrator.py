"""对话编排服务：前置路由 → 取数/检索/推荐 → 组装上下文 → 执行 → 后置决策，按需链式跳转。

一轮对话内最多执行 MAX_CHAIN_DEPTH 个技能，状态只存在于本轮的 ChainState 中。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import AsyncIterator

from paperchat.application.executor import SkillExecutor
from paperchat.application.hybrid_search import HybridSearchEngine, SearchValidationError
from paperchat.application.recommendations import PaperRecommender, paper_to_result
from paperchat.config import Settings
from paperchat.domain.context.composer import ContextComposer
from paperchat.domain.enums import ContextModule, NextActionHint, PostAction, StreamEventType, TriggerEvent
from paperchat.domain.models import (
    AdditionalContextData,
    ChainState,
    ChatMessage,
    ChatOutcome,
    ExecutionResult,
    ExecutionSignals,
    PaperContext,
    RouteDecision,
    SearchResult,
    StreamEvent,
    UserContext,
)
from paperchat.domain.post_orchestrator import PostOrchestrator
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.registry import SkillRegistry
from paperchat.domain.skills.router import SkillRouter
from paperchat.infra.db.repository import PaperRepository
from paperchat.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

RECOMMENDING_SKILLS = frozenset({"recommend_next", "survey_complete"})
DEFAULT_SEARCH_TOPK = 10
DEFAULT_CANDIDATES_TOPK = 5
CHAIN_SEPARATOR = "\n\n"


class OrchestrationError(RuntimeError):
    """编排循环结束时没有任何技能执行结果。"""


@dataclass(slots=True)
class ChatTurn:
    """一次对话请求，API 层完成校验后构造。"""
    session_id: str
    trigger: TriggerEvent = TriggerEvent.default
    message: str | None = None
    history: list[ChatMessage] = field(default_factory=list)
    user_context: UserContext | None = None
    paper_context: PaperContext | None = None
    additional_data: AdditionalContextData = field(default_factory=AdditionalContextData)


@dataclass(slots=True)
class _Prepared:
    decision: RouteDecision
    skill: BaseSkill
    context_pack: str


class ChatOrchestratorService:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: SkillRegistry,
        router: SkillRouter,
        composer: ContextComposer,
        executor: SkillExecutor,
        post_orchestrator: PostOrchestrator,
        search_engine: HybridSearchEngine,
        recommender: PaperRecommender,
        repository: PaperRepository,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._router = router
        self._composer = composer
        self._executor = executor
        self._post = post_orchestrator
        self._search_engine = search_engine
        self._recommender = recommender
        self._repository = repository

    @staticmethod
    def resolve_user_context(turn: ChatTurn) -> UserContext:
        """调用方未给出首次访问标记时，以历史为空视为首次访问。"""
        if turn.user_context is not None:
            return turn.user_context
        return UserContext(session_id=turn.session_id, is_first_visit=len(turn.history) == 0)

    # 取数

    async def _load_paper(self, turn: ChatTurn) -> PaperContext | None:
        """优先读库；库中无分块时退回摘要，读库失败或不存在时使用调用方给的论文上下文。"""
        supplied = turn.paper_context or turn.additional_data.paper
        if supplied is None:
            return None
        try:
            paper = await asyncio.to_thread(self._repository.get_paper, supplied.paper_id)
            chunks = await asyncio.to_thread(self._repository.list_chunks, supplied.paper_id) if paper else []
        except Exception as exc:
            logger.warning(
                "paper lookup failed, use caller supplied context",
                extra={"event": "chat.paper.lookup_failed", "paper_id": supplied.paper_id, "error": str(exc)},
            )
            return supplied
        if paper is None:
            return supplied
        chunk_texts = [chunk.content for chunk in chunks]
        if not chunk_texts:
            chunk_texts = list(supplied.chunks) or ([paper.abstract] if paper.abstract else [])
        return PaperContext(
            paper_id=paper.id,
            title=paper.title,
            authors=list(paper.authors or []),
            abstract=paper.abstract,
            tags=list(paper.tags or []),
            chunks=chunk_texts,
        )

    async def search_papers(self, query: str, top_k: int) -> list[SearchResult]:
        """对话链路内的检索；混合检索整体失败时退回纯关键词列表。"""
        try:
            hits = await self._search_engine.search(
                query,
                top_k=top_k,
                threshold=self._settings.chat_search_threshold,
                vector_weight=self._settings.chat_search_vector_weight,
                keyword_weight=self._settings.chat_search_keyword_weight,
            )
            return [hit.to_search_result() for hit in hits]
        except SearchValidationError:
            return []
        except Exception as exc:
            logger.warning(
                "hybrid search failed, fall back to keyword listing",
                extra={"event": "chat.search.fallback", "error_type": type(exc).__name__, "error": str(exc)},
            )
        try:
            papers = await asyncio.to_thread(self._repository.keyword_search, query, top_k)
        except Exception as exc:
            logger.error(
                "fallback keyword listing failed",
                extra={"event": "chat.search.fallback_failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []
        return [
            paper_to_result(paper, 1 - index * 0.1, (paper.abstract or "")[:200] or None)
            for index, paper in enumerate(papers)
        ]

    async def _recommend(self, skill: BaseSkill, state: ChainState, user_context: UserContext) -> list[SearchResult]:
        """候选来源依次为：本轮检索结果、问卷兴趣、最近读过论文的相似论文、热门论文。"""
        top_k = skill.budget.candidates_topk or DEFAULT_CANDIDATES_TOPK
        if state.search_results:
            return state.search_results[:top_k]
        if skill.skill_id == "survey_complete":
            found = await self._recommender.from_survey(user_context.session_id, top_k=top_k)
            if found:
                return found
        if user_context.reading_history:
            found = await self._recommender.similar_papers(user_context.reading_history[-1], top_k=top_k)
            if found:
                return found
        try:
            return await self._recommender.popular(top_k=top_k, exclude_ids=user_context.reading_history)
        except Exception as exc:
            logger.warning(
                "popular papers lookup failed",
                extra={"event": "chat.recommend.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []

    async def _prepare(self, turn: ChatTurn, state: ChainState, user_context: UserContext, carried: ExecutionSignals | None) -> _Prepared:
        decision = self._router.route(state.trigger, turn.message, user_context, turn.history, carried)
        skill = self._registry.get(decision.skill_id)
        logger.info(
            "skill routed",
            extra={
                "event": "chat.route",
                "skill_id": skill.skill_id,
                "chain_depth": state.depth,
                "payload_preview": {"reason": decision.reason, "query": decision.query},
            },
        )

        paper = None
        if skill.requires & {ContextModule.paper_metadata, ContextModule.paper_chunks}:
            paper = await self._load_paper(turn)

        context_results = list(turn.additional_data.search_results)
        if skill.needs_search() and decision.query:
            top_k = skill.budget.search_topk or DEFAULT_SEARCH_TOPK
            state.search_results = await self.search_papers(decision.query, top_k)
            context_results = state.search_results

        if skill.skill_id in RECOMMENDING_SKILLS:
            state.recommended_papers = await self._recommend(skill, state, user_context)
            context_results = state.recommended_papers

        additional = AdditionalContextData(
            paper=paper,
            search_results=context_results,
            survey_responses=list(turn.additional_data.survey_responses),
            previous_signals=state.current_signals or turn.additional_data.previous_signals,
            previous_response=state.previous_response or turn.additional_data.previous_response,
        )
        if skill.is_minimal():
            pack = self._composer.compose_minimal(skill.skill_id, state.trigger, user_context)
        else:
            pack = self._composer.compose(skill.skill_id, state.trigger, user_context, additional, turn.history)
        return _Prepared(decision=decision, skill=skill, context_pack=pack)

    def _advance(self, state: ChainState, skill_id: str, result: ExecutionResult) -> ExecutionSignals | None:
        """记录本次执行结果；需要继续时返回带跳转目标的信号，否则返回 None。"""
        state.depth += 1
        state.current_skill_id = skill_id
        state.executed_skills.append(skill_id)
        state.final_result = result
        state.current_signals = result.signals
        state.previous_response = result.content

        post = self._post.decide(result.signals, skill_id)
        proceed = self._post.should_continue(result.signals, skill_id, state.depth)
        logger.info(
            "post orchestration decided",
            extra={
                "event": "chat.post",
                "skill_id": skill_id,
                "chain_depth": state.depth,
                "payload_preview": {"action": post.action.value, "next": post.next_skill_id, "reason": post.reason, "continue": proceed},
            },
        )
        if post.action != PostAction.reroute or not post.next_skill_id or not proceed:
            return None
        state.trigger = TriggerEvent.default
        # 把后置决策的目标写进下一跳路由使用的信号
        return replace(result.signals, next_action_hint=NextActionHint.reroute, suggested_skill_id=post.next_skill_id)

    def _outcome(self, state: ChainState) -> ChatOutcome:
        result = state.final_result
        if result is None:
            raise OrchestrationError("orchestration finished without executing any skill")
        return ChatOutcome(
            message=result.content,
            skill_id=state.current_skill_id or "general_chat",
            signals=result.signals,
            prompt_buttons=result.prompt_buttons,
            search_results=state.search_results,
            recommended_papers=state.recommended_papers,
            follow_up_skills=self._post.suggested_follow_ups(state.current_skill_id or "", result.signals),
            executed_skills=list(state.executed_skills),
        )

    async def run(self, turn: ChatTurn) -> ChatOutcome:
        user_context = self.resolve_user_context(turn)
        state = ChainState(trigger=turn.trigger)
        carried: ExecutionSignals | None = None
        started = time.perf_counter()
        with bind_log_context(session_id=turn.session_id):
            while state.depth < self._post.max_chain_depth:
                prepared = await self._prepare(turn, state, user_context, carried)
                with bind_log_context(skill_id=prepared.skill.skill_id):
                    result = await self._executor.execute(
                        prepared.skill.skill_id, prepared.context_pack, turn.message, turn.history
                    )
                    carried = self._advance(state, prepared.skill.skill_id, result)
                if carried is None:
                    break
            logger.info(
                "chat turn completed",
                extra={
                    "event": "chat.turn.completed",
                    "chain_depth": state.depth,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "payload_preview": {"skills": state.executed_skills},
                },
            )
        return self._outcome(state)

    async def stream(self, turn: ChatTurn) -> AsyncIterator[StreamEvent]:
        """流式版本同样支持链式跳转：各跳正文依次转发，只有最后一跳输出 signals/buttons/done。

        生成器可能在其他上下文中被关闭，这里不绑定日志上下文，标识直接写在日志字段里。
        """
        user_context = self.resolve_user_context(turn)
        state = ChainState(trigger=turn.trigger)
        carried: ExecutionSignals | None = None
        while state.depth < self._post.max_chain_depth:
            prepared = await self._prepare(turn, state, user_context, carried)
            skill_id = prepared.skill.skill_id
            if state.depth > 0:
                yield StreamEvent(StreamEventType.content.value, CHAIN_SEPARATOR)
            tail: list[StreamEvent] = []
            done: StreamEvent | None = None
            events = self._executor.execute_stream(skill_id, prepared.context_pack, turn.message, turn.history)
            try:
                async for event in events:
                    if event.type == StreamEventType.content.value:
                        yield event
                    elif event.type == StreamEventType.error.value:
                        yield event
                        return
                    elif event.type == StreamEventType.done.value:
                        done = event
                    else:
                        tail.append(event)
            finally:
                await events.aclose()
            if done is None or done.result is None:
                return
            carried = self._advance(state, skill_id, done.result)
            if carried is not None:
                continue

            for event in tail:
                yield event
            outcome = self._outcome(state)
            payload = dict(done.data)
            payload.update(
                {
                    "skill_id": outcome.skill_id,
                    "search_results": [item.to_dict() for item in outcome.search_results],
                    "recommended_papers": [item.to_dict() for item in outcome.recommended_papers],
                    "follow_up_skills": outcome.follow_up_skills,
                }
            )
            logger.info(
                "chat stream completed",
                extra={
                    "event": "chat.stream.completed",
                    "session_id": turn.session_id,
                    "skill_id": skill_id,
                    "chain_depth": state.depth,
                    "payload_preview": {"skills": state.executed_skills},
                },
            )
            yield StreamEvent(StreamEventType.done.value, payload, result=done.result)
            return

"""后置编排：根据执行信号决定停止还是跳转到下一个技能。

技能相关规则都放在按 skill_id 索引的表里，新增技能时只需补表。
"""

from __future__ import annotations

import logging

from paperchat.domain.enums import Confidence, Coverage, NextActionHint, PostAction
from paperchat.domain.models import ExecutionSignals, PostDecision
from paperchat.domain.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 3

# knowledge_gap=true 时的跳转
KNOWLEDGE_GAP_ROUTES: dict[str, tuple[str, str]] = {
    "paper_explain": ("paper_search", "논문 설명 중 지식 갭 발생, 추가 검색 필요"),
    "general_chat": ("paper_search", "일반 대화 중 관련 논문 검색 필요"),
}

# 低覆盖时的处理；目标为 None 表示停止等待用户
LOW_COVERAGE_ROUTES: dict[str, tuple[str | None, str]] = {
    "paper_search": (None, "검색 결과 부족, 사용자 쿼리 수정 필요"),
    "paper_explain": (None, "논문 정보 부족, 추가 정보 필요"),
    "recommend_next": ("paper_search", "추천을 위한 정보 부족, 검색으로 전환"),
}

FOLLOW_UPS: dict[str, tuple[str, ...]] = {
    "greeting": ("paper_search", "recommend_next"),
    "paper_search": ("recommend_next",),
    "paper_explain": ("recommend_next", "paper_search"),
    "survey_complete": ("recommend_next", "paper_search"),
    "recommend_next": ("paper_explain", "paper_search"),
    "general_chat": ("paper_search", "recommend_next"),
}


def is_low_coverage(signals: ExecutionSignals) -> bool:
    return signals.coverage == Coverage.none or (
        signals.coverage == Coverage.partial and signals.confidence == Confidence.low
    )


def _stop(reason: str) -> PostDecision:
    return PostDecision(action=PostAction.stop, next_skill_id=None, reason=reason)


def _reroute(skill_id: str, reason: str) -> PostDecision:
    return PostDecision(action=PostAction.reroute, next_skill_id=skill_id, reason=reason)


class PostOrchestrator:
    def __init__(self, registry: SkillRegistry, max_chain_depth: int = MAX_CHAIN_DEPTH) -> None:
        self._registry = registry
        self.max_chain_depth = max_chain_depth

    def decide(self, signals: ExecutionSignals, current_skill_id: str) -> PostDecision:
        """按优先级依次匹配规则，首条命中即返回。"""
        if signals.next_action_hint == NextActionHint.reroute and signals.suggested_skill_id in self._registry:
            return _reroute(signals.suggested_skill_id, f"스킬이 {signals.suggested_skill_id}로 재라우팅 요청")

        if signals.knowledge_gap is True and current_skill_id in KNOWLEDGE_GAP_ROUTES:
            target, reason = KNOWLEDGE_GAP_ROUTES[current_skill_id]
            return _reroute(target, reason)

        if is_low_coverage(signals) and current_skill_id in LOW_COVERAGE_ROUTES:
            target, reason = LOW_COVERAGE_ROUTES[current_skill_id]
            return _reroute(target, reason) if target else _stop(reason)

        if current_skill_id == "survey_complete":
            if (signals.recommendations_count or 0) > 0:
                return _stop("설문 완료 및 추천 제공, 사용자 선택 대기")
            return _reroute("recommend_next", "설문 완료 후 추천 스킬로 전환")

        if current_skill_id == "paper_explain" and signals.explanation_complete is True:
            return _stop("논문 설명 완료, 사용자 행동 대기")

        if signals.intent_clarified is False:
            return _stop("의도 파악 필요, 추가 질문 대기")

        return _stop(f"coverage={signals.coverage.value}, confidence={signals.confidence.value}로 완료")

    def should_continue(self, signals: ExecutionSignals, current_skill_id: str, chain_depth: int) -> bool:
        if chain_depth >= self.max_chain_depth:
            logger.warning(
                "max chain depth reached",
                extra={"event": "chain.depth.exceeded", "skill_id": current_skill_id, "chain_depth": chain_depth},
            )
            return False
        if signals.next_action_hint == NextActionHint.stop:
            return False
        if signals.next_action_hint == NextActionHint.reroute and signals.suggested_skill_id:
            return True
        return signals.coverage == Coverage.none and signals.confidence == Confidence.low

    @staticmethod
    def suggested_follow_ups(current_skill_id: str, signals: ExecutionSignals) -> list[str]:
        suggestions = list(FOLLOW_UPS.get(current_skill_id, ()))
        if current_skill_id == "paper_search" and (signals.search_result_count or 0) > 0:
            suggestions.insert(0, "paper_explain")
        return suggestions

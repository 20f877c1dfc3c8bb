"""技能路由器（前置编排）：根据触发事件、消息意图与上一跳信号选择技能。

判定顺序固定：
1. 上一个技能给出 reroute 且目标已注册时直接跳转；
2. 触发事件查表；
3. 消息意图识别（search → recommend → explain → greeting）；
4. 首次访问进入问候；
5. 其余落到 general_chat。
"""

from __future__ import annotations

import logging
import re

from paperchat.domain.enums import NextActionHint, TriggerEvent
from paperchat.domain.models import ChatMessage, ExecutionSignals, RouteDecision, UserContext
from paperchat.domain.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

# trigger -> (skill_id, 是否把消息作为 query, 原因)
TRIGGER_ROUTES: dict[TriggerEvent, tuple[str, bool, str]] = {
    TriggerEvent.site_enter: ("greeting", False, "사이트 방문으로 인사 스킬 선택"),
    TriggerEvent.first_visit: ("greeting", False, "사이트 방문으로 인사 스킬 선택"),
    TriggerEvent.paper_select: ("paper_explain", False, "논문 선택으로 설명 스킬 선택"),
    TriggerEvent.paper_open: ("paper_explain", False, "논문 선택으로 설명 스킬 선택"),
    TriggerEvent.explain_request: ("paper_explain", False, "설명 요청으로 설명 스킬 선택"),
    TriggerEvent.survey_submitted: ("survey_complete", False, "설문 완료로 축하 스킬 선택"),
    TriggerEvent.paper_read_complete: ("recommend_next", True, "논문 읽기 완료로 추천 스킬 선택"),
    TriggerEvent.ask_recommendation: ("recommend_next", True, "추천 요청으로 추천 스킬 선택"),
    TriggerEvent.search_query: ("paper_search", True, "검색 쿼리로 검색 스킬 선택"),
}

# 顺序即优先级
INTENT_PATTERNS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    (
        "search",
        tuple(
            re.compile(p)
            for p in (r"검색", r"찾아", r"논문.*있", r"어떤.*논문", r"관련.*논문", r"search", r"find", r"paper.*about")
        ),
    ),
    (
        "recommend",
        tuple(re.compile(p) for p in (r"추천", r"다음", r"다른.*논문", r"뭐.*읽", r"recommend", r"suggest", r"what.*read")),
    ),
    (
        "explain",
        tuple(
            re.compile(p)
            for p in (r"설명", r"요약", r"알려", r"뭐야", r"무엇", r"자세히", r"explain", r"summarize", r"what.*is")
        ),
    ),
    ("greeting", tuple(re.compile(p) for p in (r"안녕", r"반가", r"처음", r"시작", r"hello", r"hi\b", r"hey"))),
)

# intent -> (skill_id, 是否把消息作为 query, 原因)
INTENT_ROUTES: dict[str, tuple[str, bool, str]] = {
    "search": ("paper_search", True, "검색 의도 감지로 검색 스킬 선택"),
    "recommend": ("recommend_next", True, "추천 의도 감지로 추천 스킬 선택"),
    "explain": ("paper_explain", False, "설명 의도 감지로 설명 스킬 선택"),
    "greeting": ("greeting", False, "인사 의도 감지로 인사 스킬 선택"),
}


def detect_intent(message: str | None) -> str | None:
    """按固定顺序匹配意图族，返回首个命中的意图名。"""
    if not message:
        return None
    lowered = message.lower()
    for intent, patterns in INTENT_PATTERNS:
        if any(pattern.search(lowered) for pattern in patterns):
            return intent
    return None


class SkillRouter:
    """前置编排器；纯函数，不做任何 IO。"""
    def __init__(self, registry: SkillRegistry) -> None:
        self._registry = registry

    def _decision(self, skill_id: str, query: str | None, reason: str) -> RouteDecision:
        skill = self._registry.get(skill_id)
        return RouteDecision(skill_id=skill_id, requires=skill.requires, query=query, reason=reason)

    def route(
        self,
        trigger: TriggerEvent,
        message: str | None = None,
        user_context: UserContext | None = None,
        history: list[ChatMessage] | None = None,
        previous_signals: ExecutionSignals | None = None,
    ) -> RouteDecision:
        text = message or None
        if (
            previous_signals is not None
            and previous_signals.next_action_hint == NextActionHint.reroute
            and previous_signals.suggested_skill_id
        ):
            target = previous_signals.suggested_skill_id
            if target in self._registry:
                return self._decision(target, text, f"이전 스킬의 reroute 힌트에 따라 {target}로 전환")
            logger.warning(
                "ignore reroute hint to unregistered skill",
                extra={"event": "router.reroute.ignored", "op": target},
            )

        if trigger in TRIGGER_ROUTES:
            skill_id, use_query, reason = TRIGGER_ROUTES[trigger]
            return self._decision(skill_id, text if use_query else None, reason)

        intent = detect_intent(text)
        if intent is not None:
            skill_id, use_query, reason = INTENT_ROUTES[intent]
            return self._decision(skill_id, text if use_query else None, reason)

        if user_context is not None and user_context.is_first_visit:
            return self._decision("greeting", None, "첫 방문으로 인사 스킬 선택")

        return self._decision("general_chat", text, "기본 일반 대화 스킬 선택")

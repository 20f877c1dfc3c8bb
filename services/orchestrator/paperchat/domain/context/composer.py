"""上下文包组装：按技能声明的模块顺序拼接文本，并保证总估算 token 不超过技能预算。"""

from __future__ import annotations

from typing import Callable

from paperchat.domain.context.tokens import TokenEstimator, estimate_tokens, truncate_to_budget
from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import (
    AdditionalContextData,
    ChatMessage,
    PaperContext,
    UserContext,
)
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.registry import SkillRegistry

CHUNK_BUDGET_RATIO = 0.6
CHUNK_BUDGET_CAP = 4000
CHUNK_SEPARATOR = "\n\n---\n\n"

SEARCH_RESULTS_SECTION = "SearchResults"

EMPTY_SEARCH_RESULTS = "(검색 결과 없음)"
EMPTY_SURVEY_RESPONSES = "(설문 응답 없음)"
EMPTY_CONVERSATION = "(대화 기록 없음)"
EMPTY_READING_HISTORY = "(읽은 논문 없음)"


def _section(name: str, body: list[str]) -> str:
    return "\n".join([f"[{name}]", *body]) + "\n"


def _role_label(role: str) -> str:
    return "사용자" if role == "user" else "AI"


class ContextComposer:
    """每次执行构造一个上下文包，不做持久化。"""

    def __init__(self, registry: SkillRegistry, estimator: TokenEstimator = estimate_tokens) -> None:
        self._registry = registry
        self._estimator = estimator
        # 模块固定顺序；搜索两个模块共用一个段落
        self._builders: tuple[tuple[frozenset[ContextModule], Callable[..., str]], ...] = (
            (frozenset({ContextModule.user_state}), self._user_state),
            (frozenset({ContextModule.paper_metadata}), self._paper_metadata),
            (frozenset({ContextModule.paper_chunks}), self._paper_chunks),
            (frozenset({ContextModule.vector_search, ContextModule.keyword_search}), self._search_results),
            (frozenset({ContextModule.survey_responses}), self._survey_responses),
            (frozenset({ContextModule.conversation_history}), self._conversation_history),
            (frozenset({ContextModule.reading_history}), self._reading_history),
            (frozenset({ContextModule.previous_response}), self._previous_response),
        )

    @staticmethod
    def _header(skill_id: str, trigger: TriggerEvent, user_context: UserContext | None) -> str:
        locale = user_context.preferred_language if user_context and user_context.preferred_language else "ko"
        return (
            "[Trigger]\n"
            f"- event: {trigger.value}\n"
            f"- skill_id: {skill_id}\n"
            "\n"
            "[UserInput]\n"
            f'- locale: "{locale}"\n'
            "\n"
        )

    def compose(
        self,
        skill_id: str,
        trigger: TriggerEvent,
        user_context: UserContext | None = None,
        additional_data: AdditionalContextData | None = None,
        history: list[ChatMessage] | None = None,
    ) -> str:
        skill = self._registry.get(skill_id)
        data = additional_data or AdditionalContextData()
        parts = [self._header(skill_id, trigger, user_context)]
        for modules, builder in self._builders:
            if not skill.requires & modules:
                continue
            rendered = builder(skill=skill, user_context=user_context, data=data, history=history or [])
            if rendered:
                parts.append(rendered)
        return truncate_to_budget("\n".join(parts), skill.budget.context_tokens, self._estimator)

    def compose_minimal(
        self,
        skill_id: str,
        trigger: TriggerEvent,
        user_context: UserContext | None = None,
    ) -> str:
        """只含 [Trigger]、[UserInput]、[UserState]。"""
        skill = self._registry.get(skill_id)
        pack = self._header(skill_id, trigger, user_context) + self._user_state(user_context=user_context)
        return truncate_to_budget(pack, skill.budget.context_tokens, self._estimator)

    # 各模块渲染

    def _user_state(self, *, user_context: UserContext | None, **_: object) -> str:
        if user_context is None:
            return _section(ContextModule.user_state.section, ["- 세션: 익명 사용자", "- 첫 방문: 알 수 없음"])
        lines = [
            f"- 세션 ID: {user_context.session_id}",
            f"- 첫 방문: {'예' if user_context.is_first_visit else '아니오'}",
            f"- 방문 횟수: {user_context.visit_count}회",
            f"- 사용자 이름: {user_context.user_name or '(없음)'}",
            f"- 선호 언어: {user_context.preferred_language or 'ko'}",
        ]
        if user_context.reading_history:
            lines.append(f"- 읽은 논문: {len(user_context.reading_history)}개")
        if user_context.survey_history:
            lines.append(f"- 참여 설문: {len(user_context.survey_history)}개")
        return _section(ContextModule.user_state.section, lines)

    def _paper_metadata(self, *, data: AdditionalContextData, **_: object) -> str:
        paper: PaperContext | None = data.paper
        if paper is None:
            return ""
        lines = [f"- ID: {paper.paper_id}", f"- 제목: {paper.title}", f"- 저자: {', '.join(paper.authors)}"]
        if paper.abstract:
            lines.append(f"- 초록: {paper.abstract}")
        if paper.tags:
            lines.append(f"- 태그: {', '.join(paper.tags)}")
        return _section(ContextModule.paper_metadata.section, lines)

    def _paper_chunks(self, *, skill: BaseSkill, data: AdditionalContextData, **_: object) -> str:
        if data.paper is None or not data.paper.chunks:
            return ""
        budget = int(min(skill.budget.context_tokens * CHUNK_BUDGET_RATIO, CHUNK_BUDGET_CAP))
        body = truncate_to_budget(CHUNK_SEPARATOR.join(data.paper.chunks), budget, self._estimator)
        return _section(ContextModule.paper_chunks.section, [body])

    def _search_results(self, *, data: AdditionalContextData, **_: object) -> str:
        if not data.search_results:
            return _section(SEARCH_RESULTS_SECTION, [EMPTY_SEARCH_RESULTS])
        lines = []
        for index, result in enumerate(data.search_results, start=1):
            line = (
                f'{index}. [{result.paper_id}] "{result.title}" - {", ".join(result.authors)} '
                f"(유사도: {result.score * 100:.1f}%)"
            )
            if result.snippet:
                line += f"\n   {result.snippet}"
            lines.append(line)
        return _section(SEARCH_RESULTS_SECTION, lines)

    def _survey_responses(self, *, data: AdditionalContextData, **_: object) -> str:
        if not data.survey_responses:
            return _section(ContextModule.survey_responses.section, [EMPTY_SURVEY_RESPONSES])
        lines = []
        for response in data.survey_responses:
            answer = response.answer
            if isinstance(answer, list):
                answer = ", ".join(str(item) for item in answer)
            lines.append(f"- Q{response.question_id}: {answer}")
        return _section(ContextModule.survey_responses.section, lines)

    def _conversation_history(self, *, skill: BaseSkill, history: list[ChatMessage], **_: object) -> str:
        if not history:
            return _section(ContextModule.conversation_history.section, [EMPTY_CONVERSATION])
        recent = history[-skill.budget.history_turns * 2:]
        lines = [f"{_role_label(m.role)}: {m.content}" for m in recent]
        return _section(ContextModule.conversation_history.section, lines)

    def _reading_history(self, *, user_context: UserContext | None, **_: object) -> str:
        if user_context is None or not user_context.reading_history:
            return _section(ContextModule.reading_history.section, [EMPTY_READING_HISTORY])
        line = f"읽은 논문 ID: {', '.join(user_context.reading_history)}"
        return _section(ContextModule.reading_history.section, [line])

    def _previous_response(self, *, data: AdditionalContextData, **_: object) -> str:
        if data.previous_signals is None and not data.previous_response:
            return ""
        lines: list[str] = []
        signals = data.previous_signals
        if signals is not None:
            lines.extend(
                [
                    "이전 스킬 Signals:",
                    f"- coverage: {signals.coverage.value}",
                    f"- confidence: {signals.confidence.value}",
                    f"- next_action_hint: {signals.next_action_hint.value}",
                ]
            )
            if signals.suggested_skill_id:
                lines.append(f"- suggested_skill_id: {signals.suggested_skill_id}")
        if data.previous_response:
            lines.extend(["", "이전 응답 내용:", data.previous_response])
        return _section(ContextModule.previous_response.section, lines)

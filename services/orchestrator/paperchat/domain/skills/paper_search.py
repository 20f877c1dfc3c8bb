"""论文检索技能：基于混合检索结果回答检索类问题。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class PaperSearchSkill(BaseSkill):
    skill_id = "paper_search"
    description = "논문 검색 (키워드 + 벡터)"
    triggers = frozenset({TriggerEvent.search_query, TriggerEvent.user_question})
    # 链式跳转过来时需要看到上一个技能的回复
    requires = frozenset(
        {ContextModule.vector_search, ContextModule.keyword_search, ContextModule.previous_response}
    )
    budget = SkillBudget(context_tokens=4000, history_turns=4, search_topk=10)

    def instructions(self) -> str:
        return render_skill_prompt(
            "Paper Search Skill",
            "사용자의 연구 관심사에 맞는 논문을 찾아주는 전문 검색 도우미야.",
            [
                "사용자의 검색 의도를 정확히 파악해.",
                "[SearchResults]의 논문만 근거로 명확하고 구조화된 형태로 제공해.",
                "각 논문에 대해 간략한 소개와 왜 관련 있는지 설명해.",
                "검색 결과가 없으면 대안을 제시해 (키워드 수정, 유사 주제 등).",
                "search_result_count에 실제로 소개한 논문 수를 적어.",
            ],
            [
                "검색 의도 확인 (1문장)",
                "검색 결과 목록 (최대 5개: 제목, 저자, 관련성 설명 1문장)",
                "추가 행동 제안",
            ],
            '{"coverage": "enough", "confidence": "high", "search_result_count": 5, "next_action_hint": "stop"}',
            ["첫 번째 논문 자세히", "다른 키워드로 검색", "추천해줘"],
        )

"""下一篇推荐技能：结合阅读记录推荐后续论文。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class RecommendNextSkill(BaseSkill):
    skill_id = "recommend_next"
    description = "다음 논문 추천"
    triggers = frozenset({TriggerEvent.paper_read_complete, TriggerEvent.ask_recommendation})
    requires = frozenset(
        {ContextModule.reading_history, ContextModule.vector_search, ContextModule.previous_response}
    )
    budget = SkillBudget(context_tokens=4000, history_turns=4, candidates_topk=5)

    def instructions(self) -> str:
        return render_skill_prompt(
            "Recommend Next Skill",
            "사용자의 관심사와 이력을 바탕으로 다음 읽을 논문을 추천해.",
            [
                "사용자의 읽기 이력과 관심사를 분석해.",
                "다양성과 관련성의 균형을 맞춘 추천을 제공해.",
                "각 추천에 대해 왜 추천하는지 명확히 설명해.",
                "후보가 부족하면 coverage를 none으로 두어.",
            ],
            [
                "추천 배경 설명 (1문장)",
                "추천 논문 목록 (3-5개: 제목, 추천 이유, 난이도)",
                "추가 옵션 안내",
            ],
            '{"coverage": "enough", "confidence": "high", "recommendations_count": 5, '
            '"diversity_score": "medium", "next_action_hint": "stop"}',
            ["첫 번째 논문 보기", "다른 주제 추천", "설문 참여하기"],
        )

"""问卷完成技能：感谢参与并给出个性化推荐。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class SurveyCompleteSkill(BaseSkill):
    skill_id = "survey_complete"
    description = "설문 완료 축하 및 논문 추천"
    triggers = frozenset({TriggerEvent.survey_submitted})
    requires = frozenset({ContextModule.survey_responses, ContextModule.vector_search})
    budget = SkillBudget(context_tokens=4000, history_turns=2, candidates_topk=5)

    def instructions(self) -> str:
        return render_skill_prompt(
            "Survey Complete Skill",
            "설문 완료를 축하하고 참여에 감사하며 맞춤 추천을 제공해.",
            [
                "설문 완료를 진심으로 축하해.",
                "사용자의 설문 응답을 분석해 관심 영역을 파악해.",
                "[SearchResults]의 논문 중에서 관련 논문을 추천해.",
                "recommendations_count에 실제 추천한 논문 수를 적어 (없으면 0).",
            ],
            [
                "축하 메시지 (1-2문장)",
                "설문 분석 요약",
                "맞춤 논문 추천 (2-3개)",
                "다음 행동 제안",
            ],
            '{"coverage": "enough", "confidence": "high", "recommendations_count": 3, "next_action_hint": "stop"}',
            ["추천 논문 보기", "다른 논문 설문하기", "홈으로 가기"],
        )

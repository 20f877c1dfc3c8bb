"""通用对话技能：兜底处理无法归类的问题。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class GeneralChatSkill(BaseSkill):
    skill_id = "general_chat"
    description = "일반 대화 및 질문 응답"
    triggers = frozenset({TriggerEvent.default})
    requires = frozenset({ContextModule.conversation_history})
    budget = SkillBudget(context_tokens=3000, history_turns=6)

    def instructions(self) -> str:
        return render_skill_prompt(
            "General Chat Skill",
            "AI 과학 연구와 관련된 다양한 질문에 친절하게 답변해.",
            [
                "사용자의 질문 의도를 정확히 파악해.",
                "AI 과학, 연구 방법론, 논문 관련 질문에 전문적으로 답변해.",
                "서비스 이용 방법에 대한 질문도 친절히 안내해.",
                "답변이 불확실하면 솔직히 인정하고 knowledge_gap을 true로 표시해.",
            ],
            ["질문 이해 확인 (필요 시)", "답변 내용", "추가 도움 제안"],
            '{"coverage": "enough", "confidence": "medium", "intent_clarified": true, '
            '"knowledge_gap": false, "next_action_hint": "stop"}',
            ["관련 논문 찾기", "더 알려줘", "다른 질문 있어"],
        )

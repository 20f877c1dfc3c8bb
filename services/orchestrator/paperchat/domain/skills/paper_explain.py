"""论文讲解技能：基于元数据与正文分块讲解选中的论文。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class PaperExplainSkill(BaseSkill):
    skill_id = "paper_explain"
    description = "선택된 논문 요약 및 설명"
    triggers = frozenset({TriggerEvent.paper_select, TriggerEvent.paper_open, TriggerEvent.explain_request})
    requires = frozenset({ContextModule.paper_chunks, ContextModule.paper_metadata})
    budget = SkillBudget(context_tokens=8000, history_turns=4)

    def instructions(self) -> str:
        return render_skill_prompt(
            "Paper Explain Skill",
            "복잡한 연구 논문을 이해하기 쉽게 설명해주는 전문가야.",
            [
                "선택된 논문의 핵심 내용을 명확하게 요약해.",
                "연구 목적, 방법론, 주요 발견, 의의를 구조화해서 설명해.",
                "전문 용어는 쉽게 풀어서 설명해.",
                "논문에 없는 내용을 물으면 knowledge_gap을 true로 두고 gap_reason을 적어.",
            ],
            [
                "논문 제목과 저자 (헤더)",
                "핵심 요약 (2-3문장)",
                "상세 설명 (배경, 방법, 결과, 의의)",
                "후속 제안 (설문 참여, 관련 논문, 질문 등)",
            ],
            '{"coverage": "enough", "confidence": "high", "explanation_complete": true, '
            '"user_understanding": "medium", "next_action_hint": "stop"}',
            ["설문 참여하기", "관련 논문 보기", "더 자세히 설명해줘"],
        )

"""问候技能：进站或首次访问时欢迎用户并了解来意。"""

from __future__ import annotations

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget
from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.prompts import render_skill_prompt


class GreetingSkill(BaseSkill):
    skill_id = "greeting"
    description = "사이트 방문 시 인사 및 안내"
    triggers = frozenset({TriggerEvent.site_enter, TriggerEvent.first_visit})
    requires = frozenset({ContextModule.user_state})
    budget = SkillBudget(context_tokens=2000, history_turns=2)

    def instructions(self) -> str:
        return render_skill_prompt(
            "Greeting Skill",
            "친근하고 전문적인 연구 도우미로서 사용자를 맞이해.",
            [
                "사용자의 방문을 따뜻하게 환영해.",
                "첫 방문이면 서비스 소개를 간략히 해줘 (AI 과학 논문 리뷰 플랫폼).",
                "사용자 이름이 있으면 이름을 불러서 인사해.",
                "간단한 질문으로 사용자의 목적을 파악해 (논문 검색, 설문 참여, 둘러보기 등).",
            ],
            ["인사 메시지 (1-2문장)", "서비스 소개 (첫 방문 시, 1문장)", "목적 파악 질문 (1개)"],
            '{"coverage": "enough", "confidence": "high", "next_action_hint": "stop"}',
            ["논문 검색하기", "추천 논문 보기", "둘러볼게"],
        )

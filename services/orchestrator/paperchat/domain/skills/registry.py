"""技能注册中心：管理技能实例注册、查询与描述信息汇总。"""

from __future__ import annotations

from paperchat.domain.skills.base import BaseSkill
from paperchat.domain.skills.general_chat import GeneralChatSkill
from paperchat.domain.skills.greeting import GreetingSkill
from paperchat.domain.skills.paper_explain import PaperExplainSkill
from paperchat.domain.skills.paper_search import PaperSearchSkill
from paperchat.domain.skills.recommend_next import RecommendNextSkill
from paperchat.domain.skills.survey_complete import SurveyCompleteSkill


class SkillRegistry:
    """技能注册中心，启动后只读。"""
    def __init__(self) -> None:
        self._skills: dict[str, BaseSkill] = {}
        for skill in (
            GreetingSkill(),
            PaperSearchSkill(),
            PaperExplainSkill(),
            SurveyCompleteSkill(),
            RecommendNextSkill(),
            GeneralChatSkill(),
        ):
            self.register(skill)

    def register(self, skill: BaseSkill) -> None:
        if skill.skill_id in self._skills:
            raise ValueError(f"duplicate skill_id: {skill.skill_id}")
        self._skills[skill.skill_id] = skill

    def get(self, skill_id: str) -> BaseSkill:
        """按技能 ID 获取技能实例。"""
        try:
            return self._skills[skill_id]
        except KeyError as exc:
            raise KeyError(f"unknown skill_id: {skill_id}") from exc

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    @staticmethod
    def _describe(skill: BaseSkill) -> dict[str, object]:
        descriptor = skill.descriptor()
        return {
            "skill_id": descriptor.skill_id,
            "description": descriptor.description,
            "triggers": list(descriptor.triggers),
            "requires": list(descriptor.requires),
            "budget": descriptor.budget,
        }

    def describe(self, skill_id: str) -> dict[str, object]:
        return self._describe(self.get(skill_id))

    def list_descriptors(self) -> list[dict[str, object]]:
        """返回全部技能描述信息。"""
        return [self._describe(skill) for skill in self._skills.values()]

"""技能抽象基类：约束触发事件、上下文模块、预算与执行指令。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict

from paperchat.domain.enums import ContextModule, TriggerEvent
from paperchat.domain.models import SkillBudget, SkillDescriptor

SEARCH_MODULES = frozenset({ContextModule.vector_search, ContextModule.keyword_search})


class BaseSkill(ABC):
    """技能定义为类属性，进程启动时注册后不再修改。"""
    skill_id: str
    description: str = ""
    triggers: frozenset[TriggerEvent] = frozenset()
    requires: frozenset[ContextModule] = frozenset()
    budget: SkillBudget

    @abstractmethod
    def instructions(self) -> str:
        """返回拼接在基础人设之后的技能指令。"""

    def needs_search(self) -> bool:
        return bool(self.requires & SEARCH_MODULES)

    def is_minimal(self) -> bool:
        """除用户状态外不需要任何上下文模块时使用精简上下文包。"""
        return self.requires <= {ContextModule.user_state}

    def descriptor(self) -> SkillDescriptor:
        return SkillDescriptor(
            skill_id=self.skill_id,
            description=self.description,
            triggers=tuple(sorted(item.value for item in self.triggers)),
            requires=tuple(sorted(item.value for item in self.requires)),
            budget=asdict(self.budget),
        )

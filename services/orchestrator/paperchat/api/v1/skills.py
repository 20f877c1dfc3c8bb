"""技能目录接口：列出已注册技能并查询指定技能的描述信息。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from paperchat.api.v1.responses import not_found, success_response
from paperchat.application.container import get_skill_registry
from paperchat.domain.skills.registry import SkillRegistry

router = APIRouter()


def _registry() -> SkillRegistry:
    return get_skill_registry()


@router.get("/skills")
def list_skills(registry: SkillRegistry = Depends(_registry)) -> Any:
    return success_response(registry.list_descriptors())


@router.get("/skills/{skill_id}")
def get_skill(skill_id: str, registry: SkillRegistry = Depends(_registry)) -> Any:
    try:
        return success_response(registry.describe(skill_id))
    except KeyError as exc:
        return not_found(str(exc.args[0]) if exc.args else skill_id)

"""API 总路由配置，按业务域注册 chat、search、papers 与 skills 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from paperchat.api.v1.chat import router as chat_router
from paperchat.api.v1.papers import router as papers_router
from paperchat.api.v1.search import router as search_router
from paperchat.api.v1.skills import router as skills_router
from paperchat.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(chat_router, tags=["chat"])
api_router.include_router(search_router, tags=["search"])
api_router.include_router(papers_router, tags=["papers"])
api_router.include_router(skills_router, tags=["skills"])

"""依赖容器模块，负责单例化创建仓储、模型客户端与应用服务对象。"""

from __future__ import annotations

import logging
from functools import lru_cache

from paperchat.application.executor import SkillExecutor
from paperchat.application.hybrid_search import HybridSearchEngine
from paperchat.application.indexing import PaperIndexer
from paperchat.application.orchestrator import ChatOrchestratorService
from paperchat.application.recommendations import PaperRecommender
from paperchat.application.summaries import PaperSummarizer
from paperchat.config import get_settings
from paperchat.domain.context.composer import ContextComposer
from paperchat.domain.post_orchestrator import PostOrchestrator
from paperchat.domain.skills.registry import SkillRegistry
from paperchat.domain.skills.router import SkillRouter
from paperchat.infra.db.repository import PaperRepository
from paperchat.infra.db.session import SessionLocal
from paperchat.infra.llm.client import AzureOpenAIConfig, ChatCompletionClient
from paperchat.infra.llm.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_skill_registry() -> SkillRegistry:
    return SkillRegistry()


@lru_cache(maxsize=1)
def get_skill_router() -> SkillRouter:
    return SkillRouter(get_skill_registry())


@lru_cache(maxsize=1)
def get_context_composer() -> ContextComposer:
    return ContextComposer(get_skill_registry())


@lru_cache(maxsize=1)
def get_post_orchestrator() -> PostOrchestrator:
    return PostOrchestrator(get_skill_registry())


@lru_cache(maxsize=1)
def get_repository() -> PaperRepository:
    """获取论文仓储单例。"""
    return PaperRepository(SessionLocal)


@lru_cache(maxsize=1)
def get_azure_config() -> AzureOpenAIConfig:
    return AzureOpenAIConfig.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_chat_client() -> ChatCompletionClient:
    """获取聊天补全客户端单例；未配置时照常创建，调用时再返回降级结果。"""
    return ChatCompletionClient(get_azure_config())


@lru_cache(maxsize=1)
def get_embedding_client() -> EmbeddingClient:
    settings = get_settings()
    return EmbeddingClient(
        get_azure_config(),
        batch_size=settings.embedding_batch_size,
        batch_pause_seconds=settings.embedding_batch_pause_seconds,
    )


@lru_cache(maxsize=1)
def get_search_engine() -> HybridSearchEngine:
    return HybridSearchEngine(store=get_repository(), embedder=get_embedding_client())


@lru_cache(maxsize=1)
def get_recommender() -> PaperRecommender:
    return PaperRecommender(repository=get_repository(), embedder=get_embedding_client())


@lru_cache(maxsize=1)
def get_summarizer() -> PaperSummarizer:
    return PaperSummarizer(repository=get_repository(), model=get_chat_client())


@lru_cache(maxsize=1)
def get_indexer() -> PaperIndexer:
    settings = get_settings()
    return PaperIndexer(
        repository=get_repository(),
        embedder=get_embedding_client(),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )


@lru_cache(maxsize=1)
def get_executor() -> SkillExecutor:
    return SkillExecutor(registry=get_skill_registry(), model=get_chat_client())


@lru_cache(maxsize=1)
def get_chat_service() -> ChatOrchestratorService:
    """获取对话编排服务单例。"""
    return ChatOrchestratorService(
        settings=get_settings(),
        registry=get_skill_registry(),
        router=get_skill_router(),
        composer=get_context_composer(),
        executor=get_executor(),
        post_orchestrator=get_post_orchestrator(),
        search_engine=get_search_engine(),
        recommender=get_recommender(),
        repository=get_repository(),
    )


async def shutdown_container_resources() -> None:
    """关闭共享 HTTP 客户端并清理依赖容器缓存。"""
    for provider in (get_chat_client, get_embedding_client):
        if not provider.cache_info().currsize:
            continue
        try:
            await provider().aclose()
        except Exception as exc:
            logger.warning(
                "failed to close provider client",
                extra={"event": "container.shutdown.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )

    # 按依赖顺序清理缓存，后续调用会重新构建实例。
    for provider in (
        get_chat_service,
        get_executor,
        get_indexer,
        get_summarizer,
        get_recommender,
        get_search_engine,
        get_embedding_client,
        get_chat_client,
        get_azure_config,
        get_repository,
        get_post_orchestrator,
        get_context_composer,
        get_skill_router,
        get_skill_registry,
    ):
        provider.cache_clear()

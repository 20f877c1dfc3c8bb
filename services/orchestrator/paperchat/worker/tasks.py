"""异步任务定义：论文入库，对网络异常执行退避重试。"""

from __future__ import annotations

import asyncio
import logging

import httpx

from paperchat.application.container import get_azure_config, get_repository
from paperchat.application.indexing import IndexSummary, PaperIndexer
from paperchat.config import get_settings
from paperchat.infra.logging.context import bind_log_context
from paperchat.infra.llm.embeddings import EmbeddingClient
from paperchat.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _index_once(**kwargs: object) -> IndexSummary:
    """每次任务创建独立的向量化客户端，结束即关闭。"""
    settings = get_settings()
    embedder = EmbeddingClient(
        get_azure_config(),
        batch_size=settings.embedding_batch_size,
        batch_pause_seconds=settings.embedding_batch_pause_seconds,
    )
    indexer = PaperIndexer(
        repository=get_repository(),
        embedder=embedder,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )
    try:
        return await indexer.index_paper(**kwargs)
    finally:
        await embedder.aclose()


@celery_app.task(bind=True, name="paperchat.worker.tasks.index_paper_task")
def index_paper_task(
    self,
    paper_id: str,
    text: str,
    filename: str,
    title: str | None = None,
    tags: list[str] | None = None,
) -> dict[str, object]:
    """切分、向量化并替换论文分块；网络错误时按退避策略重试。"""
    with bind_log_context(task_id=self.request.id):
        logger.info(
            "index task started",
            extra={"event": "index.task.started", "paper_id": paper_id, "retry": self.request.retries},
        )
        try:
            summary = asyncio.run(_index_once(text=text, filename=filename, paper_id=paper_id, title=title, tags=tags))
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.HTTPStatusError) as exc:
            countdown = 30 if self.request.retries == 0 else 120
            logger.warning(
                "index task transient provider error",
                extra={
                    "event": "index.task.retrying",
                    "paper_id": paper_id,
                    "retry": self.request.retries,
                    "external_service": "azure-openai",
                    "op": "embeddings.batch",
                    "payload_preview": {"countdown": countdown},
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise self.retry(exc=exc, max_retries=2, countdown=countdown)
        except Exception as exc:
            logger.exception(
                "index task failed",
                extra={"event": "index.task.failed", "paper_id": paper_id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise
        logger.info(
            "index task finished",
            extra={"event": "index.task.succeeded", "paper_id": paper_id, "result_count": summary.chunk_count},
        )
        return {"paper_id": summary.paper_id, "chunk_count": summary.chunk_count}

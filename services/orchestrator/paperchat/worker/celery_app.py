"""Celery 应用：论文入库任务走独立的 indexing 队列。"""

from __future__ import annotations

import asyncio
import logging
import sys

from celery import Celery
from celery.signals import worker_process_shutdown

from paperchat.application.container import shutdown_container_resources
from paperchat.config import Settings, get_settings
from paperchat.infra.logging.setup import configure_logging, shutdown_logging

INDEX_QUEUE = "indexing"

settings = get_settings()
logger = logging.getLogger(__name__)


def _is_worker_process() -> bool:
    return "worker" in (arg.lower() for arg in sys.argv[1:])


def celery_config(settings: Settings) -> dict[str, object]:
    """入库任务耗时长且调用付费接口，每个进程一次只取一个任务，完成后再确认。"""
    config: dict[str, object] = {
        "imports": ("paperchat.worker.tasks",),
        "task_default_queue": "default",
        "task_routes": {"paperchat.worker.tasks.index_paper_task": {"queue": INDEX_QUEUE}},
        "worker_prefetch_multiplier": 1,
        "task_acks_late": True,
        "task_track_started": True,
        "broker_connection_retry_on_startup": True,
        "task_soft_time_limit": settings.index_soft_timeout_seconds,
        "task_time_limit": settings.index_hard_timeout_seconds,
    }
    if settings.celery_task_always_eager:
        config.update(task_always_eager=True, task_eager_propagates=True)
    return config


celery_app = Celery("paperchat", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(celery_config(settings))

if _is_worker_process():
    configure_logging(settings, process_role="worker")
    logger.info(
        "celery app configured",
        extra={
            "event": "celery.config.loaded",
            "external_service": "redis",
            "op": "worker",
            "payload_preview": {
                "queue": INDEX_QUEUE,
                "always_eager": settings.celery_task_always_eager,
                "soft_time_limit": settings.index_soft_timeout_seconds,
            },
        },
    )


@worker_process_shutdown.connect
def _release_worker_resources(**_: object) -> None:
    asyncio.run(shutdown_container_resources())
    shutdown_logging()

"""数据库引擎与会话工厂。"""

from __future__ import annotations

import json
import logging
import time

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from paperchat.config import get_settings
from paperchat.infra.db.models import Base

logger = logging.getLogger(__name__)


def _json_dumps(value: object) -> str:
    # 作者、标签按原文落库，LIKE 才能匹配韩文/中文
    return json.dumps(value, ensure_ascii=False)


def build_engine(database_url: str) -> Engine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(
        database_url,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
        json_serializer=_json_dumps,
    )


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


engine = build_engine(get_settings().database_url)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """按 ORM 定义建表，已存在的表不受影响。"""
    started = time.perf_counter()
    target = bind or engine
    try:
        Base.metadata.create_all(bind=target)
    except Exception as exc:
        logger.exception(
            "db init failed",
            extra={
                "event": "db.init.failed",
                "external_service": "database",
                "op": "create_all",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(exc).__name__,
            },
        )
        raise
    logger.info(
        "db init succeeded",
        extra={
            "event": "db.init.succeeded",
            "external_service": "database",
            "op": "create_all",
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "payload_preview": {"tables": sorted(Base.metadata.tables)},
        },
    )

"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "PaperChat Orchestrator"
    api_prefix: str = "/api/v1"
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET,POST,OPTIONS"
    cors_allowed_headers: str = "Content-Type,Accept,X-Request-Id,X-Session-Id"
    cors_allow_credentials: bool = False

    database_url: str = "sqlite:///./paperchat.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False

    # 生成模型（Azure OpenAI REST）
    azure_openai_endpoint: str | None = None
    azure_openai_api_key: str | None = None
    azure_openai_deployment: str = "gpt-4o-mini"
    azure_openai_api_version: str = "2024-08-01-preview"
    azure_openai_max_completion_tokens: int = 2000
    llm_request_timeout_seconds: int = 60

    # 向量化
    azure_openai_embedding_deployment: str = "text-embedding-3-small"
    azure_openai_embedding_api_version: str = "2024-02-01"
    embedding_batch_size: int = 16
    embedding_batch_pause_seconds: float = 0.2

    # 对话链路内的检索参数；独立搜索接口使用请求体里的值。
    chat_search_threshold: float = 0.5
    chat_search_vector_weight: float = 0.7
    chat_search_keyword_weight: float = 0.3

    chunk_size: int = 1000
    chunk_overlap: int = 200
    index_soft_timeout_seconds: int = 600
    index_hard_timeout_seconds: int = 900

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_session_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 512
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 5

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_session_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_session_ids)

    def llm_configured(self) -> bool:
        return bool(self.azure_openai_endpoint and self.azure_openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings。"""
    return Settings()

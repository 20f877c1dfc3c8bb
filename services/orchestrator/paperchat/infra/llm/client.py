"""Azure OpenAI REST 客户端：聊天补全（批量/流式）共用的连接与日志封装。"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from paperchat.config import Settings

logger = logging.getLogger(__name__)


class ProviderNotConfiguredError(RuntimeError):
    """缺少 endpoint 或 api key。"""


@dataclass(slots=True)
class AzureOpenAIConfig:
    endpoint: str | None
    api_key: str | None
    deployment: str
    api_version: str
    embedding_deployment: str
    embedding_api_version: str
    max_completion_tokens: int = 2000
    timeout_seconds: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureOpenAIConfig":
        return cls(
            endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,
            deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            embedding_deployment=settings.azure_openai_embedding_deployment,
            embedding_api_version=settings.azure_openai_embedding_api_version,
            max_completion_tokens=settings.azure_openai_max_completion_tokens,
            timeout_seconds=settings.llm_request_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class AzureRestClient:
    """httpx.AsyncClient 的薄封装，统一鉴权头、错误日志与关闭语义。"""
    external_service = "azure-openai"

    def __init__(self, config: AzureOpenAIConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._closed = False

    @property
    def configured(self) -> bool:
        return self._config.configured

    def _client_or_raise(self) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is already closed")
        if not self._config.configured:
            raise ProviderNotConfiguredError("azure openai endpoint/api key is not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=str(self._config.endpoint).rstrip("/"),
                headers={"api-key": str(self._config.api_key), "Content-Type": "application/json"},
                timeout=httpx.Timeout(self._config.timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            await self._client.aclose()

    def _log_failure(self, exc: Exception, *, op: str, started: float, payload_preview: Any = None) -> None:
        status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
        logger.error(
            "azure openai request failed",
            extra={
                "event": "llm.request.failed",
                "external_service": self.external_service,
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": status_code,
                "error_type": type(exc).__name__,
                "error": str(exc),
                "payload_preview": payload_preview,
            },
        )

    async def _post_json(
        self,
        *,
        path: str,
        api_version: str,
        op: str,
        body: dict[str, Any],
        payload_preview: Any = None,
    ) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            response = await self._client_or_raise().post(path, params={"api-version": api_version}, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._log_failure(exc, op=op, started=started, payload_preview=payload_preview)
            raise
        logger.debug(
            "azure openai request completed",
            extra={
                "event": "llm.request.completed",
                "external_service": self.external_service,
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
        return payload


def _parse_sse_json(text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ChatCompletionClient(AzureRestClient):
    """聊天补全；一次执行只发一次请求，不做重试。"""

    def _path(self) -> str:
        return f"/openai/deployments/{self._config.deployment}/chat/completions"

    def _body(self, messages: list[dict[str, str]], *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": messages,
            "max_completion_tokens": self._config.max_completion_tokens,
        }
        if stream:
            body["stream"] = True
        return body

    async def complete(self, messages: list[dict[str, str]]) -> str:
        payload = await self._post_json(
            path=self._path(),
            api_version=self._config.api_version,
            op="chat.completions",
            body=self._body(messages, stream=False),
            payload_preview={"deployment": self._config.deployment, "messages": len(messages)},
        )
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return content if isinstance(content, str) else ""

    async def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """逐个产出 delta 文本；生成器被关闭时 async with 负责释放上游连接。"""
        started = time.perf_counter()
        client = self._client_or_raise()
        try:
            async with client.stream(
                "POST",
                self._path(),
                params={"api-version": self._config.api_version},
                json=self._body(messages, stream=True),
            ) as response:
                response.raise_for_status()
                async for raw_line in response.aiter_lines():
                    line = raw_line.strip()
                    if not line or line.startswith(":") or not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    choices = _parse_sse_json(data).get("choices") or []
                    if not choices:
                        continue
                    delta = (choices[0].get("delta") or {}).get("content")
                    if delta:
                        yield delta
        except httpx.HTTPError as exc:
            self._log_failure(exc, op="chat.completions.stream", started=started)
            raise

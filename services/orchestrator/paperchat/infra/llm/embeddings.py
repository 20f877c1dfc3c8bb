"""文本向量化客户端：单条/批量 embedding，批量按固定大小切分并在批间限速。"""

from __future__ import annotations

import asyncio
import logging

import httpx

from paperchat.infra.llm.client import AzureOpenAIConfig, AzureRestClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 16


class EmbeddingClient(AzureRestClient):
    def __init__(
        self,
        config: AzureOpenAIConfig,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)
        self._batch_size = max(1, batch_size)
        self._batch_pause_seconds = batch_pause_seconds

    def _path(self) -> str:
        return f"/openai/deployments/{self._config.embedding_deployment}/embeddings"

    async def _request_batch(self, batch: list[str], *, op: str) -> list[list[float]]:
        payload = await self._post_json(
            path=self._path(),
            api_version=self._config.embedding_api_version,
            op=op,
            body={"input": batch},
            payload_preview={"inputs": len(batch), "deployment": self._config.embedding_deployment},
        )
        data = payload.get("data") or []
        if len(data) != len(batch):
            raise ValueError(f"embedding count mismatch: expected {len(batch)}, got {len(data)}")
        # 服务端不保证顺序，按 index 还原
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [list(item["embedding"]) for item in ordered]

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("text cannot be empty")
        vectors = await self._request_batch([text], op="embeddings.single")
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """空白文本会被过滤；返回顺序与过滤后的输入一致。"""
        valid = [text for text in texts if text and text.strip()]
        vectors: list[list[float]] = []
        for offset in range(0, len(valid), self._batch_size):
            if offset:
                await asyncio.sleep(self._batch_pause_seconds)
            batch = valid[offset:offset + self._batch_size]
            vectors.extend(await self._request_batch(batch, op="embeddings.batch"))
            logger.debug(
                "embedding batch completed",
                extra={"event": "embeddings.batch.completed", "result_count": len(vectors)},
            )
        return vectors

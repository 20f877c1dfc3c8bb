"""混合检索：向量召回与关键词匹配并发执行，再按加权公式融合排序。

融合分数 = vector_weight × 向量相似度 + keyword_weight × 1/(60 + 关键词名次)。
两路分数量纲不同（向量分接近 1，关键词分约 0.016），关键词一路主要起补充召回作用。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from paperchat.domain.enums import MatchType
from paperchat.domain.models import ChunkMatch, HybridSearchHit
from paperchat.infra.db.models import PaperORM

logger = logging.getLogger(__name__)

RRF_K = 60
WEIGHT_TOLERANCE = 0.01
VECTOR_FETCH_FACTOR = 5
KEYWORD_FETCH_FACTOR = 2
TOP_CHUNKS_PER_PAPER = 3
MAX_SIMILARITY_WEIGHT = 0.7
AVG_SIMILARITY_WEIGHT = 0.3


class SearchValidationError(ValueError):
    """检索参数不合法，在调用任何外部服务之前抛出。"""


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class SearchStore(Protocol):
    def match_chunks(
        self,
        query_embedding: Sequence[float],
        *,
        threshold: float,
        count: int,
        paper_id: str | None = None,
    ) -> list[ChunkMatch]: ...

    def keyword_search(self, query: str, limit: int, paper_id: str | None = None) -> list[PaperORM]: ...

    def get_papers_by_ids(self, paper_ids: Sequence[str]) -> list[PaperORM]: ...


@dataclass(slots=True)
class VectorHit:
    paper_id: str
    similarity: float
    chunks: list[ChunkMatch] = field(default_factory=list)


def aggregate_chunks(matches: list[ChunkMatch]) -> dict[str, VectorHit]:
    """按论文聚合分块：0.7 × 最大相似度 + 0.3 × 平均相似度，保留前 3 个分块。"""
    grouped: dict[str, list[ChunkMatch]] = {}
    for match in matches:
        grouped.setdefault(match.paper_id, []).append(match)
    hits: dict[str, VectorHit] = {}
    for paper_id, chunks in grouped.items():
        similarities = [chunk.similarity for chunk in chunks]
        score = MAX_SIMILARITY_WEIGHT * max(similarities) + AVG_SIMILARITY_WEIGHT * (sum(similarities) / len(similarities))
        ranked = sorted(chunks, key=lambda chunk: chunk.similarity, reverse=True)
        hits[paper_id] = VectorHit(paper_id=paper_id, similarity=score, chunks=ranked[:TOP_CHUNKS_PER_PAPER])
    return hits


def keyword_ranks(papers: list[PaperORM]) -> dict[str, int]:
    """越靠前名次越大：rank = 总数 − 下标。"""
    total = len(papers)
    return {paper.id: total - index for index, paper in enumerate(papers)}


def keyword_score(rank: int) -> float:
    return 1.0 / (RRF_K + rank)


def fuse_scores(
    vector_hits: dict[str, VectorHit],
    ranks: dict[str, int],
    *,
    vector_weight: float,
    keyword_weight: float,
) -> dict[str, float]:
    scores: dict[str, float] = {}
    for paper_id in {*vector_hits, *ranks}:
        score = 0.0
        if paper_id in vector_hits:
            score += vector_weight * vector_hits[paper_id].similarity
        if paper_id in ranks:
            score += keyword_weight * keyword_score(ranks[paper_id])
        scores[paper_id] = score
    return scores


def validate_search_params(query: str, vector_weight: float, keyword_weight: float) -> str:
    if abs(vector_weight + keyword_weight - 1.0) > WEIGHT_TOLERANCE:
        raise SearchValidationError("vector_weight and keyword_weight must sum to 1.0")
    trimmed = (query or "").strip()
    if not trimmed:
        raise SearchValidationError("query cannot be empty")
    return trimmed


class HybridSearchEngine:
    def __init__(self, *, store: SearchStore, embedder: Embedder) -> None:
        self._store = store
        self._embedder = embedder

    async def _vector_leg(self, query: str, *, top_k: int, threshold: float, paper_id: str | None) -> dict[str, VectorHit]:
        try:
            embedding = await self._embedder.embed(query)
            matches = await asyncio.to_thread(
                self._store.match_chunks,
                embedding,
                threshold=threshold,
                count=top_k * VECTOR_FETCH_FACTOR,
                paper_id=paper_id,
            )
        except Exception as exc:
            logger.warning(
                "vector search leg failed",
                extra={"event": "search.vector.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return {}
        return aggregate_chunks(matches)

    async def _keyword_leg(self, query: str, *, top_k: int, paper_id: str | None) -> list[PaperORM]:
        try:
            return await asyncio.to_thread(
                self._store.keyword_search, query, top_k * KEYWORD_FETCH_FACTOR, paper_id
            )
        except Exception as exc:
            logger.warning(
                "keyword search leg failed",
                extra={"event": "search.keyword.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []

    @staticmethod
    async def _skip() -> None:
        return None

    async def search(
        self,
        query: str,
        *,
        top_k: int = 10,
        paper_id: str | None = None,
        threshold: float = 0.7,
        vector_weight: float = 0.6,
        keyword_weight: float = 0.4,
    ) -> list[HybridSearchHit]:
        """权重之和必须为 1（误差 0.01），查询不能为空白；任一路失败按空结果处理。"""
        trimmed = validate_search_params(query, vector_weight, keyword_weight)
        started = time.perf_counter()

        # 权重为 0 的一路不参与排序，直接跳过
        vector_task = (
            self._vector_leg(trimmed, top_k=top_k, threshold=threshold, paper_id=paper_id)
            if vector_weight > 0
            else self._skip()
        )
        keyword_task = self._keyword_leg(trimmed, top_k=top_k, paper_id=paper_id) if keyword_weight > 0 else self._skip()
        vector_result, keyword_result = await asyncio.gather(vector_task, keyword_task)
        vector_hits: dict[str, VectorHit] = vector_result or {}
        ranks = keyword_ranks(keyword_result or [])

        fused = fuse_scores(vector_hits, ranks, vector_weight=vector_weight, keyword_weight=keyword_weight)
        papers = await asyncio.to_thread(self._store.get_papers_by_ids, list(fused)) if fused else []

        hits: list[HybridSearchHit] = []
        for paper in papers:
            vector_hit = vector_hits.get(paper.id)
            rank = ranks.get(paper.id)
            if vector_hit is not None and rank is not None:
                match_type = MatchType.hybrid
            elif vector_hit is not None:
                match_type = MatchType.vector
            else:
                match_type = MatchType.keyword
            hits.append(
                HybridSearchHit(
                    paper_id=paper.id,
                    title=paper.title,
                    authors=list(paper.authors or []),
                    abstract=paper.abstract,
                    tags=list(paper.tags or []),
                    score=fused[paper.id],
                    vector_score=vector_hit.similarity if vector_hit else 0.0,
                    keyword_score=keyword_score(rank) if rank is not None else 0.0,
                    match_type=match_type,
                    matched_chunks=vector_hit.chunks if vector_hit else [],
                )
            )
        hits.sort(key=lambda hit: hit.score, reverse=True)
        logger.info(
            "hybrid search completed",
            extra={
                "event": "search.hybrid.completed",
                "op": "hybrid",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "result_count": min(len(hits), top_k),
                "payload_preview": {
                    "query": trimmed,
                    "vector_hits": len(vector_hits),
                    "keyword_hits": len(ranks),
                    "threshold": threshold,
                },
            },
        )
        return hits[:top_k]

    async def vector_only_search(
        self, query: str, *, top_k: int = 10, paper_id: str | None = None, threshold: float = 0.7
    ) -> list[HybridSearchHit]:
        return await self.search(
            query, top_k=top_k, paper_id=paper_id, threshold=threshold, vector_weight=1.0, keyword_weight=0.0
        )

    async def keyword_only_search(
        self, query: str, *, top_k: int = 10, paper_id: str | None = None
    ) -> list[HybridSearchHit]:
        return await self.search(
            query, top_k=top_k, paper_id=paper_id, threshold=0.0, vector_weight=0.0, keyword_weight=1.0
        )

"""论文推荐：相似论文、基于问卷兴趣的推荐与热门兜底。

推荐只是锦上添花，外部服务失败时记录日志并返回空列表。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from paperchat.application.hybrid_search import Embedder
from paperchat.domain.models import ChunkMatch, SearchResult
from paperchat.infra.db.models import PaperORM
from paperchat.infra.db.repository import PaperRepository

logger = logging.getLogger(__name__)

SIMILAR_SOURCE_CHUNKS = 5
SIMILAR_SOURCE_CHARS = 2000
MATCH_FETCH_FACTOR = 10
SURVEY_THRESHOLD = 0.6
SURVEY_INTEREST_TAGS = 5


def _average_by_paper(matches: list[ChunkMatch], exclude: set[str]) -> list[tuple[str, float]]:
    grouped: dict[str, list[float]] = {}
    for match in matches:
        if match.paper_id in exclude:
            continue
        grouped.setdefault(match.paper_id, []).append(match.similarity)
    averaged = [(paper_id, sum(scores) / len(scores)) for paper_id, scores in grouped.items()]
    averaged.sort(key=lambda item: item[1], reverse=True)
    return averaged


def paper_to_result(paper: PaperORM, score: float, snippet: str | None = None) -> SearchResult:
    return SearchResult(
        paper_id=paper.id,
        title=paper.title,
        authors=list(paper.authors or []),
        score=min(1.0, max(0.0, score)),
        snippet=snippet,
        tags=list(paper.tags or []),
    )


class PaperRecommender:
    def __init__(self, *, repository: PaperRepository, embedder: Embedder) -> None:
        self._repository = repository
        self._embedder = embedder

    async def _rank(
        self,
        query_text: str,
        *,
        threshold: float,
        top_k: int,
        exclude: set[str],
        reason: str | None,
    ) -> list[SearchResult]:
        embedding = await self._embedder.embed(query_text)
        matches = await asyncio.to_thread(
            self._repository.match_chunks,
            embedding,
            threshold=threshold,
            count=top_k * MATCH_FETCH_FACTOR,
        )
        ranked = _average_by_paper(matches, exclude)[:top_k]
        if not ranked:
            return []
        papers = {p.id: p for p in await asyncio.to_thread(self._repository.get_papers_by_ids, [pid for pid, _ in ranked])}
        results = []
        for paper_id, similarity in ranked:
            paper = papers.get(paper_id)
            if paper is None:
                continue
            results.append(paper_to_result(paper, similarity, reason or f"{round(similarity * 100)}% 유사도"))
        return results

    async def similar_papers(self, paper_id: str, *, top_k: int = 5, threshold: float = 0.7) -> list[SearchResult]:
        """用论文前几个分块的文本作为查询，排除论文本身。"""
        try:
            chunks = await asyncio.to_thread(self._repository.list_chunks, paper_id, SIMILAR_SOURCE_CHUNKS)
            combined = " ".join(chunk.content for chunk in chunks)[:SIMILAR_SOURCE_CHARS]
            if not combined.strip():
                return []
            return await self._rank(combined, threshold=threshold, top_k=top_k, exclude={paper_id}, reason=None)
        except Exception as exc:
            logger.warning(
                "similar papers lookup failed",
                extra={"event": "recommend.similar.failed", "paper_id": paper_id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []

    async def _survey_interest(self, session_id: str) -> tuple[str, list[str]]:
        """返回 (兴趣查询, 已填问卷论文 id)；没有问卷或标签时查询为空串。"""
        surveyed_ids = await asyncio.to_thread(self._repository.surveyed_paper_ids, session_id)
        if not surveyed_ids:
            return "", []
        surveyed = await asyncio.to_thread(self._repository.get_papers_by_ids, surveyed_ids)
        tags: list[str] = []
        for paper in surveyed:
            for tag in paper.tags or []:
                if tag not in tags:
                    tags.append(tag)
        return " ".join(tags[:SURVEY_INTEREST_TAGS]), surveyed_ids

    async def from_survey(self, session_id: str, *, top_k: int = 5) -> list[SearchResult]:
        """以已填问卷论文的标签拼成兴趣查询，排除这些论文本身。"""
        try:
            interest, surveyed_ids = await self._survey_interest(session_id)
            if not interest:
                return []
            return await self._rank(
                interest,
                threshold=SURVEY_THRESHOLD,
                top_k=top_k,
                exclude=set(surveyed_ids),
                reason="관심 분야 기반 추천",
            )
        except Exception as exc:
            logger.warning(
                "survey recommendations failed",
                extra={"event": "recommend.survey.failed", "session_id": session_id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []

    async def popular(self, *, top_k: int = 5, exclude_ids: Sequence[str] = ()) -> list[SearchResult]:
        papers = await asyncio.to_thread(self._repository.popular_papers, top_k, list(exclude_ids))
        top_votes = max((paper.vote_count or 0 for paper in papers), default=0) or 1
        return [paper_to_result(paper, (paper.vote_count or 0) / top_votes, "인기 논문") for paper in papers]

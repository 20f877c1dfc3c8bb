"""论文结构化摘要：分块过多时先逐块摘要再汇总，结果按论文与语言缓存。"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from paperchat.infra.db.repository import PaperRepository

logger = logging.getLogger(__name__)

DIRECT_SUMMARY_MAX_CHUNKS = 10
CHUNK_SUMMARY_CONCURRENCY = 4

CHUNK_SUMMARY_PROMPT = (
    "You are a research paper summarization assistant. Summarize the given text chunk concisely, "
    "focusing on key findings and methodologies."
)
FINAL_SUMMARY_PROMPT = (
    "You are a research paper summarization assistant. Create a comprehensive summary of the research paper. "
    "Format your response as JSON with the following structure:\n"
    "{\n"
    '  "summary": "Overall summary in 2-3 paragraphs",\n'
    '  "keyPoints": ["key point 1", "key point 2", ...],\n'
    '  "methodology": "Brief description of methodology",\n'
    '  "results": "Main results and findings",\n'
    '  "conclusion": "Main conclusions"\n'
    "}"
)


class CompletionModel(Protocol):
    async def complete(self, messages: list[dict[str, str]]) -> str: ...


class PaperNotFoundError(LookupError):
    pass


class PaperContentMissingError(LookupError):
    """论文存在但还没有分块，通常是入库尚未完成。"""


@dataclass(slots=True)
class PaperSummary:
    summary: str
    key_points: list[str] = field(default_factory=list)
    methodology: str | None = None
    results: str | None = None
    conclusion: str | None = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "key_points": list(self.key_points),
            "methodology": self.methodology,
            "results": self.results,
            "conclusion": self.conclusion,
            "cached": self.cached,
        }


def _optional_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def parse_summary_reply(reply: str) -> PaperSummary:
    """模型没有按 JSON 返回时，整段回复作为 summary。"""
    text = reply.strip()
    if text.startswith("```"):
        text = text.strip("`").removeprefix("json").strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return PaperSummary(summary=reply)
    if not isinstance(parsed, dict):
        return PaperSummary(summary=reply)

    key_points = parsed.get("keyPoints") or parsed.get("key_points") or []
    return PaperSummary(
        summary=parsed.get("summary") if isinstance(parsed.get("summary"), str) else reply,
        key_points=[str(point) for point in key_points] if isinstance(key_points, list) else [],
        methodology=_optional_text(parsed.get("methodology")),
        results=_optional_text(parsed.get("results")),
        conclusion=_optional_text(parsed.get("conclusion")),
    )


class PaperSummarizer:
    def __init__(self, *, repository: PaperRepository, model: CompletionModel) -> None:
        self._repository = repository
        self._model = model

    async def _summarize_chunk(self, content: str, gate: asyncio.Semaphore) -> str:
        async with gate:
            return await self._model.complete(
                [
                    {"role": "system", "content": CHUNK_SUMMARY_PROMPT},
                    {"role": "user", "content": f"Summarize this section of a research paper:\n\n{content}"},
                ]
            )

    async def _source_text(self, contents: list[str]) -> str:
        if len(contents) <= DIRECT_SUMMARY_MAX_CHUNKS:
            return "\n\n".join(contents)
        gate = asyncio.Semaphore(CHUNK_SUMMARY_CONCURRENCY)
        partials = await asyncio.gather(*(self._summarize_chunk(content, gate) for content in contents))
        return "\n\n".join(partials)

    async def summarize(self, paper_id: str, *, language: str = "en") -> PaperSummary:
        """模型调用失败直接抛出，由接口层转成 500；缓存写入失败只记日志。"""
        paper = await asyncio.to_thread(self._repository.get_paper, paper_id)
        if paper is None:
            raise PaperNotFoundError(paper_id)

        cached = await asyncio.to_thread(self._repository.get_summary, paper_id, language)
        if cached is not None:
            logger.debug("summary cache hit", extra={"event": "summary.cache.hit", "paper_id": paper_id})
            return PaperSummary(
                summary=cached.summary,
                key_points=list(cached.key_points or []),
                methodology=cached.methodology,
                results=cached.results,
                conclusion=cached.conclusion,
                cached=True,
            )

        chunks = await asyncio.to_thread(self._repository.list_chunks, paper_id)
        if not chunks:
            raise PaperContentMissingError(paper_id)

        started = time.perf_counter()
        source = await self._source_text([chunk.content for chunk in chunks])
        reply = await self._model.complete(
            [
                {"role": "system", "content": FINAL_SUMMARY_PROMPT},
                {"role": "user", "content": f"Summarize this research paper titled \"{paper.title}\":\n\n{source}"},
            ]
        )
        result = parse_summary_reply(reply)
        logger.info(
            "paper summarized",
            extra={
                "event": "summary.generated",
                "paper_id": paper_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"chunks": len(chunks), "key_points": len(result.key_points)},
            },
        )

        try:
            await asyncio.to_thread(
                self._repository.save_summary,
                paper_id=paper_id,
                language=language,
                summary=result.summary,
                key_points=result.key_points,
                methodology=result.methodology,
                results=result.results,
                conclusion=result.conclusion,
            )
        except Exception as exc:
            logger.warning(
                "summary cache write failed",
                extra={"event": "summary.cache.failed", "paper_id": paper_id, "error_type": type(exc).__name__},
            )
        return result

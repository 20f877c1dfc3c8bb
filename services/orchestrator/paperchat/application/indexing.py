"""论文入库：抽取元数据、切分文本、批量向量化并整体替换分块。"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

import fitz

from paperchat.infra.db.repository import PaperRepository
from paperchat.infra.llm.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

MIN_CHUNK_CHARS = 50
MIN_TEXT_CHARS = 100
TITLE_MAX_CHARS = 200
SUPPORTED_SUFFIXES = (".pdf", ".txt", ".md")
ABSTRACT_PATTERN = re.compile(r"abstract[:\s]*(.{100,1500})", re.IGNORECASE | re.DOTALL)


@dataclass(slots=True)
class PaperMetadata:
    title: str
    authors: list[str] = field(default_factory=list)
    abstract: str = ""


@dataclass(slots=True)
class IndexSummary:
    paper_id: str
    title: str
    chunk_count: int
    embedded_count: int


def chunk_text(text: str, size: int = 1000, overlap: int = 200) -> list[str]:
    """按固定长度切分，相邻分块重叠 overlap 个字符。

    切分点优先落在句号或换行处，但必须超过半个分块；不超过 50 字符的碎片丢弃。
    """
    if size <= 0 or overlap < 0 or overlap >= size:
        raise ValueError("chunk size must be positive and larger than overlap")
    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = start + size
        if end < length:
            break_point = max(text.rfind(".", start, end + 1), text.rfind("\n", start, end + 1))
            if break_point > start + size // 2:
                end = break_point + 1
        chunk = text[start:end].strip()
        if len(chunk) > MIN_CHUNK_CHARS:
            chunks.append(chunk)
        if end >= length:
            break
        start = end - overlap
    return chunks


def extract_metadata(text: str, filename: str) -> PaperMetadata:
    """标题取前三个非空行；摘要取 "abstract" 之后的一段。作者无法可靠识别，留空待人工补充。"""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    title = " ".join(lines[:3]).strip()
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS] + "..."
    if not title:
        title = Path(filename).stem
    match = ABSTRACT_PATTERN.search(text)
    abstract = " ".join(match.group(1).split()) if match else ""
    return PaperMetadata(title=title, authors=[], abstract=abstract)


def read_document_text(path: Path) -> str:
    if path.suffix.lower() == ".pdf":
        with fitz.open(path) as doc:
            return "\n".join(page.get_text("text") for page in doc)
    return path.read_text(encoding="utf-8", errors="ignore")


class PaperIndexer:
    def __init__(
        self,
        *,
        repository: PaperRepository,
        embedder: EmbeddingClient,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
    ) -> None:
        self._repository = repository
        self._embedder = embedder
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    async def index_paper(
        self,
        text: str,
        *,
        filename: str,
        paper_id: str | None = None,
        title: str | None = None,
        authors: list[str] | None = None,
        tags: list[str] | None = None,
        file_url: str | None = None,
    ) -> IndexSummary:
        """写入论文记录后切分正文、向量化并替换全部分块。

        向量化失败时向上抛出，已有分块保持不变。
        """
        if len(text.strip()) < MIN_TEXT_CHARS:
            raise ValueError(f"insufficient text content in {filename}")
        started = time.perf_counter()
        metadata = extract_metadata(text, filename)
        suffix = Path(filename).suffix.lstrip(".").lower() or None
        paper = await asyncio.to_thread(
            self._repository.upsert_paper,
            paper_id=paper_id or Path(filename).stem,
            title=title or metadata.title,
            authors=authors if authors is not None else metadata.authors,
            abstract=metadata.abstract or None,
            tags=tags,
            file_url=file_url,
            file_type=suffix,
        )
        chunks = chunk_text(text, self._chunk_size, self._chunk_overlap)
        embeddings = await self._embedder.embed_many(chunks)
        if len(embeddings) != len(chunks):
            raise ValueError(f"embedding count mismatch for {paper.id}: {len(embeddings)} != {len(chunks)}")
        await asyncio.to_thread(self._repository.replace_chunks, paper.id, list(zip(chunks, embeddings)))
        logger.info(
            "paper indexed",
            extra={
                "event": "index.paper.completed",
                "paper_id": paper.id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "result_count": len(chunks),
            },
        )
        return IndexSummary(paper_id=paper.id, title=paper.title, chunk_count=len(chunks), embedded_count=len(embeddings))

    async def index_file(self, path: Path, *, tags: list[str] | None = None) -> IndexSummary:
        text = await asyncio.to_thread(read_document_text, path)
        return await self.index_paper(text, filename=path.name, tags=tags, file_url=f"/data/{path.name}")

import asyncio
from dataclasses import dataclass
from pathlib import Path

import pytest

from paperchat.application.indexing import PaperIndexer, chunk_text, extract_metadata


def test_chunk_text_overlaps_and_prefers_sentence_breaks() -> None:
    sentence = "Transformers replace recurrence with attention layers. "
    text = sentence * 40
    chunks = chunk_text(text, size=300, overlap=50)

    assert len(chunks) > 1
    assert all(len(chunk) <= 300 for chunk in chunks)
    assert all(chunk.endswith(".") for chunk in chunks)
    # 相邻分块共享重叠部分
    assert chunks[0][-30:] in chunks[1]


def test_chunk_text_drops_short_fragments_and_validates_arguments() -> None:
    assert chunk_text("too short") == []
    assert chunk_text("x" * 120, size=1000, overlap=200) == ["x" * 120]
    with pytest.raises(ValueError):
        chunk_text("text", size=100, overlap=100)
    with pytest.raises(ValueError):
        chunk_text("text", size=0, overlap=0)


def test_chunk_text_does_not_repeat_the_tail() -> None:
    text = "a" * 1500
    chunks = chunk_text(text, size=1000, overlap=200)
    assert [len(chunk) for chunk in chunks] == [1000, 700]


def test_extract_metadata_reads_title_and_abstract() -> None:
    body = "This paper studies retrieval augmented generation for scientific question answering " * 3
    text = f"\n  Retrieval Augmented\nGeneration\nfor Papers\nJane Doe\nAbstract:\n{body}\n1 Introduction"
    metadata = extract_metadata(text, "rag.pdf")

    assert metadata.title == "Retrieval Augmented Generation for Papers"
    assert metadata.abstract.startswith("This paper studies")
    assert "\n" not in metadata.abstract
    assert metadata.authors == []


def test_extract_metadata_falls_back_to_filename() -> None:
    assert extract_metadata("   \n\n", "notes/paper-01.txt").title == "paper-01"
    long_title = "T" * 300
    assert extract_metadata(long_title, "x.txt").title == "T" * 200 + "..."


@dataclass
class _StoredPaper:
    id: str
    title: str


class _StubRepository:
    def __init__(self) -> None:
        self.papers: dict[str, dict] = {}
        self.chunks: dict[str, list] = {}

    def upsert_paper(self, **kwargs):
        self.papers[kwargs["paper_id"]] = kwargs
        return _StoredPaper(id=kwargs["paper_id"], title=kwargs["title"])

    def replace_chunks(self, paper_id, chunks):
        self.chunks[paper_id] = list(chunks)
        return len(chunks)


class _StubEmbedder:
    def __init__(self, drop: int = 0) -> None:
        self.drop = drop

    async def embed_many(self, texts):
        vectors = [[float(i), 1.0] for i, _ in enumerate(texts)]
        return vectors[: len(vectors) - self.drop] if self.drop else vectors


def test_index_paper_stores_paper_and_chunks() -> None:
    repo = _StubRepository()
    indexer = PaperIndexer(repository=repo, embedder=_StubEmbedder(), chunk_size=200, chunk_overlap=40)
    text = "Graph Neural Networks\n" + "Message passing aggregates neighbour features. " * 20

    summary = asyncio.run(indexer.index_paper(text, filename="gnn.md", tags=["graph"]))

    assert summary.paper_id == "gnn"
    assert summary.chunk_count == len(repo.chunks["gnn"]) > 1
    assert summary.embedded_count == summary.chunk_count
    stored = repo.papers["gnn"]
    assert stored["file_type"] == "md"
    assert stored["tags"] == ["graph"]
    assert stored["title"].startswith("Graph Neural Networks")
    assert repo.chunks["gnn"][1][1] == [1.0, 1.0]


def test_index_paper_rejects_short_text_and_count_mismatch() -> None:
    repo = _StubRepository()
    with pytest.raises(ValueError):
        asyncio.run(PaperIndexer(repository=repo, embedder=_StubEmbedder()).index_paper("short", filename="a.txt"))

    indexer = PaperIndexer(repository=repo, embedder=_StubEmbedder(drop=1), chunk_size=200, chunk_overlap=40)
    with pytest.raises(ValueError):
        asyncio.run(indexer.index_paper("Sentence number one goes here. " * 30, filename="b.txt"))
    assert "b" not in repo.chunks


def test_index_file_reads_plain_text(tmp_path: Path) -> None:
    path = tmp_path / "survey.txt"
    path.write_text("Survey of Diffusion Models\n" + "Diffusion models denoise gradually. " * 10, encoding="utf-8")
    repo = _StubRepository()
    summary = asyncio.run(PaperIndexer(repository=repo, embedder=_StubEmbedder()).index_file(path, tags=["cv"]))

    assert summary.paper_id == "survey"
    assert repo.papers["survey"]["file_url"] == "/data/survey.txt"

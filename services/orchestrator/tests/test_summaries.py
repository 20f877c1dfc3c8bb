"""论文摘要测试：直接汇总、分块先摘要、缓存命中与降级解析。"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from paperchat.application.summaries import (
    CHUNK_SUMMARY_PROMPT,
    PaperContentMissingError,
    PaperNotFoundError,
    PaperSummarizer,
    parse_summary_reply,
)
from paperchat.infra.db.repository import PaperRepository
from paperchat.infra.db.session import build_engine, build_session_factory, init_db

FINAL_REPLY = json.dumps(
    {
        "summary": "Transformers replace recurrence with attention.",
        "keyPoints": ["self-attention", "parallel training"],
        "methodology": "Encoder-decoder stacks",
        "results": "SOTA BLEU",
        "conclusion": "Attention suffices",
    }
)


class RecordingModel:
    def __init__(self, final_reply: str = FINAL_REPLY) -> None:
        self.final_reply = final_reply
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages):
        self.calls.append(messages)
        if messages[0]["content"] == CHUNK_SUMMARY_PROMPT:
            return f"partial-{len(self.calls)}"
        return self.final_reply


class FailingSaveRepository(PaperRepository):
    def save_summary(self, **kwargs):
        raise ConnectionError("database is read-only")


@pytest.fixture()
def repository(tmp_path: Path) -> PaperRepository:
    engine = build_engine(f"sqlite:///{tmp_path / 'summary.db'}")
    init_db(engine)
    repo = PaperRepository(build_session_factory(engine))
    repo.upsert_paper(paper_id="short", title="Attention", authors=["Vaswani"])
    repo.replace_chunks("short", [("intro text", None), ("method text", None)])
    repo.upsert_paper(paper_id="long", title="Survey", authors=["Kim"])
    repo.replace_chunks("long", [(f"section {i}", None) for i in range(12)])
    repo.upsert_paper(paper_id="empty", title="Pending", authors=[])
    return repo


def test_short_paper_is_summarized_in_one_call_and_cached(repository: PaperRepository) -> None:
    model = RecordingModel()
    summarizer = PaperSummarizer(repository=repository, model=model)

    first = asyncio.run(summarizer.summarize("short"))
    assert len(model.calls) == 1
    assert "intro text\n\nmethod text" in model.calls[0][1]["content"]
    assert first.cached is False
    assert first.key_points == ["self-attention", "parallel training"]
    assert first.methodology == "Encoder-decoder stacks"

    second = asyncio.run(summarizer.summarize("short"))
    assert len(model.calls) == 1
    assert second.cached is True
    assert second.summary == first.summary
    assert second.to_dict()["key_points"] == ["self-attention", "parallel training"]


def test_long_paper_summarizes_each_chunk_before_final_pass(repository: PaperRepository) -> None:
    model = RecordingModel()
    result = asyncio.run(PaperSummarizer(repository=repository, model=model).summarize("long"))

    chunk_calls = [call for call in model.calls if call[0]["content"] == CHUNK_SUMMARY_PROMPT]
    assert len(chunk_calls) == 12
    assert len(model.calls) == 13
    final_user = model.calls[-1][1]["content"]
    assert "partial-" in final_user
    assert "section 0" not in final_user
    assert result.summary.startswith("Transformers")


def test_missing_paper_and_missing_chunks_raise_lookup_errors(repository: PaperRepository) -> None:
    summarizer = PaperSummarizer(repository=repository, model=RecordingModel())
    with pytest.raises(PaperNotFoundError):
        asyncio.run(summarizer.summarize("nope"))
    with pytest.raises(PaperContentMissingError):
        asyncio.run(summarizer.summarize("empty"))


def test_cache_write_failure_still_returns_summary(tmp_path: Path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'readonly.db'}")
    init_db(engine)
    repo = FailingSaveRepository(build_session_factory(engine))
    repo.upsert_paper(paper_id="p1", title="Attention", authors=[])
    repo.replace_chunks("p1", [("body", None)])

    result = asyncio.run(PaperSummarizer(repository=repo, model=RecordingModel()).summarize("p1"))
    assert result.cached is False
    assert result.summary.startswith("Transformers")
    assert repo.get_summary("p1", "en") is None


def test_plain_text_reply_becomes_summary_without_key_points() -> None:
    parsed = parse_summary_reply("This paper studies attention.")
    assert parsed.summary == "This paper studies attention."
    assert parsed.key_points == []
    assert parsed.methodology is None


def test_fenced_json_reply_is_parsed() -> None:
    parsed = parse_summary_reply('```json\n{"summary": "ok", "keyPoints": ["a"], "results": ""}\n```')
    assert parsed.summary == "ok"
    assert parsed.key_points == ["a"]
    assert parsed.results is None


def test_summary_cache_is_per_language(repository: PaperRepository) -> None:
    repository.save_summary(paper_id="short", language="en", summary="english", key_points=["x"])
    repository.save_summary(paper_id="short", language="en", summary="english v2", key_points=[])
    assert repository.get_summary("short", "en").summary == "english v2"
    assert repository.get_summary("short", "ko") is None

"""HTTP 层测试：响应信封、SSE 帧格式与参数校验。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from paperchat.api.v1 import chat as chat_api
from paperchat.api.v1 import papers as papers_api
from paperchat.api.v1 import search as search_api
from paperchat.application.hybrid_search import SearchValidationError
from paperchat.application.orchestrator import OrchestrationError
from paperchat.application.summaries import PaperContentMissingError, PaperNotFoundError, PaperSummary
from paperchat.domain.enums import MatchType, TriggerEvent
from paperchat.domain.models import ChatOutcome, ChunkMatch, ExecutionSignals, HybridSearchHit, SearchResult, StreamEvent
from paperchat.infra.db.repository import PaperRepository
from paperchat.infra.db.session import build_engine, build_session_factory, init_db
from paperchat.main import app


class _StubChatService:
    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.turns = []

    async def run(self, turn):
        self.turns.append(turn)
        if self.fail is not None:
            raise self.fail
        return ChatOutcome(
            message="검색 결과입니다.",
            skill_id="paper_search",
            signals=ExecutionSignals(),
            prompt_buttons=["더 보기"],
            search_results=[SearchResult(paper_id="p1", title="RAG", authors=[], score=0.9)],
            recommended_papers=[],
            follow_up_skills=["paper_explain"],
            executed_skills=["paper_search"],
        )

    async def stream(self, turn):
        self.turns.append(turn)
        yield StreamEvent(type="content", data="Hel")
        yield StreamEvent(type="content", data="lo")
        yield StreamEvent(type="signals", data={"coverage": "enough"})
        yield StreamEvent(type="done", data={"skill_id": "general_chat"})


class _StubEngine:
    async def search(self, query, **kwargs):
        if not query.strip():
            raise SearchValidationError("Query is required")
        return [
            HybridSearchHit(
                paper_id="p1",
                title="RAG",
                authors=["Lewis"],
                abstract=None,
                tags=["nlp"],
                score=0.82,
                vector_score=0.9,
                keyword_score=0.0,
                match_type=MatchType.vector,
                matched_chunks=[ChunkMatch(chunk_id="7", paper_id="p1", content="retrieval", similarity=0.9)],
            )
        ]

    async def vector_only_search(self, query, **kwargs):
        self.vector_kwargs = kwargs
        return await self.search(query)


@pytest.fixture()
def client():
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def repository(tmp_path: Path) -> PaperRepository:
    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}")
    init_db(engine)
    repo = PaperRepository(build_session_factory(engine))
    repo.upsert_paper(paper_id="p1", title="Retrieval Augmented Generation", authors=["Lewis"], tags=["nlp"])
    repo.upsert_paper(paper_id="p2", title="Vision Transformers", authors=["Dosovitskiy"], tags=["cv"])
    return repo


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-Id"]


def test_chat_requires_session_id(client: TestClient) -> None:
    service = _StubChatService()
    app.dependency_overrides[chat_api._service] = lambda: service
    response = client.post("/api/v1/chat", json={"message": "hi"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": {"code": "BAD_REQUEST", "message": "session_id is required"}}
    assert service.turns == []


def test_chat_returns_success_envelope(client: TestClient) -> None:
    service = _StubChatService()
    app.dependency_overrides[chat_api._service] = lambda: service
    response = client.post(
        "/api/v1/chat",
        json={"session_id": "s1", "message": "RAG 논문", "trigger": "not-a-trigger", "history": [{"role": "user", "content": "hi"}]},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["data"]["skill_id"] == "paper_search"
    assert body["data"]["prompt_buttons"] == ["더 보기"]
    assert body["data"]["search_results"][0]["paper_id"] == "p1"
    assert "recommended_papers" not in body["data"]
    assert service.turns[0].trigger is TriggerEvent.default
    assert service.turns[0].history[0].content == "hi"


def test_chat_maps_orchestration_failure(client: TestClient) -> None:
    app.dependency_overrides[chat_api._service] = lambda: _StubChatService(fail=OrchestrationError("empty"))
    response = client.post("/api/v1/chat", json={"session_id": "s1", "message": "hi"})
    assert response.status_code == 500
    assert response.json()["error"]["code"] == "EXECUTION_FAILED"

    app.dependency_overrides[chat_api._service] = lambda: _StubChatService(fail=RuntimeError("boom"))
    response = client.post("/api/v1/chat", json={"session_id": "s1", "message": "hi"})
    assert response.json()["error"]["code"] == "INTERNAL_ERROR"


def test_chat_streams_sse_frames(client: TestClient) -> None:
    app.dependency_overrides[chat_api._service] = lambda: _StubChatService()
    response = client.post("/api/v1/chat", json={"session_id": "s1", "message": "hi", "stream": True})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = [frame for frame in response.text.split("\n\n") if frame]
    assert all(frame.startswith("data: ") for frame in frames)
    events = [json.loads(frame[len("data: "):]) for frame in frames]
    assert [event["type"] for event in events] == ["content", "content", "done"]
    assert events[-1]["data"]["skill_id"] == "general_chat"


def test_chat_streams_when_accept_header_requests_it(client: TestClient) -> None:
    app.dependency_overrides[chat_api._service] = lambda: _StubChatService()
    response = client.post(
        "/api/v1/chat", json={"session_id": "s1", "message": "hi"}, headers={"Accept": "text/event-stream"}
    )
    assert response.text.startswith('data: {"type": "content"')


def test_validation_error_uses_envelope(client: TestClient) -> None:
    app.dependency_overrides[search_api._engine] = lambda: _StubEngine()
    response = client.post("/api/v1/search", json={"query": "rag", "top_k": 0})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "BAD_REQUEST"
    assert "top_k" in body["error"]["message"]


def test_search_returns_results_and_rejects_blank_query(client: TestClient) -> None:
    app.dependency_overrides[search_api._engine] = lambda: _StubEngine()
    response = client.post("/api/v1/search", json={"query": "  rag  "})
    data = response.json()["data"]
    assert data["query"] == "rag"
    assert data["total"] == 1
    assert data["results"][0]["paper"]["id"] == "p1"
    assert data["results"][0]["match_type"] == "vector"
    assert data["results"][0]["matched_chunks"][0]["id"] == "7"

    response = client.post("/api/v1/search", json={"query": "   "})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Query is required"


def test_vector_search_caps_top_k(client: TestClient) -> None:
    engine = _StubEngine()
    app.dependency_overrides[search_api._engine] = lambda: engine
    response = client.post("/api/v1/search/vector", json={"query": "rag", "top_k": 500})
    assert response.status_code == 200
    assert engine.vector_kwargs["top_k"] == 50


def test_skill_catalog(client: TestClient) -> None:
    listing = client.get("/api/v1/skills").json()["data"]
    assert {item["skill_id"] for item in listing} >= {"greeting", "paper_search", "general_chat"}

    detail = client.get("/api/v1/skills/paper_explain").json()["data"]
    assert detail["requires"] == ["paper_chunks", "paper_metadata"]

    missing = client.get("/api/v1/skills/unknown")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


def test_papers_listing_detail_and_votes(client: TestClient, repository: PaperRepository) -> None:
    app.dependency_overrides[papers_api._repository] = lambda: repository

    listing = client.get("/api/v1/papers", params={"limit": 1}).json()
    assert listing["meta"] == {"page": 1, "limit": 1, "total": 2, "has_more": True}
    assert client.get("/api/v1/papers", params={"tags": "cv"}).json()["data"][0]["id"] == "p2"
    assert client.get("/api/v1/papers", params={"sort": "random"}).status_code == 400

    assert client.get("/api/v1/papers/p1").json()["data"]["title"] == "Retrieval Augmented Generation"
    assert client.get("/api/v1/papers/missing").status_code == 404

    vote = client.post("/api/v1/papers/p1/vote", json={"session_id": "s1", "vote_type": "up"}).json()
    assert vote["data"] == {"paper_id": "p1", "vote_type": "up", "vote_count": 1}
    assert client.post("/api/v1/papers/p1/vote", json={"session_id": "s1", "vote_type": "meh"}).status_code == 400

    survey = client.post("/api/v1/papers/p2/survey", json={"session_id": "s1", "responses": {"q1": 4}})
    assert survey.status_code == 201
    assert client.post("/api/v1/papers/missing/survey", json={"session_id": "s1", "responses": {}}).status_code == 404

    tags = client.get("/api/v1/tags").json()["data"]
    assert {"name": "nlp", "count": 1} in tags


def test_recommendations_require_session(client: TestClient) -> None:
    app.dependency_overrides[papers_api._recommender] = lambda: None
    response = client.get("/api/v1/recommendations")
    assert response.status_code == 400


class _StubSummarizer:
    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail

    async def summarize(self, paper_id, *, language="en"):
        if self.fail is not None:
            raise self.fail
        return PaperSummary(summary=f"summary of {paper_id}", key_points=["a", "b"], cached=True)


def test_paper_summary_envelope_and_error_mapping(client: TestClient) -> None:
    app.dependency_overrides[papers_api._summarizer] = lambda: _StubSummarizer()
    body = client.get("/api/v1/papers/p1/summary").json()
    assert body["success"] is True
    assert body["data"] == {
        "summary": "summary of p1",
        "key_points": ["a", "b"],
        "methodology": None,
        "results": None,
        "conclusion": None,
        "cached": True,
    }

    app.dependency_overrides[papers_api._summarizer] = lambda: _StubSummarizer(fail=PaperNotFoundError("p1"))
    assert client.get("/api/v1/papers/p1/summary").status_code == 404

    app.dependency_overrides[papers_api._summarizer] = lambda: _StubSummarizer(fail=PaperContentMissingError("p1"))
    missing = client.get("/api/v1/papers/p1/summary")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"

    app.dependency_overrides[papers_api._summarizer] = lambda: _StubSummarizer(fail=RuntimeError("closed"))
    failed = client.get("/api/v1/papers/p1/summary")
    assert failed.status_code == 500
    assert failed.json()["error"]["code"] == "INTERNAL_ERROR"

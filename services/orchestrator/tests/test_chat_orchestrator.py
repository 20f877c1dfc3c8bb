"""对话编排测试：链式跳转、深度上限、检索降级、推荐兜底与流式链路。"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, AsyncGenerator

from paperchat.application.executor import SkillExecutor
from paperchat.application.orchestrator import ChatOrchestratorService, ChatTurn
from paperchat.application.recommendations import PaperRecommender
from paperchat.config import Settings
from paperchat.domain.context.composer import ContextComposer
from paperchat.domain.enums import MatchType, TriggerEvent
from paperchat.domain.models import HybridSearchHit, PaperContext, SearchResult, StreamEvent, UserContext
from paperchat.domain.post_orchestrator import MAX_CHAIN_DEPTH, PostOrchestrator
from paperchat.domain.skills.registry import SkillRegistry
from paperchat.domain.skills.router import SkillRouter


def _reply(text: str, **signals: Any) -> str:
    return f"{text}<signals>{json.dumps(signals)}</signals>"


class ScriptedModel:
    """按顺序返回预设回复，最后一条重复使用。"""

    def __init__(self, *replies: str) -> None:
        self._replies = list(replies)
        self.calls: list[list[dict[str, str]]] = []

    @property
    def configured(self) -> bool:
        return True

    def _next(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        return self._replies[min(len(self.calls), len(self._replies)) - 1]

    async def complete(self, messages: list[dict[str, str]]) -> str:
        return self._next(messages)

    async def stream(self, messages: list[dict[str, str]]) -> AsyncGenerator[str, None]:
        reply = self._next(messages)
        for start in range(0, len(reply), 5):
            yield reply[start:start + 5]


class StubSearchEngine:
    def __init__(self, hits: list[HybridSearchHit] | None = None, *, error: Exception | None = None) -> None:
        self.hits = hits or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str, **kwargs: Any) -> list[HybridSearchHit]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.hits[: kwargs.get("top_k", 10)]


class StubRecommender:
    def __init__(self) -> None:
        self.popular_calls = 0

    async def from_survey(self, session_id: str, *, top_k: int = 5) -> list[SearchResult]:
        return []

    async def similar_papers(self, paper_id: str, *, top_k: int = 5, threshold: float = 0.7) -> list[SearchResult]:
        return [SearchResult(paper_id="sim-1", title="Similar", authors=[], score=0.8)]

    async def popular(self, *, top_k: int = 5, exclude_ids: Any = ()) -> list[SearchResult]:
        self.popular_calls += 1
        return [SearchResult(paper_id="pop-1", title="Popular", authors=[], score=1.0, snippet="인기 논문")]


class StubRepository:
    def __init__(self, papers: list[SimpleNamespace] | None = None) -> None:
        self.papers = {paper.id: paper for paper in papers or []}

    def get_paper(self, paper_id: str) -> SimpleNamespace | None:
        return self.papers.get(paper_id)

    def list_chunks(self, paper_id: str, limit: int | None = None) -> list[SimpleNamespace]:
        return [SimpleNamespace(content=f"{paper_id} chunk text")] if paper_id in self.papers else []

    def keyword_search(self, query: str, limit: int, paper_id: str | None = None) -> list[SimpleNamespace]:
        return list(self.papers.values())[:limit]


def _hit(paper_id: str, score: float) -> HybridSearchHit:
    return HybridSearchHit(
        paper_id=paper_id,
        title=f"Paper {paper_id}",
        authors=["Lee"],
        abstract="abstract",
        tags=[],
        score=score,
        vector_score=score,
        keyword_score=0.0,
        match_type=MatchType.vector,
    )


def _service(
    model: ScriptedModel,
    *,
    engine: StubSearchEngine | None = None,
    recommender: StubRecommender | None = None,
    repository: StubRepository | None = None,
) -> ChatOrchestratorService:
    registry = SkillRegistry()
    return ChatOrchestratorService(
        settings=Settings(),
        registry=registry,
        router=SkillRouter(registry),
        composer=ContextComposer(registry),
        executor=SkillExecutor(registry=registry, model=model),
        post_orchestrator=PostOrchestrator(registry),
        search_engine=engine or StubSearchEngine(),
        recommender=recommender or StubRecommender(),
        repository=repository or StubRepository(),
    )


def _returning_user() -> UserContext:
    return UserContext(session_id="s1", is_first_visit=False)


def test_single_skill_turn_returns_results_and_follow_ups() -> None:
    model = ScriptedModel(_reply("두 편을 찾았어요.", search_result_count=2))
    engine = StubSearchEngine([_hit("p1", 0.9), _hit("p2", 1.4)])
    turn = ChatTurn(session_id="s1", trigger=TriggerEvent.search_query, message="diffusion", user_context=_returning_user())

    outcome = asyncio.run(_service(model, engine=engine).run(turn))

    assert outcome.skill_id == "paper_search"
    assert outcome.executed_skills == ["paper_search"]
    assert outcome.message == "두 편을 찾았어요."
    assert [item.paper_id for item in outcome.search_results] == ["p1", "p2"]
    assert outcome.search_results[1].score == 1.0
    assert outcome.follow_up_skills == ["paper_explain", "recommend_next"]
    assert engine.queries == ["diffusion"]
    assert len(model.calls) == 1


def test_chain_stops_at_max_depth() -> None:
    model = ScriptedModel(_reply("계속", next_action_hint="reroute", suggested_skill_id="paper_search"))
    turn = ChatTurn(session_id="s1", message="오늘 날씨 좋네", user_context=_returning_user())

    outcome = asyncio.run(_service(model).run(turn))

    assert len(model.calls) == MAX_CHAIN_DEPTH
    assert outcome.executed_skills == ["general_chat", "paper_search", "paper_search"]
    assert outcome.skill_id == "paper_search"


def test_knowledge_gap_chains_into_search_with_previous_response() -> None:
    model = ScriptedModel(
        _reply("이 부분은 추가 자료가 필요해요.", knowledge_gap=True, coverage="none", confidence="low", next_action_hint="reroute"),
        _reply("관련 논문을 찾았어요."),
    )
    turn = ChatTurn(
        session_id="s1",
        trigger=TriggerEvent.paper_select,
        message="attention 설명해줘",
        user_context=_returning_user(),
        paper_context=PaperContext(paper_id="p9", title="Caller supplied title", abstract="abs"),
    )

    outcome = asyncio.run(_service(model, engine=StubSearchEngine([_hit("p1", 0.7)])).run(turn))

    assert outcome.executed_skills == ["paper_explain", "paper_search"]
    assert outcome.message == "관련 논문을 찾았어요."
    first_pack = model.calls[0][-1]["content"]
    assert "Caller supplied title" in first_pack
    second_pack = model.calls[1][-1]["content"]
    assert "[PreviousResponse]" in second_pack
    assert "이 부분은 추가 자료가 필요해요." in second_pack


def test_paper_is_loaded_from_repository_when_present() -> None:
    paper = SimpleNamespace(id="p9", title="Stored title", authors=["Park"], abstract="stored abstract", tags=["cv"])
    model = ScriptedModel(_reply("설명", explanation_complete=True))
    turn = ChatTurn(
        session_id="s1",
        trigger=TriggerEvent.paper_open,
        user_context=_returning_user(),
        paper_context=PaperContext(paper_id="p9", title="ignored"),
    )

    asyncio.run(_service(model, repository=StubRepository([paper])).run(turn))

    pack = model.calls[0][-1]["content"]
    assert "Stored title" in pack
    assert "p9 chunk text" in pack


def test_search_falls_back_to_keyword_listing_when_pipeline_fails() -> None:
    papers = [
        SimpleNamespace(id="k1", title="First", authors=[], abstract="a1", tags=[]),
        SimpleNamespace(id="k2", title="Second", authors=[], abstract=None, tags=[]),
    ]
    service = _service(ScriptedModel("x"), engine=StubSearchEngine(error=RuntimeError("fetch failed")), repository=StubRepository(papers))

    results = asyncio.run(service.search_papers("query", 10))

    assert [(item.paper_id, item.score) for item in results] == [("k1", 1.0), ("k2", 0.9)]
    assert results[1].snippet is None


def test_recommendation_falls_back_to_popular_papers() -> None:
    recommender = StubRecommender()
    model = ScriptedModel(_reply("이 논문을 추천해요.", recommendations_count=1))
    turn = ChatTurn(session_id="s1", trigger=TriggerEvent.ask_recommendation, message="뭐 읽을까", user_context=_returning_user())

    outcome = asyncio.run(_service(model, recommender=recommender).run(turn))

    assert outcome.skill_id == "recommend_next"
    assert [item.paper_id for item in outcome.recommended_papers] == ["pop-1"]
    assert recommender.popular_calls == 1
    assert "pop-1" in model.calls[0][-1]["content"]


def test_recommendation_prefers_last_read_paper() -> None:
    model = ScriptedModel(_reply("추천"))
    user = UserContext(session_id="s1", reading_history=["p1", "p2"])
    turn = ChatTurn(session_id="s1", trigger=TriggerEvent.paper_read_complete, user_context=user)

    outcome = asyncio.run(_service(model).run(turn))

    assert [item.paper_id for item in outcome.recommended_papers] == ["sim-1"]


def test_first_visit_defaults_from_empty_history() -> None:
    model = ScriptedModel(_reply("환영해요!"))
    outcome = asyncio.run(_service(model).run(ChatTurn(session_id="s1", message="음")))
    assert outcome.skill_id == "greeting"


def test_stream_chains_and_emits_final_events_once() -> None:
    model = ScriptedModel(
        _reply("첫 번째", next_action_hint="reroute", suggested_skill_id="paper_search"),
        _reply("두 번째", search_result_count=1) + '<prompt_buttons>["설명해줘"]</prompt_buttons>',
    )
    service = _service(model, engine=StubSearchEngine([_hit("p1", 0.8)]))
    turn = ChatTurn(session_id="s1", message="오늘 날씨 좋네", user_context=_returning_user())

    async def collect() -> list[StreamEvent]:
        return [event async for event in service.stream(turn)]

    events = asyncio.run(collect())
    types = [event.type for event in events]

    assert types.count("done") == 1
    assert types.count("signals") == 1
    assert types[-2:] == ["buttons", "done"]
    text = "".join(event.data for event in events if event.type == "content")
    assert text == "첫 번째\n\n두 번째"
    done = events[-1]
    assert done.data["skill_id"] == "paper_search"
    assert done.data["search_results"][0]["paper_id"] == "p1"
    assert done.data["follow_up_skills"][0] == "paper_explain"


class UnreachableRepository(StubRepository):
    """问卷与分块读取失败，热门论文仍可读取。"""

    def surveyed_paper_ids(self, session_id: str) -> list[str]:
        raise ConnectionError("datastore unreachable")

    def list_chunks(self, paper_id: str, limit: int | None = None) -> list[SimpleNamespace]:
        raise ConnectionError("datastore unreachable")

    def popular_papers(self, limit: int, exclude_ids: Any = ()) -> list[SimpleNamespace]:
        return [SimpleNamespace(id="pop-9", title="Popular", authors=[], tags=[], vote_count=3)]


class UnusedEmbedder:
    async def embed(self, text: str) -> list[float]:
        raise AssertionError("embedding must not be requested")


def test_recommendation_datastore_failure_degrades_to_popular_papers() -> None:
    repository = UnreachableRepository()
    recommender = PaperRecommender(repository=repository, embedder=UnusedEmbedder())
    model = ScriptedModel(_reply("추천드려요.", recommendations_count=1))
    service = _service(model, recommender=recommender, repository=repository)

    survey_turn = ChatTurn(session_id="s1", trigger=TriggerEvent.survey_submitted, user_context=_returning_user())
    outcome = asyncio.run(service.run(survey_turn))
    assert outcome.skill_id == "survey_complete"
    assert [item.paper_id for item in outcome.recommended_papers] == ["pop-9"]

    reader = UserContext(session_id="s1", is_first_visit=False, reading_history=["p1"])
    read_turn = ChatTurn(session_id="s1", trigger=TriggerEvent.paper_read_complete, user_context=reader)
    outcome = asyncio.run(service.run(read_turn))
    assert outcome.executed_skills[0] == "recommend_next"
    assert [item.paper_id for item in outcome.recommended_papers] == ["pop-9"]

"""领域数据结构定义：会话上下文、检索结果、执行信号与编排输出等值对象。"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from paperchat.domain.enums import (
    Confidence,
    ContextModule,
    Coverage,
    MatchType,
    NextActionHint,
    PostAction,
    TriggerEvent,
)


@dataclass(frozen=True, slots=True)
class SkillBudget:
    """技能预算：上下文 token 上限、历史轮数与检索/候选数量。"""
    context_tokens: int
    history_turns: int
    search_topk: int | None = None
    candidates_topk: int | None = None


@dataclass(frozen=True, slots=True)
class SkillDescriptor:
    """技能元信息，用于接口返回。"""
    skill_id: str
    description: str
    triggers: tuple[str, ...]
    requires: tuple[str, ...]
    budget: dict[str, int | None]


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str


@dataclass(slots=True)
class UserContext:
    """调用方每轮提供的用户状态，核心流程不做持久化。"""
    session_id: str
    is_first_visit: bool = False
    visit_count: int = 1
    user_name: str | None = None
    preferred_language: str = "ko"
    reading_history: list[str] = field(default_factory=list)
    survey_history: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PaperContext:
    paper_id: str
    title: str
    authors: list[str] = field(default_factory=list)
    abstract: str | None = None
    tags: list[str] = field(default_factory=list)
    chunks: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    """上下文包与响应中使用的论文条目，score 取值 [0, 1]。"""
    paper_id: str
    title: str
    authors: list[str]
    score: float
    snippet: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SurveyResponse:
    question_id: str
    answer: str | int | float | list[str]


@dataclass(slots=True)
class ExecutionSignals:
    """模型回复尾部 <signals> 块解析后的结构。"""
    coverage: Coverage = Coverage.enough
    confidence: Confidence = Confidence.medium
    next_action_hint: NextActionHint = NextActionHint.stop
    suggested_skill_id: str | None = None
    knowledge_gap: bool | None = None
    gap_reason: str | None = None
    explanation_complete: bool | None = None
    intent_clarified: bool | None = None
    recommendations_count: int | None = None
    search_result_count: int | None = None
    user_understanding: Confidence | None = None
    diversity_score: Confidence | None = None

    @classmethod
    def failure(cls) -> "ExecutionSignals":
        """模型不可用或调用失败时的信号。"""
        return cls(coverage=Coverage.none, confidence=Confidence.low, next_action_hint=NextActionHint.stop)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            payload[key] = value.value if hasattr(value, "value") else value
        return payload


@dataclass(slots=True)
class AdditionalContextData:
    """组装上下文包时的附加数据。"""
    paper: PaperContext | None = None
    search_results: list[SearchResult] = field(default_factory=list)
    survey_responses: list[SurveyResponse] = field(default_factory=list)
    previous_signals: ExecutionSignals | None = None
    previous_response: str | None = None


@dataclass(slots=True)
class RouteDecision:
    """前置编排输出。"""
    skill_id: str
    requires: frozenset[ContextModule]
    query: str | None
    reason: str


@dataclass(slots=True)
class PostDecision:
    """后置编排输出。"""
    action: PostAction
    next_skill_id: str | None
    reason: str


@dataclass(slots=True)
class ExecutionResult:
    content: str
    raw_response: str
    signals: ExecutionSignals
    prompt_buttons: list[str] | None = None


@dataclass(slots=True)
class StreamEvent:
    """流式事件；done 事件额外携带完整执行结果，不参与序列化。"""
    type: str
    data: Any
    result: ExecutionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(slots=True)
class ChunkMatch:
    """向量召回的单个论文分块。"""
    chunk_id: str
    paper_id: str
    content: str
    similarity: float
    chunk_index: int = 0


@dataclass(slots=True)
class HybridSearchHit:
    """混合检索输出条目。"""
    paper_id: str
    title: str
    authors: list[str]
    abstract: str | None
    tags: list[str]
    score: float
    vector_score: float
    keyword_score: float
    match_type: MatchType
    matched_chunks: list[ChunkMatch] = field(default_factory=list)

    def to_search_result(self) -> SearchResult:
        if self.matched_chunks:
            snippet = self.matched_chunks[0].content[:200]
        else:
            snippet = (self.abstract or "")[:200] or None
        return SearchResult(
            paper_id=self.paper_id,
            title=self.title,
            authors=list(self.authors),
            score=min(1.0, max(0.0, self.score)),
            snippet=snippet,
            tags=list(self.tags),
        )


@dataclass(slots=True)
class ChainState:
    """单轮对话内的技能链累加器。"""
    trigger: TriggerEvent
    depth: int = 0
    current_skill_id: str | None = None
    current_signals: ExecutionSignals | None = None
    previous_response: str | None = None
    search_results: list[SearchResult] = field(default_factory=list)
    recommended_papers: list[SearchResult] = field(default_factory=list)
    executed_skills: list[str] = field(default_factory=list)
    final_result: ExecutionResult | None = None


@dataclass(slots=True)
class ChatOutcome:
    """一轮对话的最终结果，API 层据此组装响应。"""
    message: str
    skill_id: str
    signals: ExecutionSignals
    prompt_buttons: list[str] | None
    search_results: list[SearchResult]
    recommended_papers: list[SearchResult]
    follow_up_skills: list[str]
    executed_skills: list[str]

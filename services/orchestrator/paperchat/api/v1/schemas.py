"""API 请求数据模型定义，约束对话、检索、问卷与投票等接口入参。"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from paperchat.domain.enums import TriggerEvent
from paperchat.domain.models import (
    AdditionalContextData,
    ChatMessage,
    PaperContext,
    SearchResult,
    SurveyResponse,
    UserContext,
)
from paperchat.domain.signals import signals_from_mapping


class ChatMessageIn(BaseModel):
    role: str
    content: str


class UserContextIn(BaseModel):
    is_first_visit: bool | None = None
    visit_count: int = 1
    user_name: str | None = None
    preferred_language: str = "ko"
    reading_history: list[str] = Field(default_factory=list)
    survey_history: list[str] = Field(default_factory=list)


class PaperContextIn(BaseModel):
    paper_id: str
    title: str = ""
    authors: list[str] = Field(default_factory=list)
    abstract: str | None = None
    tags: list[str] = Field(default_factory=list)
    chunks: list[str] = Field(default_factory=list)

    def to_domain(self) -> PaperContext:
        return PaperContext(**self.model_dump())


class SearchResultIn(BaseModel):
    paper_id: str
    title: str
    authors: list[str] = Field(default_factory=list)
    score: float = 0.0
    snippet: str | None = None
    tags: list[str] = Field(default_factory=list)


class SurveyResponseIn(BaseModel):
    question_id: str
    answer: str | int | float | list[str]


class AdditionalDataIn(BaseModel):
    paper: PaperContextIn | None = None
    search_results: list[SearchResultIn] = Field(default_factory=list)
    survey_responses: list[SurveyResponseIn] = Field(default_factory=list)
    previous_signals: dict[str, Any] | None = None
    previous_response: str | None = None

    def to_domain(self) -> AdditionalContextData:
        return AdditionalContextData(
            paper=self.paper.to_domain() if self.paper else None,
            search_results=[SearchResult(**item.model_dump()) for item in self.search_results],
            survey_responses=[SurveyResponse(**item.model_dump()) for item in self.survey_responses],
            previous_signals=signals_from_mapping(self.previous_signals) if self.previous_signals else None,
            previous_response=self.previous_response,
        )


class ChatRequest(BaseModel):
    """对话请求；session_id 在路由里单独校验，以便返回统一的 BAD_REQUEST。"""
    session_id: str | None = None
    message: str | None = None
    trigger: TriggerEvent = TriggerEvent.default
    history: list[ChatMessageIn] = Field(default_factory=list)
    user_context: UserContextIn | None = None
    paper_context: PaperContextIn | None = None
    additional_data: AdditionalDataIn = Field(default_factory=AdditionalDataIn)
    stream: bool = False

    @field_validator("trigger", mode="before")
    @classmethod
    def _unknown_trigger_is_default(cls, value: Any) -> Any:
        if value is None:
            return TriggerEvent.default
        if isinstance(value, str) and value not in TriggerEvent.__members__:
            return TriggerEvent.default
        return value

    def history_messages(self) -> list[ChatMessage]:
        return [ChatMessage(role=item.role, content=item.content) for item in self.history]

    def user_context_for(self, session_id: str) -> UserContext | None:
        if self.user_context is None:
            return None
        payload = self.user_context.model_dump()
        if payload["is_first_visit"] is None:
            payload["is_first_visit"] = len(self.history) == 0
        return UserContext(session_id=session_id, **payload)


class HybridSearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=10, ge=1, le=50)
    paper_id: str | None = None
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    vector_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.4, ge=0.0, le=1.0)


class VectorSearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=10, ge=1)
    paper_id: str | None = None
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class SurveyRequest(BaseModel):
    session_id: str
    responses: dict[str, Any]


class VoteRequest(BaseModel):
    session_id: str
    vote_type: str

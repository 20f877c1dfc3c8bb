"""领域枚举定义：触发事件、上下文模块与执行信号取值。"""

from __future__ import annotations

from enum import Enum


class TriggerEvent(str, Enum):
    """一次对话轮次的触发来源。"""
    site_enter = "site_enter"
    first_visit = "first_visit"
    search_query = "search_query"
    user_question = "user_question"
    paper_select = "paper_select"
    paper_open = "paper_open"
    explain_request = "explain_request"
    survey_submitted = "survey_submitted"
    paper_read_complete = "paper_read_complete"
    ask_recommendation = "ask_recommendation"
    default = "default"


class ContextModule(str, Enum):
    """上下文包可包含的模块，闭集。"""
    user_state = "user_state"
    paper_metadata = "paper_metadata"
    paper_chunks = "paper_chunks"
    vector_search = "vector_search"
    keyword_search = "keyword_search"
    survey_responses = "survey_responses"
    conversation_history = "conversation_history"
    reading_history = "reading_history"
    previous_response = "previous_response"

    @property
    def section(self) -> str:
        """渲染上下文包时使用的段落名。"""
        return "".join(part.capitalize() for part in self.value.split("_"))


class Coverage(str, Enum):
    enough = "enough"
    partial = "partial"
    none = "none"


class Confidence(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class NextActionHint(str, Enum):
    stop = "stop"
    reroute = "reroute"


class PostAction(str, Enum):
    """后置编排的决策动作。"""
    stop = "stop"
    reroute = "reroute"


class MatchType(str, Enum):
    """混合检索命中来源。"""
    vector = "vector"
    keyword = "keyword"
    hybrid = "hybrid"


class StreamEventType(str, Enum):
    """流式输出事件类型。"""
    content = "content"
    signals = "signals"
    buttons = "buttons"
    done = "done"
    error = "error"

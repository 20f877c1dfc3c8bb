"""技能路由测试：覆盖 reroute 覆盖、触发事件表、意图识别与兜底分支。"""

from paperchat.domain.enums import ContextModule, NextActionHint, TriggerEvent
from paperchat.domain.models import ExecutionSignals, UserContext
from paperchat.domain.skills.registry import SkillRegistry
from paperchat.domain.skills.router import SkillRouter, detect_intent


def _router() -> SkillRouter:
    return SkillRouter(SkillRegistry())


def test_site_enter_routes_to_greeting_without_query() -> None:
    decision = _router().route(TriggerEvent.site_enter, "anything")
    assert decision.skill_id == "greeting"
    assert decision.query is None
    assert decision.requires == frozenset({ContextModule.user_state})


def test_search_trigger_uses_message_as_query() -> None:
    decision = _router().route(TriggerEvent.search_query, "graph neural networks")
    assert decision.skill_id == "paper_search"
    assert decision.query == "graph neural networks"


def test_paper_select_routes_to_explain() -> None:
    assert _router().route(TriggerEvent.paper_select).skill_id == "paper_explain"


def test_intent_priority_search_before_explain() -> None:
    assert detect_intent("논문 검색하고 설명해줘") == "search"
    decision = _router().route(TriggerEvent.default, "논문 검색하고 설명해줘")
    assert decision.skill_id == "paper_search"
    assert decision.query == "논문 검색하고 설명해줘"


def test_intent_recommend_and_explain() -> None:
    router = _router()
    assert router.route(TriggerEvent.default, "다음에 읽을 거 추천해줘").skill_id == "recommend_next"
    explain = router.route(TriggerEvent.default, "이 내용 설명해줘")
    assert explain.skill_id == "paper_explain"
    assert explain.query is None


def test_first_visit_without_intent_goes_to_greeting() -> None:
    user = UserContext(session_id="s1", is_first_visit=True)
    assert _router().route(TriggerEvent.default, "음...", user).skill_id == "greeting"


def test_fallback_general_chat_keeps_message_as_query() -> None:
    user = UserContext(session_id="s1", is_first_visit=False)
    decision = _router().route(TriggerEvent.default, "오늘 날씨 좋네", user)
    assert decision.skill_id == "general_chat"
    assert decision.query == "오늘 날씨 좋네"


def test_reroute_hint_overrides_trigger() -> None:
    signals = ExecutionSignals(next_action_hint=NextActionHint.reroute, suggested_skill_id="paper_search")
    decision = _router().route(TriggerEvent.site_enter, "transformer", previous_signals=signals)
    assert decision.skill_id == "paper_search"
    assert decision.query == "transformer"


def test_reroute_to_unregistered_skill_falls_back_to_rules() -> None:
    signals = ExecutionSignals(next_action_hint=NextActionHint.reroute, suggested_skill_id="no_such_skill")
    decision = _router().route(TriggerEvent.site_enter, None, previous_signals=signals)
    assert decision.skill_id == "greeting"

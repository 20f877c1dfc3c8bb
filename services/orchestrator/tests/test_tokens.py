"""Token 估算与截断测试。"""

from paperchat.domain.context.tokens import TRUNCATION_MARKER, estimate_tokens, truncate_to_budget


def test_estimate_tokens_weights() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("hello world") == 3
    assert estimate_tokens("안녕") == 4
    assert estimate_tokens("2024") == 1
    assert estimate_tokens("!") == 1


def test_estimate_tokens_is_monotonic_over_prefixes() -> None:
    text = "Attention 메커니즘은 2017년 Transformer 논문에서 제안됐다. (Vaswani et al.)"
    counts = [estimate_tokens(text[:size]) for size in range(len(text) + 1)]
    assert counts == sorted(counts)
    assert estimate_tokens(text) == estimate_tokens(text)


def test_truncate_within_budget_returns_text_unchanged() -> None:
    assert truncate_to_budget("short text", 100) == "short text"


def test_truncate_keeps_marker_inside_budget() -> None:
    text = "word " * 100
    truncated = truncate_to_budget(text, 20)
    assert truncated.endswith(TRUNCATION_MARKER)
    assert estimate_tokens(truncated) <= 20
    assert text.startswith(truncated[: -len(TRUNCATION_MARKER)])


def test_truncate_returns_empty_when_marker_does_not_fit() -> None:
    assert truncate_to_budget("abcdef ghijk", 0) == ""

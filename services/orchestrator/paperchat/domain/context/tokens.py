"""Token 估算与按预算截断。

估算是启发式的：韩文字符按 1.8 计，英文单词 1.3，数字串 1，空白 0.1，其余字符 0.5。
估算器可替换，只要求纯函数且对前缀长度单调不减。
"""

from __future__ import annotations

import math
import re
from typing import Callable

TokenEstimator = Callable[[str], int]

TRUNCATION_MARKER = "..."

_HANGUL = re.compile(r"[\uAC00-\uD7AF\u1100-\u11FF\u3130-\u318F]")
_LATIN_WORD = re.compile(r"[a-zA-Z]+")
_DIGITS = re.compile(r"[0-9]+")
_WHITESPACE = re.compile(r"\s")
_ASCII_ALNUM_OR_SPACE = re.compile(r"[a-zA-Z0-9\s]")


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    hangul = len(_HANGUL.findall(text))
    words = len(_LATIN_WORD.findall(text))
    digit_runs = len(_DIGITS.findall(text))
    spaces = len(_WHITESPACE.findall(text))
    others = len(text) - hangul - len(_ASCII_ALNUM_OR_SPACE.findall(text))
    total = hangul * 1.8 + words * 1.3 + digit_runs * 1 + spaces * 0.1 + others * 0.5
    return max(1, math.ceil(total))


def truncate_to_budget(text: str, max_tokens: int, estimator: TokenEstimator = estimate_tokens) -> str:
    """预算内原样返回；否则二分查找最长前缀，并在末尾追加省略标记。

    省略标记本身也计入预算，保证结果的估算值不超过 max_tokens。
    """
    if estimator(text) <= max_tokens:
        return text
    low, high = 0, len(text)
    while low < high:
        mid = (low + high + 1) // 2
        if estimator(text[:mid] + TRUNCATION_MARKER) <= max_tokens:
            low = mid
        else:
            high = mid - 1
    if low == 0 and estimator(TRUNCATION_MARKER) > max_tokens:
        return ""
    return text[:low] + TRUNCATION_MARKER

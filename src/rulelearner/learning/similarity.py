"""Text similarity scoring for rule titles and descriptions.

Two measures are provided: a keyword Jaccard score tuned for short
bilingual rule text, and normalized Levenshtein similarity. Both are pure,
symmetric and bounded in [0, 1].
"""

from __future__ import annotations

import re

STOP_WORDS = frozenset({
    "的", "了", "和", "是", "在", "有", "会", "可以", "应该", "需要",
    "进行", "执行", "检测", "规则", "sql",
    "the", "and", "for", "with",
})

MAX_KEYWORDS = 10
CONTAINMENT_SCORE = 0.8

_NON_WORD = re.compile(r"[^\w\u4e00-\u9fa5\s]")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> set[str]:
    """Extract up to ``limit`` distinct keywords from lower-cased text.

    Tokens of one character and stop words are dropped. Keywords are taken
    in order of first appearance.
    """
    tokens = _NON_WORD.sub(" ", text.lower()).split()
    keywords: list[str] = []
    for token in tokens:
        if len(token) <= 1 or token in STOP_WORDS or token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= limit:
            break
    return set(keywords)


def keyword_similarity(a: str | None, b: str | None) -> float:
    """Score the similarity of two short texts.

    Exact match scores 1.0 and containment in either direction 0.8.
    Otherwise the score is the Jaccard overlap of the keyword sets.
    """
    left = (a or "").strip().lower()
    right = (b or "").strip().lower()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if left in right or right in left:
        return CONTAINMENT_SCORE

    left_words = extract_keywords(left)
    right_words = extract_keywords(right)
    union = left_words | right_words
    if not union:
        return 0.0
    return len(left_words & right_words) / len(union)


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance using two rolling rows."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str | None, b: str | None) -> float:
    """Return ``1 - distance / max(len)``; 0.0 when either side is empty."""
    left = a or ""
    right = b or ""
    if left == right:
        return 1.0 if left else 0.0
    if not left or not right:
        return 0.0
    return 1.0 - levenshtein_distance(left, right) / max(len(left), len(right))


def text_similarity(a: str | None, b: str | None) -> float:
    """Best of keyword and edit-distance similarity on normalized text.

    Keyword overlap handles reordered English phrasing; edit distance
    handles unsegmented CJK text, which keyword extraction sees as one token.
    """
    left = (a or "").strip().lower()
    right = (b or "").strip().lower()
    return max(keyword_similarity(left, right), levenshtein_similarity(left, right))

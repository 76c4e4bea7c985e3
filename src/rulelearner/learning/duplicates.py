"""Duplicate detection against the published rule corpus.

Rules are compared only within their category. Similarity is a weighted
blend of title, description, SQL pattern and severity agreement, with the
weights renormalized over the components both rules actually have.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any

from rulelearner.core.config import DuplicateConfig
from rulelearner.core.logging import get_logger
from rulelearner.core.models import (
    CandidateRule,
    Category,
    DuplicateMatch,
    DuplicateResult,
    DuplicateType,
)
from rulelearner.learning.similarity import text_similarity
from rulelearner.learning.storage import RuleFileStore, StoredRule

_logger = get_logger("duplicates")

TITLE_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3
SQL_PATTERN_WEIGHT = 0.2
SEVERITY_WEIGHT = 0.1


def _normalized(text: str | None) -> str:
    return (text or "").strip().lower()


def compute_similarity(candidate: StoredRule, existing: StoredRule) -> float:
    """Weighted similarity of two rules in [0, 1]."""
    total = text_similarity(candidate.title, existing.title) * TITLE_WEIGHT
    weight = TITLE_WEIGHT

    if candidate.description and existing.description:
        total += text_similarity(candidate.description, existing.description) * DESCRIPTION_WEIGHT
        weight += DESCRIPTION_WEIGHT

    if candidate.sql_pattern and existing.sql_pattern:
        total += (candidate.sql_pattern == existing.sql_pattern) * SQL_PATTERN_WEIGHT
        weight += SQL_PATTERN_WEIGHT

    total += (_normalized(candidate.severity) == _normalized(existing.severity)) * SEVERITY_WEIGHT
    weight += SEVERITY_WEIGHT

    return round(total / weight, 4)


def is_exact_match(candidate: StoredRule, existing: StoredRule) -> bool:
    """Same title, or same non-empty description, ignoring case and padding."""
    if _normalized(candidate.title) == _normalized(existing.title):
        return True
    description = _normalized(candidate.description)
    return bool(description) and description == _normalized(existing.description)


@dataclass
class _Scored:
    rule: StoredRule
    similarity: float

    def to_match(self) -> DuplicateMatch:
        return DuplicateMatch(
            title=self.rule.title,
            category=self.rule.category or Category.PERFORMANCE,
            similarity=self.similarity,
            file_path=self.rule.file_path,
        )


class RuleDuplicateDetector:
    """Finds exact and near duplicates of candidate rules.

    The corpus is loaded from the rule store on first use and cached,
    grouped by category. ``clear_cache`` forces a reload.
    """

    def __init__(self, store: RuleFileStore, config: DuplicateConfig | None = None) -> None:
        self.store = store
        self.config = config or DuplicateConfig()
        self._rules: dict[Category, list[StoredRule]] | None = None

    async def _load(self) -> dict[Category, list[StoredRule]]:
        if self._rules is None:
            grouped: dict[Category, list[StoredRule]] = {category: [] for category in Category}
            skipped = 0
            for rule in self.store.load_rules():
                if rule.category is None:
                    skipped += 1
                    continue
                grouped[rule.category].append(rule)
            self._rules = grouped
            _logger.info(
                "duplicate_corpus_loaded",
                root=str(self.store.root_dir),
                rules=sum(len(rules) for rules in grouped.values()),
                skipped=skipped,
            )
        return self._rules

    async def check_duplicate(self, candidate: CandidateRule) -> DuplicateResult:
        """Compare a candidate against same-category corpus rules."""
        corpus = (await self._load())[candidate.category]
        probe = StoredRule.from_candidate(candidate)

        for existing in corpus:
            if is_exact_match(probe, existing):
                _logger.info("exact_duplicate_found", title=candidate.title, match=existing.title)
                return DuplicateResult(
                    is_duplicate=True,
                    similarity=1.0,
                    matched_rules=[_Scored(existing, 1.0).to_match()],
                    duplicate_type=DuplicateType.EXACT,
                )

        scored = sorted(
            (_Scored(existing, compute_similarity(probe, existing)) for existing in corpus),
            key=lambda item: item.similarity,
            reverse=True,
        )
        if scored and scored[0].similarity >= 1.0:
            return DuplicateResult(
                is_duplicate=True,
                similarity=1.0,
                matched_rules=[scored[0].to_match()],
                duplicate_type=DuplicateType.EXACT,
            )

        high = [item for item in scored if item.similarity >= self.config.high_similarity]
        if high:
            _logger.info(
                "similar_rule_found",
                title=candidate.title,
                match=high[0].rule.title,
                similarity=high[0].similarity,
            )
            return DuplicateResult(
                is_duplicate=True,
                similarity=high[0].similarity,
                matched_rules=[item.to_match() for item in high],
                duplicate_type=DuplicateType.HIGH_SIMILARITY,
            )

        medium = [item for item in scored if item.similarity >= self.config.warn_similarity]
        if medium:
            _logger.warning(
                "moderately_similar_rule",
                title=candidate.title,
                match=medium[0].rule.title,
                similarity=medium[0].similarity,
            )
            return DuplicateResult(
                is_duplicate=False,
                similarity=medium[0].similarity,
                matched_rules=[item.to_match() for item in medium],
                duplicate_type=DuplicateType.NONE,
            )

        return DuplicateResult()

    async def add_to_cache(self, rule: CandidateRule, file_path: str | None = None) -> None:
        """Make a newly approved rule visible to later checks in this process."""
        corpus = await self._load()
        corpus[rule.category].append(StoredRule.from_candidate(rule, file_path=file_path))

    def clear_cache(self) -> None:
        self._rules = None

    async def get_rules_stats(self) -> dict[str, Any]:
        corpus = await self._load()
        severities: Counter[str] = Counter(
            rule.severity for rules in corpus.values() for rule in rules
        )
        return {
            "total": sum(len(rules) for rules in corpus.values()),
            "by_category": {category.value: len(rules) for category, rules in corpus.items()},
            "by_severity": dict(severities),
        }

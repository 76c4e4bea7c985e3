"""Shared test helpers for rule learner tests."""

import json
from collections.abc import Sequence
from typing import Any

from rulelearner.backends.base import GenerationResult, TextGenerator
from rulelearner.core.models import (
    AnalysisRecord,
    CandidateRule,
    Category,
    ISSUE_FIELDS,
    Severity,
)


class FakeTextGenerator(TextGenerator):
    """Text generator that replays queued replies.

    Strings become successful results; GenerationResult objects are
    returned as-is. Once the queue is empty every call fails.
    """

    def __init__(self, replies: Sequence[str | GenerationResult] = ()) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def generate(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        if not self.replies:
            return GenerationResult(success=False, error="no reply queued", error_type="exhausted")
        reply = self.replies.pop(0)
        if isinstance(reply, GenerationResult):
            return reply
        return GenerationResult(success=True, content=reply, duration_seconds=0.01)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


def make_record(
    sql: str,
    *,
    performance: list[dict[str, Any]] | None = None,
    security: list[dict[str, Any]] | None = None,
    standards: list[dict[str, Any]] | None = None,
    confidence: float | None = 0.9,
    timestamp: str = "2024-05-01T10:00:00+00:00",
    success: bool = True,
) -> AnalysisRecord:
    """Build an analysis record from per-category issue lists."""
    analysis: dict[str, Any] = {}
    for category, issues in (
        (Category.PERFORMANCE, performance),
        (Category.SECURITY, security),
        (Category.STANDARDS, standards),
    ):
        if issues is None:
            continue
        dimension: dict[str, Any] = {
            "summary": f"{category.value} analysis",
            ISSUE_FIELDS[category]: issues,
        }
        if confidence is not None:
            dimension["confidence"] = confidence
        analysis[category.value] = dimension
    return AnalysisRecord.from_dict({
        "sql": sql,
        "databaseType": "mysql",
        "timestamp": timestamp,
        "success": success,
        "analysis": analysis,
    })


def make_rule(**overrides: Any) -> CandidateRule:
    """A complete, well-formed performance rule; override any field."""
    fields: dict[str, Any] = {
        "title": "避免在大表上使用SELECT *查询",
        "description": "SELECT * 会读取所有列，增加IO和网络开销，应只查询业务需要的字段",
        "category": Category.PERFORMANCE,
        "type": "select_star",
        "severity": Severity.MEDIUM,
        "condition": "查询语句使用SELECT *读取全部列",
        "example": "SELECT id, name FROM users WHERE id = 1",
        "confidence": 0.85,
    }
    fields.update(overrides)
    return CandidateRule(**fields)


def rubric_reply(score: int = 85, should_keep: bool = True, **extra: Any) -> str:
    """A well-formed evaluation reply as JSON text."""
    payload: dict[str, Any] = {
        "score": score,
        "level": "good",
        "dimensionScores": {
            "accuracy": score,
            "completeness": score,
            "practicality": score,
            "generality": score,
            "consistency": score,
        },
        "strengths": ["clear condition"],
        "issues": [],
        "shouldKeep": should_keep,
        "summary": "useful rule",
    }
    payload.update(extra)
    return json.dumps(payload, ensure_ascii=False)


def rules_reply(*rules: dict[str, Any], container: str = "rules") -> str:
    return json.dumps({container: list(rules)}, ensure_ascii=False)


class FakeHistory:
    """In-memory history provider that records the searches it receives."""

    def __init__(
        self,
        records: Sequence[AnalysisRecord] = (),
        search_results: Sequence[AnalysisRecord] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.records = list(records)
        self.search_results = list(search_results) if search_results is not None else None
        self.error = error
        self.searches: list[tuple[str, int]] = []

    async def get_all_history(self) -> list[AnalysisRecord]:
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def search_history(
        self,
        sql: str,
        limit: int = 10,
        date_from: str | None = None,
    ) -> list[AnalysisRecord]:
        self.searches.append((sql, limit))
        if self.error is not None:
            raise self.error
        if self.search_results is not None:
            return self.search_results[:limit]
        return [record for record in self.records if sql.lower() in record.sql.lower()][:limit]

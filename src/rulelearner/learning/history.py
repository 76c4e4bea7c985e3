"""Historical analysis mining.

The history collaborator owns analysis records; this module only reads
them. ``HistoryAnalyzer`` filters the history down to trustworthy records
and groups them into recurring patterns worth learning rules from.
"""

from __future__ import annotations

import json
import tempfile
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from rulelearner.core.logging import get_logger
from rulelearner.core.models import AnalysisIssue, AnalysisRecord, Category, Severity
from rulelearner.learning.normalizer import normalize_sql_pattern

_logger = get_logger("history")

CATEGORY_WEIGHTS: dict[Category, int] = {
    Category.SECURITY: 3,
    Category.PERFORMANCE: 2,
    Category.STANDARDS: 1,
}

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.INFO: 1,
}


@runtime_checkable
class HistoryProvider(Protocol):
    """Read-only access to past SQL analyses."""

    async def get_all_history(self) -> list[AnalysisRecord]:
        ...

    async def search_history(
        self,
        sql: str,
        limit: int = 10,
        date_from: str | None = None,
    ) -> list[AnalysisRecord]:
        ...


class JsonHistoryStore:
    """History provider backed by a JSON array on disk.

    Search is a case-insensitive substring match on the SQL text, newest
    records first.
    """

    def __init__(self, store_path: Path) -> None:
        self.store_path = store_path
        self._records: list[AnalysisRecord] | None = None

    async def _load(self) -> list[AnalysisRecord]:
        if self._records is None:
            if not self.store_path.exists():
                self._records = []
            else:
                with open(self.store_path, encoding="utf-8") as f:
                    data = json.load(f)
                self._records = [AnalysisRecord.from_dict(item) for item in data]
                _logger.debug("history_loaded", records=len(self._records))
        return self._records

    async def get_all_history(self) -> list[AnalysisRecord]:
        return list(await self._load())

    async def search_history(
        self,
        sql: str,
        limit: int = 10,
        date_from: str | None = None,
    ) -> list[AnalysisRecord]:
        needle = sql.strip().lower()
        matches = [
            record
            for record in await self._load()
            if needle in record.sql.lower()
            and (date_from is None or record.timestamp >= date_from)
        ]
        matches.sort(key=lambda record: record.timestamp, reverse=True)
        return matches[:limit]

    async def append(self, record: AnalysisRecord) -> None:
        """Add a record and persist the store atomically."""
        records = await self._load()
        records.append(record)

        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.store_path.parent,
                suffix=".tmp",
                delete=False,
            ) as f:
                temp_path = Path(f.name)
                json.dump([r.to_dict() for r in records], f, ensure_ascii=False, indent=2)
            temp_path.replace(self.store_path)
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)


@dataclass
class HighFrequencyPattern:
    """An issue signature that recurs across the history."""

    category: Category
    type: str
    severity: Severity
    frequency: int
    priority: int
    examples: list[AnalysisIssue] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.category.value}-{self.type}-{self.severity.value}"


def calculate_average_confidence(record: AnalysisRecord) -> float:
    """Mean confidence over the dimensions that report one, else 0."""
    values = [
        dimension.confidence
        for _, dimension in record.dimensions()
        if dimension.confidence is not None
    ]
    if not values:
        return 0.0
    return sum(values) / len(values)


class HistoryAnalyzer:
    """Filters and groups historical analyses into learnable patterns."""

    def __init__(self, history: HistoryProvider, max_records: int = 50) -> None:
        """Initialize the analyzer.

        Args:
            history: The history collaborator.
            max_records: Upper bound on records returned by get_quality_history.
        """
        self.history = history
        self.max_records = max_records

    async def get_quality_history(self, min_confidence: float = 0.7) -> list[AnalysisRecord]:
        """Return successful, confident, non-empty records that report issues.

        Records are returned newest first, capped at ``max_records``.
        """
        records = await self.history.get_all_history()
        quality = [
            record
            for record in records
            if record.success
            and record.sql.strip()
            and record.has_issues
            and calculate_average_confidence(record) >= min_confidence
        ]
        quality.sort(key=lambda record: record.timestamp, reverse=True)
        _logger.info(
            "quality_history_filtered",
            total=len(records),
            kept=len(quality),
            min_confidence=min_confidence,
        )
        return quality[: self.max_records]

    calculate_average_confidence = staticmethod(calculate_average_confidence)

    @staticmethod
    def group_by_sql_pattern(records: list[AnalysisRecord]) -> dict[str, list[AnalysisRecord]]:
        groups: dict[str, list[AnalysisRecord]] = defaultdict(list)
        for record in records:
            groups[normalize_sql_pattern(record.sql)].append(record)
        return dict(groups)

    @staticmethod
    def group_by_issue_type(records: list[AnalysisRecord]) -> dict[str, list[AnalysisRecord]]:
        """Group records by ``category-type``; a record may land in several groups."""
        groups: dict[str, list[AnalysisRecord]] = defaultdict(list)
        for record in records:
            seen: set[str] = set()
            for category, issue in record.issues():
                key = f"{category.value}-{issue.type}"
                if key not in seen:
                    seen.add(key)
                    groups[key].append(record)
        return dict(groups)

    @staticmethod
    def identify_high_frequency_patterns(
        records: list[AnalysisRecord],
        min_frequency: int = 3,
    ) -> list[HighFrequencyPattern]:
        """Find recurring (category, type, severity) triples, highest priority first.

        priority = category weight x severity weight x frequency.
        """
        counts: Counter[tuple[Category, str, Severity]] = Counter()
        examples: dict[tuple[Category, str, Severity], list[AnalysisIssue]] = defaultdict(list)
        for record in records:
            for category, issue in record.issues():
                key = (category, issue.type, issue.severity)
                counts[key] += 1
                if len(examples[key]) < 3:
                    examples[key].append(issue)

        patterns = [
            HighFrequencyPattern(
                category=category,
                type=issue_type,
                severity=severity,
                frequency=frequency,
                priority=CATEGORY_WEIGHTS.get(category, 1)
                * SEVERITY_WEIGHTS.get(severity, 1)
                * frequency,
                examples=examples[(category, issue_type, severity)],
            )
            for (category, issue_type, severity), frequency in counts.items()
            if frequency >= min_frequency
        ]
        patterns.sort(key=lambda pattern: pattern.priority, reverse=True)
        return patterns

    @staticmethod
    def analyze_learning_trends(records: list[AnalysisRecord]) -> dict[str, Any]:
        """Summarize record volume, confidence and issue mix per day."""
        per_day: dict[str, list[float]] = defaultdict(list)
        categories: Counter[str] = Counter()
        for record in records:
            per_day[record.timestamp[:10]].append(calculate_average_confidence(record))
            for category, _ in record.issues():
                categories[category.value] += 1

        daily = [
            {
                "date": day,
                "records": len(confidences),
                "avg_confidence": round(sum(confidences) / len(confidences), 4),
            }
            for day, confidences in sorted(per_day.items())
        ]
        return {
            "daily": daily,
            "category_distribution": dict(categories),
            "total_records": len(records),
        }

    def get_learning_recommendations(self, records: list[AnalysisRecord]) -> list[str]:
        recommendations: list[str] = []
        if len(records) < 5:
            recommendations.append(
                f"Only {len(records)} quality records available; "
                "collect more analyses before batch learning."
            )

        for pattern in self.identify_high_frequency_patterns(records, min_frequency=2)[:5]:
            recommendations.append(
                f"Learn a {pattern.category.value} rule for '{pattern.type}' "
                f"({pattern.frequency} occurrences, severity {pattern.severity.value}, "
                f"priority {pattern.priority})."
            )

        repeated = [
            key for key, group in self.group_by_sql_pattern(records).items() if len(group) >= 2
        ]
        if repeated:
            recommendations.append(
                f"{len(repeated)} SQL patterns recur and are ready for batch learning."
            )
        return recommendations

    async def export_analysis_report(self, min_confidence: float = 0.7) -> dict[str, Any]:
        """Build a serializable report of the learnable history."""
        records = await self.get_quality_history(min_confidence)
        patterns = self.identify_high_frequency_patterns(records)
        return {
            "min_confidence": min_confidence,
            "quality_records": len(records),
            "sql_patterns": {
                key: len(group) for key, group in self.group_by_sql_pattern(records).items()
            },
            "issue_types": {
                key: len(group) for key, group in self.group_by_issue_type(records).items()
            },
            "high_frequency_patterns": [
                {
                    "key": pattern.key,
                    "frequency": pattern.frequency,
                    "priority": pattern.priority,
                }
                for pattern in patterns
            ],
            "trends": self.analyze_learning_trends(records),
            "recommendations": self.get_learning_recommendations(records),
        }

"""Core data models for rule learning.

Analysis records come from the history collaborator and are read-only.
Candidate rules are created by the generator and gain an evaluation and
an approval decision as they move through the pipeline.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Rule category; the discriminant of a CandidateRule."""

    PERFORMANCE = "performance"
    SECURITY = "security"
    STANDARDS = "standards"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    MANUAL_REVIEW = "manual_review"
    REJECT = "reject"


class DuplicateType(str, Enum):
    EXACT = "exact"
    HIGH_SIMILARITY = "high_similarity"
    NONE = "none"


# Localized labels emitted by upstream analyzers
_CATEGORY_ALIASES: dict[str, Category] = {
    "performance": Category.PERFORMANCE,
    "性能": Category.PERFORMANCE,
    "security": Category.SECURITY,
    "安全": Category.SECURITY,
    "standards": Category.STANDARDS,
    "standard": Category.STANDARDS,
    "规范": Category.STANDARDS,
}

_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "严重": Severity.CRITICAL,
    "high": Severity.HIGH,
    "高": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "中": Severity.MEDIUM,
    "low": Severity.LOW,
    "低": Severity.LOW,
    "info": Severity.INFO,
    "提示": Severity.INFO,
}

# Key under which each dimension lists its findings
ISSUE_FIELDS: dict[Category, str] = {
    Category.PERFORMANCE: "issues",
    Category.SECURITY: "vulnerabilities",
    Category.STANDARDS: "violations",
}


def coerce_category(value: Any) -> Category | None:
    """Map a raw category label to a Category, or None if unknown."""
    if isinstance(value, Category):
        return value
    if not isinstance(value, str):
        return None
    return _CATEGORY_ALIASES.get(value.strip().lower())


def coerce_severity(value: Any, default: Severity = Severity.MEDIUM) -> Severity:
    """Map a raw severity label to a Severity, falling back to ``default``."""
    if isinstance(value, Severity):
        return value
    if not isinstance(value, str):
        return default
    return _SEVERITY_ALIASES.get(value.strip().lower(), default)


def short_id() -> str:
    return uuid.uuid4().hex[:8]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(value)


# ─── Analysis history ──────────────────────────────────────────────────


@dataclass(frozen=True)
class AnalysisIssue:
    """One finding reported by an analysis dimension."""

    type: str
    """Issue signature, e.g. ``select_star`` or ``sql_injection``."""

    severity: Severity = Severity.MEDIUM
    description: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> AnalysisIssue | None:
        if isinstance(raw, str):
            text = raw.strip()
            return cls(type=text, description=text) if text else None
        if not isinstance(raw, Mapping):
            return None
        issue_type = str(raw.get("type") or raw.get("title") or "").strip()
        description = str(raw.get("description") or "").strip()
        if not issue_type and not description:
            return None
        return cls(
            type=issue_type or "unknown",
            severity=coerce_severity(raw.get("severity") or raw.get("priority")),
            description=description,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class DimensionAnalysis:
    """Result of one analysis dimension (performance, security or standards)."""

    summary: str = ""
    issues: tuple[AnalysisIssue, ...] = ()
    confidence: float | None = None
    """Analyzer confidence in [0, 1], or None when not reported."""

    @classmethod
    def from_dict(cls, category: Category, raw: Mapping[str, Any]) -> DimensionAnalysis:
        raw_issues = raw.get(ISSUE_FIELDS[category])
        if raw_issues is None:
            raw_issues = raw.get("issues", [])
        issues = tuple(
            issue
            for issue in (AnalysisIssue.from_raw(item) for item in raw_issues or [])
            if issue is not None
        )
        return cls(
            summary=str(raw.get("summary") or ""),
            issues=issues,
            confidence=_as_float(raw.get("confidence")),
        )

    def to_dict(self, category: Category) -> dict[str, Any]:
        data: dict[str, Any] = {
            "summary": self.summary,
            ISSUE_FIELDS[category]: [issue.to_dict() for issue in self.issues],
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


@dataclass(frozen=True)
class AnalysisRecord:
    """One historical SQL check. Read-only input to the pipeline."""

    sql: str
    database_type: str = "mysql"
    timestamp: str = field(default_factory=utc_now_iso)
    success: bool = True
    analysis: Mapping[Category, DimensionAnalysis] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AnalysisRecord:
        """Build a record from either history shape.

        Accepts the flat form ``{"analysis": {"performance": {...}}}`` and
        the wrapped form ``{"result": {"success": ..., "data": {"performance":
        {"data": {...}}}}}``.
        """
        success = bool(data.get("success", True))
        analysis = data.get("analysis")
        if analysis is None:
            result = data.get("result") or {}
            success = bool(result.get("success", success))
            analysis = result.get("data") or {}
        if not isinstance(analysis, Mapping):
            analysis = {}

        dimensions: dict[Category, DimensionAnalysis] = {}
        for category in Category:
            raw = analysis.get(category.value)
            if not isinstance(raw, Mapping):
                continue
            inner = raw.get("data")
            if isinstance(inner, Mapping):
                raw = inner
            dimensions[category] = DimensionAnalysis.from_dict(category, raw)

        return cls(
            sql=str(data.get("sql") or ""),
            database_type=str(data.get("databaseType") or data.get("database_type") or "mysql"),
            timestamp=str(data.get("timestamp") or utc_now_iso()),
            success=success,
            analysis=dimensions,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sql": self.sql,
            "databaseType": self.database_type,
            "timestamp": self.timestamp,
            "success": self.success,
            "analysis": {
                category.value: dimension.to_dict(category)
                for category, dimension in self.analysis.items()
            },
        }

    def dimensions(self) -> Iterator[tuple[Category, DimensionAnalysis]]:
        for category in Category:
            dimension = self.analysis.get(category)
            if dimension is not None:
                yield category, dimension

    def issues(self) -> list[tuple[Category, AnalysisIssue]]:
        """All issues across dimensions, tagged with their category."""
        return [
            (category, issue)
            for category, dimension in self.dimensions()
            for issue in dimension.issues
        ]

    @property
    def has_issues(self) -> bool:
        return any(dimension.issues for _, dimension in self.dimensions())


@dataclass
class LearningContext:
    """Everything the generator needs for one learning attempt. Not persisted."""

    sql: str
    database_type: str
    analysis: Mapping[Category, DimensionAnalysis]
    patterns: dict[Category, list[AnalysisIssue]] = field(default_factory=dict)
    similar_records: list[AnalysisRecord] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_record(
        cls,
        record: AnalysisRecord,
        similar_records: list[AnalysisRecord] | None = None,
    ) -> LearningContext:
        patterns: dict[Category, list[AnalysisIssue]] = {category: [] for category in Category}
        for category, issue in record.issues():
            patterns[category].append(issue)
        return cls(
            sql=record.sql,
            database_type=record.database_type,
            analysis=record.analysis,
            patterns=patterns,
            similar_records=list(similar_records or []),
        )

    def all_patterns(self) -> list[tuple[Category, AnalysisIssue]]:
        return [
            (category, issue)
            for category in Category
            for issue in self.patterns.get(category, [])
        ]


# ─── Rules and their evaluation ─────────────────────────────────────────


@dataclass
class ValidationResult:
    """Outcome of a deterministic validation pass."""

    passed: bool
    score: int
    issues: list[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class EvaluationResult:
    """Composite quality assessment of a candidate rule.

    Every score defaults to 0 so a partially failed evaluation still
    yields a combined score inside [0, 100].
    """

    basic_score: int = 0
    basic_issues: list[str] = field(default_factory=list)
    llm_score: int = 0
    dimension_scores: dict[str, int] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    combined_score: int = 0
    quality_level: QualityLevel = QualityLevel.POOR
    should_keep: bool = False
    summary: str = ""
    llm_should_keep: bool | None = None
    basic_validation: ValidationResult | None = None
    completeness: ValidationResult | None = None


@dataclass(frozen=True)
class ApprovalDecision:
    action: ApprovalAction
    reason: str


@dataclass(frozen=True)
class DuplicateMatch:
    """An existing rule that resembles a candidate."""

    title: str
    category: Category
    similarity: float
    file_path: str | None = None


@dataclass
class DuplicateResult:
    is_duplicate: bool = False
    similarity: float = 0.0
    matched_rules: list[DuplicateMatch] = field(default_factory=list)
    duplicate_type: DuplicateType = DuplicateType.NONE


@dataclass
class CandidateRule:
    """A generated audit rule awaiting evaluation and approval.

    ``category`` is the discriminant: category-specific policy (such as
    the security severity floor) branches on it.
    """

    title: str
    description: str
    category: Category
    type: str
    severity: Severity
    condition: str = ""
    example: str = ""
    confidence: float = 0.7
    sql_pattern: str | None = None
    id: str = field(default_factory=short_id)
    source: str = "llm"
    """Which generator tier produced the rule: llm, deep_learning or fallback."""

    evaluation: EvaluationResult | None = None
    approval: ApprovalDecision | None = None

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.category.value, self.type.strip().lower(), self.title.strip().lower())

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], source: str = "llm") -> CandidateRule | None:
        """Coerce a loosely shaped rule object into a CandidateRule.

        Returns None when the object lacks a title or description, or when
        its category is not one of the known categories.
        """
        title = str(raw.get("title") or raw.get("name") or "").strip()
        description = str(raw.get("description") or "").strip()
        category = coerce_category(raw.get("category"))
        if not title or not description or category is None:
            return None

        confidence = _as_float(raw.get("confidence"))
        condition = raw.get("condition") or raw.get("sqlPattern") or raw.get("pattern") or ""
        example = raw.get("example") or raw.get("examples") or ""
        if isinstance(example, Mapping):
            example = "\n".join(str(v) for v in example.values() if v)
        elif isinstance(example, list):
            example = "\n".join(str(v) for v in example if v)
        sql_pattern = raw.get("sqlPattern") or raw.get("sql_pattern")

        return cls(
            title=title,
            description=description,
            category=category,
            type=str(raw.get("type") or raw.get("rule_type") or "general").strip(),
            severity=coerce_severity(raw.get("severity") or raw.get("priority")),
            condition=str(condition).strip(),
            example=str(example).strip(),
            confidence=0.7 if confidence is None else confidence,
            sql_pattern=str(sql_pattern).strip() if sql_pattern else None,
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "type": self.type,
            "severity": self.severity.value,
            "condition": self.condition,
            "example": self.example,
            "confidence": self.confidence,
            "sqlPattern": self.sql_pattern,
            "source": self.source,
        }


# ─── Threshold feedback ────────────────────────────────────────────────


@dataclass(frozen=True)
class QualitySample:
    """Outcome of one learning batch, fed to the threshold adjuster."""

    timestamp: str
    total_rules: int
    approved_rules: int
    auto_approve_rate: float
    avg_quality_score: float
    avg_confidence: float

"""Deterministic rule validation.

Validation never raises for a bad rule: problems are reported as issues
and debited from a 0-100 score. Only a request for an unknown validation
level raises, because that is a wiring mistake rather than a data problem.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Mapping
from typing import Any, Literal

from rulelearner.core.errors import ValidationLevelError
from rulelearner.core.models import CandidateRule, Category, Severity, ValidationResult

ValidationLevel = Literal["basic", "complete", "strict"]
VALIDATION_LEVELS: tuple[str, ...] = ("basic", "complete", "strict")

REQUIRED_FIELDS = ("title", "description", "category", "type", "severity")
CONTENT_FIELDS = ("condition", "example")

MIN_LENGTHS = {"title": 5, "description": 20, "condition": 10}
COMPLETE_MIN_LENGTHS = {"title": 10, "description": 30, "condition": 15}

VALID_CATEGORIES = frozenset(category.value for category in Category)
VALID_SEVERITIES = frozenset(severity.value for severity in Severity)

SQL_KEYWORDS = (
    "SELECT", "INSERT", "UPDATE", "DELETE", "CREATE",
    "ALTER", "DROP", "FROM", "WHERE", "JOIN",
)
_SQL_KEYWORD_RE = re.compile(r"\b(" + "|".join(SQL_KEYWORDS) + r")\b", re.IGNORECASE)

RECOMMENDED_MIN_CONFIDENCE = 0.5

MISSING_PENALTY = 20
SHORT_PENALTY = 10
RANGE_PENALTY = 15
ENUM_PENALTY = 15
LOW_CONFIDENCE_PENALTY = 10

COMPLETE_MISSING_PENALTY = 15
NO_SQL_KEYWORD_PENALTY = 15
COMPLETE_CONFIDENCE_PENALTY = 20

RuleLike = CandidateRule | Mapping[str, Any]


def _fields(rule: RuleLike) -> Mapping[str, Any]:
    if isinstance(rule, CandidateRule):
        return rule.to_dict()
    return rule


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _text(value: Any) -> str:
    if hasattr(value, "value"):
        value = value.value
    return "" if value is None else str(value).strip()


class RuleValidator:
    """Structural and semantic checks on candidate rules."""

    def __init__(
        self,
        completeness_confidence: float = 0.7,
        security_min_severity: Literal["medium", "high"] = "medium",
    ) -> None:
        """Initialize the validator.

        Args:
            completeness_confidence: Confidence required by completeness validation.
            security_min_severity: Lowest severity accepted for security rules.
        """
        self.completeness_confidence = completeness_confidence
        self.security_min_severity = security_min_severity

    def perform_basic_validation(self, rule: RuleLike) -> ValidationResult:
        """Check required fields, lengths, ranges and enumerations.

        Missing fields, invalid enum values and out-of-range confidence are
        blocking and fail the validation. Short fields, low confidence and
        missing condition or example text only lower the score.
        """
        fields = _fields(rule)
        issues: list[str] = []
        score = 100
        blocking = False

        for name in REQUIRED_FIELDS:
            if _is_missing(fields.get(name)):
                issues.append(f"Missing required field: {name}")
                score -= MISSING_PENALTY
                blocking = True

        for name in CONTENT_FIELDS:
            if _is_missing(fields.get(name)):
                issues.append(f"Missing {name} text")
                score -= MISSING_PENALTY

        for name, minimum in MIN_LENGTHS.items():
            value = fields.get(name)
            if not _is_missing(value) and len(_text(value)) < minimum:
                issues.append(f"Field '{name}' is shorter than {minimum} characters")
                score -= SHORT_PENALTY

        confidence = fields.get("confidence")
        if confidence is None:
            issues.append("Missing required field: confidence")
            score -= MISSING_PENALTY
            blocking = True
        elif (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or math.isnan(confidence)
        ):
            issues.append(f"Confidence is not a number: {confidence!r}")
            score -= RANGE_PENALTY
            blocking = True
        elif not 0.0 <= confidence <= 1.0:
            issues.append(f"Confidence {confidence} is outside [0, 1]")
            score -= RANGE_PENALTY
            blocking = True
        elif confidence < RECOMMENDED_MIN_CONFIDENCE:
            issues.append(
                f"Confidence {confidence} is below the recommended {RECOMMENDED_MIN_CONFIDENCE}"
            )
            score -= LOW_CONFIDENCE_PENALTY

        category = fields.get("category")
        if not _is_missing(category) and _text(category) not in VALID_CATEGORIES:
            issues.append(f"Invalid category: {_text(category)}")
            score -= ENUM_PENALTY
            blocking = True

        severity = fields.get("severity")
        if not _is_missing(severity) and _text(severity) not in VALID_SEVERITIES:
            issues.append(f"Invalid severity: {_text(severity)}")
            score -= ENUM_PENALTY
            blocking = True

        passed = not blocking
        return ValidationResult(
            passed=passed,
            score=max(0, score),
            issues=issues,
            reason="Basic validation passed" if passed else "; ".join(issues),
        )

    def perform_completeness_validation(self, rule: RuleLike) -> ValidationResult:
        """Apply the stricter checks a publishable rule must satisfy."""
        fields = _fields(rule)
        issues: list[str] = []
        score = 100

        for name, minimum in COMPLETE_MIN_LENGTHS.items():
            value = fields.get(name)
            if _is_missing(value):
                issues.append(f"Missing {name}")
                score -= COMPLETE_MISSING_PENALTY
            elif len(_text(value)) < minimum:
                issues.append(f"Field '{name}' needs at least {minimum} characters")
                score -= SHORT_PENALTY

        example = fields.get("example")
        if _is_missing(example):
            issues.append("Missing example")
            score -= COMPLETE_MISSING_PENALTY
        elif not _SQL_KEYWORD_RE.search(_text(example)):
            issues.append("Example does not contain any SQL keyword")
            score -= NO_SQL_KEYWORD_PENALTY

        confidence = fields.get("confidence")
        if (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or math.isnan(confidence)
            or confidence < self.completeness_confidence
        ):
            issues.append(
                f"Confidence {confidence} is below the completeness threshold "
                f"{self.completeness_confidence}"
            )
            score -= COMPLETE_CONFIDENCE_PENALTY

        passed = not issues
        return ValidationResult(
            passed=passed,
            score=max(0, score),
            issues=issues,
            reason="Rule is complete" if passed else "; ".join(issues),
        )

    def validate_security_rule(self, rule: RuleLike) -> ValidationResult:
        """Require an adequate severity on security rules; others pass."""
        fields = _fields(rule)
        if _text(fields.get("category")) != Category.SECURITY.value:
            return ValidationResult(passed=True, score=100, reason="Not a security rule")

        allowed = {Severity.CRITICAL.value, Severity.HIGH.value}
        if self.security_min_severity == "medium":
            allowed.add(Severity.MEDIUM.value)

        severity = _text(fields.get("severity"))
        if severity in allowed:
            return ValidationResult(passed=True, score=100, reason="Security severity adequate")
        issue = f"Security rule severity '{severity}' is below {self.security_min_severity}"
        return ValidationResult(passed=False, score=0, issues=[issue], reason=issue)

    def validate(self, rule: RuleLike, level: str = "basic") -> ValidationResult:
        """Validate at ``basic``, ``complete`` or ``strict`` level.

        Raises:
            ValidationLevelError: If ``level`` is not a known level.
        """
        if level not in VALIDATION_LEVELS:
            raise ValidationLevelError(
                f"Unknown validation level '{level}'; expected one of {VALIDATION_LEVELS}"
            )

        results = [self.perform_basic_validation(rule)]
        if level in ("complete", "strict"):
            results.append(self.perform_completeness_validation(rule))
        if level == "strict":
            results.append(self.validate_security_rule(rule))

        if len(results) == 1:
            return results[0]
        issues = [issue for result in results for issue in result.issues]
        passed = all(result.passed for result in results)
        return ValidationResult(
            passed=passed,
            score=min(result.score for result in results),
            issues=issues,
            reason=f"{level} validation passed" if passed else "; ".join(issues),
        )

    def validate_batch(self, rules: list[RuleLike], level: str = "basic") -> list[ValidationResult]:
        return [self.validate(rule, level) for rule in rules]

    @staticmethod
    def get_validation_stats(results: list[ValidationResult]) -> dict[str, Any]:
        if not results:
            return {"total": 0, "passed": 0, "failed": 0, "pass_rate": 0.0,
                    "average_score": 0.0, "common_issues": []}
        passed = sum(1 for result in results if result.passed)
        issue_counts = Counter(issue for result in results for issue in result.issues)
        return {
            "total": len(results),
            "passed": passed,
            "failed": len(results) - passed,
            "pass_rate": round(passed / len(results), 4),
            "average_score": round(sum(result.score for result in results) / len(results), 2),
            "common_issues": issue_counts.most_common(5),
        }

"""Composite quality evaluation of candidate rules.

A rule's quality combines the deterministic basic-validation score with a
rubric score from the text-generation collaborator:

    combined = round(basic * 0.3 + llm * 0.7), clamped to [0, 100]

An unavailable or unparseable rubric reply is replaced by a neutral score
of 50 so evaluation always completes.
"""

from __future__ import annotations

import base64
import math
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from rulelearner.backends.base import TextGenerator, generate_with_timeout
from rulelearner.core.config import EvaluationConfig
from rulelearner.core.logging import get_logger
from rulelearner.core.models import (
    CandidateRule,
    EvaluationResult,
    LearningContext,
    QualityLevel,
)
from rulelearner.learning.json_extract import extract_json
from rulelearner.learning.monitor import LearningMonitor
from rulelearner.learning.validator import RuleValidator
from rulelearner.prompts import PromptBuilder

_logger = get_logger("evaluator")

NEUTRAL_SCORE = 50
MAX_BASIC_ISSUES_TO_KEEP = 3
RUBRIC_DIMENSIONS = ("accuracy", "completeness", "practicality", "generality", "consistency")


@dataclass
class RubricAssessment:
    """Parsed reply to the evaluation rubric prompt."""

    score: int = NEUTRAL_SCORE
    level: QualityLevel = QualityLevel.FAIR
    dimension_scores: dict[str, int] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    should_keep: bool | None = None
    summary: str = ""
    neutral: bool = False


def _clamp_score(value: float) -> int:
    return int(min(100, max(0, math.floor(value + 0.5))))


def _score_value(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return None
    return _clamp_score(value)


def quality_level_for(score: int) -> QualityLevel:
    if score >= 90:
        return QualityLevel.EXCELLENT
    if score >= 70:
        return QualityLevel.GOOD
    if score >= 50:
        return QualityLevel.FAIR
    return QualityLevel.POOR


def combine_scores(basic_score: float, llm_score: float, basic_weight: float = 0.3,
                   llm_weight: float = 0.7) -> int:
    """Weighted composite score, rounded half up and clamped to [0, 100]."""
    basic = basic_score if math.isfinite(basic_score) else 0.0
    llm = llm_score if math.isfinite(llm_score) else 0.0
    return _clamp_score(basic * basic_weight + llm * llm_weight)


def neutral_assessment(reason: str) -> RubricAssessment:
    return RubricAssessment(
        score=NEUTRAL_SCORE,
        level=QualityLevel.FAIR,
        summary=f"Rubric evaluation unavailable ({reason}); neutral score used",
        neutral=True,
    )


def parse_rubric_reply(content: str) -> RubricAssessment:
    """Parse a rubric reply, returning the neutral assessment on any problem."""
    parsed = extract_json(content)
    if not parsed.ok or not isinstance(parsed.value, Mapping):
        return neutral_assessment(parsed.reason or "reply is not an object")
    data = parsed.value

    raw_dimensions = data.get("dimensionScores") or data.get("dimension_scores") or {}
    dimension_scores: dict[str, int] = {}
    if isinstance(raw_dimensions, Mapping):
        for name, value in raw_dimensions.items():
            score = _score_value(value)
            if score is not None:
                dimension_scores[str(name)] = score

    score = None
    for key in ("score", "qualityScore", "overallScore"):
        score = _score_value(data.get(key))
        if score is not None:
            break
    if score is None and dimension_scores:
        score = _clamp_score(sum(dimension_scores.values()) / len(dimension_scores))
    if score is None:
        return neutral_assessment("reply has no score")

    should_keep = data.get("shouldKeep", data.get("should_keep"))
    return RubricAssessment(
        score=score,
        level=quality_level_for(score),
        dimension_scores=dimension_scores,
        strengths=[str(item) for item in data.get("strengths") or [] if item],
        issues=[str(item) for item in data.get("issues") or [] if item],
        should_keep=should_keep if isinstance(should_keep, bool) else None,
        summary=str(data.get("summary") or data.get("evaluationSummary") or ""),
    )


class QualityEvaluator:
    """Scores candidate rules and decides whether they are worth keeping."""

    def __init__(
        self,
        generator: TextGenerator,
        validator: RuleValidator | None = None,
        config: EvaluationConfig | None = None,
        prompts: PromptBuilder | None = None,
        timeout_seconds: float = 60.0,
        monitor: LearningMonitor | None = None,
    ) -> None:
        self.generator = generator
        self.config = config or EvaluationConfig()
        self.validator = validator or RuleValidator(
            completeness_confidence=self.config.completeness_confidence,
            security_min_severity=self.config.security_min_severity,
        )
        self.prompts = prompts or PromptBuilder()
        self.timeout_seconds = timeout_seconds
        self.monitor = monitor
        self._cache: dict[str, EvaluationResult] = {}
        self._cache_hits = 0
        self._cache_misses = 0

    @staticmethod
    def cache_key(rule: CandidateRule) -> str:
        raw = f"{rule.title}-{rule.type}-{rule.category.value}-{rule.description[:50]}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    async def evaluate(self, rule: CandidateRule, context: LearningContext) -> EvaluationResult:
        """Evaluate a rule and attach the result to ``rule.evaluation``."""
        key = self.cache_key(rule)
        if self.config.enable_caching and key in self._cache:
            self._cache_hits += 1
            if self.monitor is not None:
                self.monitor.record_cache_hit()
            rule.evaluation = self._cache[key]
            return rule.evaluation
        self._cache_misses += 1
        if self.monitor is not None:
            self.monitor.record_cache_miss()

        basic = self.validator.perform_basic_validation(rule)
        completeness = self.validator.perform_completeness_validation(rule)

        if not basic.passed:
            result = EvaluationResult(
                basic_score=basic.score,
                basic_issues=list(basic.issues),
                llm_score=0,
                combined_score=combine_scores(
                    basic.score, 0, self.config.basic_weight, self.config.llm_weight
                ),
                quality_level=QualityLevel.POOR,
                should_keep=False,
                summary=f"Basic validation failed: {basic.reason}",
                basic_validation=basic,
                completeness=completeness,
            )
        else:
            assessment = await self._assess(rule, context)
            combined = combine_scores(
                basic.score, assessment.score, self.config.basic_weight, self.config.llm_weight
            )
            result = EvaluationResult(
                basic_score=basic.score,
                basic_issues=list(basic.issues),
                llm_score=assessment.score,
                dimension_scores=assessment.dimension_scores,
                strengths=assessment.strengths,
                issues=assessment.issues,
                combined_score=combined,
                quality_level=quality_level_for(combined),
                should_keep=(
                    combined >= self.config.keep_threshold
                    and assessment.should_keep is not False
                    and len(basic.issues) < MAX_BASIC_ISSUES_TO_KEEP
                ),
                summary=assessment.summary,
                llm_should_keep=assessment.should_keep,
                basic_validation=basic,
                completeness=completeness,
            )

        _logger.debug(
            "rule_evaluated",
            title=rule.title,
            combined_score=result.combined_score,
            quality_level=result.quality_level.value,
            should_keep=result.should_keep,
        )
        if self.config.enable_caching:
            self._cache[key] = result
        rule.evaluation = result
        return result

    async def _assess(self, rule: CandidateRule, context: LearningContext) -> RubricAssessment:
        prompt = self.prompts.build_evaluation_prompt(rule, context)
        reply = await generate_with_timeout(self.generator, prompt, self.timeout_seconds)
        if self.monitor is not None:
            self.monitor.record_llm_call(reply.duration_seconds, reply.success)
        if not reply.success:
            return neutral_assessment(reply.error_type or "generation failed")
        assessment = parse_rubric_reply(reply.content)
        if assessment.neutral:
            _logger.warning("rubric_reply_unparseable", title=rule.title)
        return assessment

    async def evaluate_batch(
        self,
        rules: list[CandidateRule],
        context: LearningContext,
    ) -> list[EvaluationResult]:
        return [await self.evaluate(rule, context) for rule in rules]

    @staticmethod
    def generate_quality_report(results: list[EvaluationResult]) -> dict[str, Any]:
        """Aggregate a list of evaluations into a summary report."""
        if not results:
            return {"total": 0, "average_score": 0.0, "levels": {}, "kept": 0,
                    "common_issues": []}
        levels = Counter(result.quality_level.value for result in results)
        issues = Counter(
            issue for result in results for issue in (*result.basic_issues, *result.issues)
        )
        return {
            "total": len(results),
            "average_score": round(
                sum(result.combined_score for result in results) / len(results), 2
            ),
            "levels": dict(levels),
            "kept": sum(1 for result in results if result.should_keep),
            "common_issues": issues.most_common(5),
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        self._cache_hits = 0
        self._cache_misses = 0

    def get_cache_stats(self) -> dict[str, Any]:
        lookups = self._cache_hits + self._cache_misses
        return {
            "size": len(self._cache),
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
        }

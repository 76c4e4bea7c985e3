"""Tests for composite quality evaluation."""

import math

import pytest

from rulelearner.backends.base import GenerationResult
from rulelearner.core.config import EvaluationConfig
from rulelearner.core.models import LearningContext, QualityLevel
from rulelearner.learning.evaluator import (
    NEUTRAL_SCORE,
    QualityEvaluator,
    combine_scores,
    parse_rubric_reply,
    quality_level_for,
)
from rulelearner.learning.monitor import LearningMonitor

from tests.helpers import FakeTextGenerator, make_rule, rubric_reply


# ─── Scoring helpers ────────────────────────────────────────────────────


class TestCombineScores:
    def test_weighted_sum(self) -> None:
        assert combine_scores(100, 80) == 86

    def test_rounds_half_up(self) -> None:
        assert combine_scores(3, 0, basic_weight=0.5, llm_weight=0.5) == 2
        assert combine_scores(1, 0, basic_weight=0.5, llm_weight=0.5) == 1

    @pytest.mark.parametrize(
        ("basic", "llm"),
        [(0, 0), (100, 100), (-50, 500), (math.nan, 80), (80, math.inf), (1e9, -1e9)],
    )
    def test_always_within_bounds(self, basic: float, llm: float) -> None:
        assert 0 <= combine_scores(basic, llm) <= 100


@pytest.mark.parametrize(
    ("score", "level"),
    [
        (100, QualityLevel.EXCELLENT),
        (90, QualityLevel.EXCELLENT),
        (89, QualityLevel.GOOD),
        (70, QualityLevel.GOOD),
        (69, QualityLevel.FAIR),
        (50, QualityLevel.FAIR),
        (49, QualityLevel.POOR),
        (0, QualityLevel.POOR),
    ],
)
def test_quality_level_boundaries(score: int, level: QualityLevel) -> None:
    assert quality_level_for(score) is level


class TestParseRubricReply:
    def test_full_reply(self) -> None:
        assessment = parse_rubric_reply(rubric_reply(score=82))
        assert assessment.score == 82
        assert assessment.level is QualityLevel.GOOD
        assert assessment.dimension_scores["accuracy"] == 82
        assert assessment.should_keep is True
        assert assessment.strengths == ["clear condition"]
        assert not assessment.neutral

    def test_fenced_reply_with_alternate_score_key(self) -> None:
        assessment = parse_rubric_reply('```json\n{"qualityScore": 91.6}\n```')
        assert assessment.score == 92
        assert assessment.level is QualityLevel.EXCELLENT

    def test_score_derived_from_dimensions(self) -> None:
        assessment = parse_rubric_reply('{"dimensionScores": {"accuracy": 70, "generality": 81}}')
        assert assessment.score == 76

    def test_non_boolean_should_keep_is_ignored(self) -> None:
        assert parse_rubric_reply('{"score": 80, "shouldKeep": "yes"}').should_keep is None

    @pytest.mark.parametrize("content", ["garbage", '{"summary": "no score"}', "[1, 2]"])
    def test_unusable_reply_is_neutral(self, content: str) -> None:
        assessment = parse_rubric_reply(content)
        assert assessment.neutral
        assert assessment.score == NEUTRAL_SCORE
        assert assessment.level is QualityLevel.FAIR


# ─── QualityEvaluator ───────────────────────────────────────────────────


class TestQualityEvaluator:
    @pytest.mark.asyncio
    async def test_good_rule(self, select_star_context: LearningContext) -> None:
        evaluator = QualityEvaluator(FakeTextGenerator([rubric_reply(score=80)]))
        rule = make_rule()
        result = await evaluator.evaluate(rule, select_star_context)

        assert result.basic_score == 100
        assert result.llm_score == 80
        assert result.combined_score == 86
        assert result.quality_level is QualityLevel.GOOD
        assert result.should_keep
        assert result.basic_validation is not None and result.basic_validation.passed
        assert result.completeness is not None and result.completeness.passed
        assert rule.evaluation is result

    @pytest.mark.asyncio
    async def test_generator_failure_uses_neutral_score(
        self, select_star_context: LearningContext,
    ) -> None:
        failure = GenerationResult(success=False, error="boom", error_type="connection")
        evaluator = QualityEvaluator(FakeTextGenerator([failure]))
        result = await evaluator.evaluate(make_rule(), select_star_context)

        assert result.llm_score == NEUTRAL_SCORE
        assert result.combined_score == 65
        assert result.quality_level is QualityLevel.FAIR
        assert result.should_keep
        assert "neutral" in result.summary

    @pytest.mark.asyncio
    async def test_basic_failure_short_circuits(
        self, select_star_context: LearningContext,
    ) -> None:
        fake = FakeTextGenerator([rubric_reply(score=100)])
        evaluator = QualityEvaluator(fake)
        result = await evaluator.evaluate(
            make_rule(description="", condition=""), select_star_context,
        )

        assert fake.prompts == []
        assert result.llm_score == 0
        assert result.combined_score == 18
        assert result.quality_level is QualityLevel.POOR
        assert not result.should_keep

    @pytest.mark.asyncio
    async def test_model_can_veto_keeping(self, select_star_context: LearningContext) -> None:
        evaluator = QualityEvaluator(FakeTextGenerator([rubric_reply(score=90, should_keep=False)]))
        result = await evaluator.evaluate(make_rule(), select_star_context)
        assert result.combined_score == 93
        assert not result.should_keep
        assert result.llm_should_keep is False

    @pytest.mark.asyncio
    async def test_low_combined_score_not_kept(
        self, select_star_context: LearningContext,
    ) -> None:
        evaluator = QualityEvaluator(FakeTextGenerator([rubric_reply(score=20)]))
        result = await evaluator.evaluate(make_rule(), select_star_context)
        assert result.combined_score == 44
        assert not result.should_keep

    @pytest.mark.asyncio
    async def test_cache_reuses_result(self, select_star_context: LearningContext) -> None:
        monitor = LearningMonitor()
        fake = FakeTextGenerator([rubric_reply(score=80), rubric_reply(score=10)])
        evaluator = QualityEvaluator(fake, monitor=monitor)
        first = await evaluator.evaluate(make_rule(), select_star_context)
        second = await evaluator.evaluate(make_rule(), select_star_context)

        assert second is first
        assert len(fake.prompts) == 1
        assert evaluator.get_cache_stats() == {
            "size": 1, "hits": 1, "misses": 1, "hit_rate": 0.5,
        }
        assert monitor.totals.cache_hits == 1

        evaluator.clear_cache()
        assert evaluator.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_cache_can_be_disabled(self, select_star_context: LearningContext) -> None:
        fake = FakeTextGenerator([rubric_reply(score=80), rubric_reply(score=80)])
        evaluator = QualityEvaluator(fake, config=EvaluationConfig(enable_caching=False))
        await evaluator.evaluate(make_rule(), select_star_context)
        await evaluator.evaluate(make_rule(), select_star_context)
        assert len(fake.prompts) == 2

    @pytest.mark.asyncio
    async def test_quality_report(self, select_star_context: LearningContext) -> None:
        evaluator = QualityEvaluator(FakeTextGenerator([rubric_reply(score=80)]))
        results = await evaluator.evaluate_batch(
            [make_rule(), make_rule(title="Another rule about SELECT *", description="")],
            select_star_context,
        )
        report = QualityEvaluator.generate_quality_report(results)

        assert report["total"] == 2
        assert report["kept"] == 1
        assert report["levels"] == {"good": 1, "poor": 1}
        assert QualityEvaluator.generate_quality_report([])["total"] == 0

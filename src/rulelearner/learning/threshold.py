"""Feedback control of the auto-approval confidence threshold.

Each learning batch contributes one ``QualitySample``. Once enough samples
exist, the recent auto-approve rate is compared with the target:

- well below target: lower the threshold by one step
- well above target: raise it by one step
- on target but high quality and confidence: lower it by half a step

The threshold never leaves ``[min_threshold, max_threshold]``.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from rulelearner.core.config import ThresholdConfig
from rulelearner.core.logging import get_logger
from rulelearner.core.models import CandidateRule, QualitySample, utc_now_iso

_logger = get_logger("threshold")

LOW_RATE_FACTOR = 0.8
HIGH_RATE_FACTOR = 1.2
HIGH_QUALITY_SCORE = 75.0
HIGH_CONFIDENCE = 0.75


class QualityWindow:
    """Fixed-capacity ring buffer of quality samples, oldest first."""

    def __init__(self, capacity: int = 20) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._samples: deque[QualitySample] = deque(maxlen=capacity)

    def append(self, sample: QualitySample) -> None:
        self._samples.append(sample)

    def recent(self, count: int) -> list[QualitySample]:
        if count <= 0:
            return []
        return list(self._samples)[-count:]

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[QualitySample]:
        return iter(self._samples)


@dataclass
class ThresholdRecommendation:
    new_threshold: float
    adjustment: float
    reason: str
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.adjustment != 0


@dataclass(frozen=True)
class ThresholdAdjustment:
    """One applied change, kept in the adjuster's history."""

    timestamp: str
    old_threshold: float
    new_threshold: float
    reason: str
    metrics: dict[str, Any]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class SmartThresholdAdjuster:
    """Adjusts the approval threshold from the recent approval outcome stream."""

    def __init__(self, config: ThresholdConfig | None = None) -> None:
        self.config = config or ThresholdConfig()
        self.window = QualityWindow(self.config.window_size)
        self._history: list[ThresholdAdjustment] = []

    def record_quality_data(
        self,
        rules: Sequence[CandidateRule],
        approved_rules: Sequence[CandidateRule],
    ) -> QualitySample | None:
        """Append one sample for a processed batch. Empty batches are ignored."""
        if not rules:
            return None
        scores = [rule.evaluation.combined_score for rule in rules if rule.evaluation is not None]
        sample = QualitySample(
            timestamp=utc_now_iso(),
            total_rules=len(rules),
            approved_rules=len(approved_rules),
            auto_approve_rate=len(approved_rules) / len(rules),
            avg_quality_score=_mean(scores),
            avg_confidence=_mean([rule.confidence for rule in rules]),
        )
        self.window.append(sample)
        _logger.debug(
            "quality_sample_recorded",
            total_rules=sample.total_rules,
            approved_rules=sample.approved_rules,
            auto_approve_rate=round(sample.auto_approve_rate, 4),
            window=len(self.window),
        )
        return sample

    def _clamp(self, value: float) -> float:
        bounded = min(self.config.max_threshold, max(self.config.min_threshold, value))
        return round(bounded, 4)

    def recommend(self, current: float) -> ThresholdRecommendation:
        cfg = self.config
        if len(self.window) < cfg.min_samples:
            return ThresholdRecommendation(
                new_threshold=current,
                adjustment=0.0,
                reason=f"Not enough samples ({len(self.window)} < {cfg.min_samples})",
                metrics={"samples": len(self.window)},
            )

        recent = self.window.recent(cfg.averaging_window)
        rate = _mean([sample.auto_approve_rate for sample in recent])
        quality = _mean([sample.avg_quality_score for sample in recent])
        confidence = _mean([sample.avg_confidence for sample in recent])
        metrics = {
            "samples": len(recent),
            "avg_auto_approve_rate": round(rate, 4),
            "avg_quality_score": round(quality, 2),
            "avg_confidence": round(confidence, 4),
            "target_rate": cfg.target_auto_approve_rate,
        }

        if rate < cfg.target_auto_approve_rate * LOW_RATE_FACTOR:
            step = -cfg.adjustment_step
            reason = f"Auto-approve rate {rate:.2%} is below target {cfg.target_auto_approve_rate:.2%}"
        elif rate > cfg.target_auto_approve_rate * HIGH_RATE_FACTOR:
            step = cfg.adjustment_step
            reason = f"Auto-approve rate {rate:.2%} is above target {cfg.target_auto_approve_rate:.2%}"
        elif quality > HIGH_QUALITY_SCORE and confidence > HIGH_CONFIDENCE:
            step = -cfg.adjustment_step / 2
            reason = f"High quality ({quality:.1f}) and confidence ({confidence:.2f})"
        else:
            step = 0.0
            reason = "Auto-approve rate is within the target band"

        new_threshold = self._clamp(current + step)
        return ThresholdRecommendation(
            new_threshold=new_threshold,
            adjustment=round(new_threshold - current, 4),
            reason=reason,
            metrics=metrics,
        )

    def apply_adjustment(self, current: float) -> float:
        """Return the next threshold, recording it when it differs from ``current``."""
        recommendation = self.recommend(current)
        if not recommendation.changed:
            return current
        self._history.append(
            ThresholdAdjustment(
                timestamp=utc_now_iso(),
                old_threshold=current,
                new_threshold=recommendation.new_threshold,
                reason=recommendation.reason,
                metrics=recommendation.metrics,
            )
        )
        _logger.info(
            "threshold_adjusted",
            old_threshold=current,
            new_threshold=recommendation.new_threshold,
            reason=recommendation.reason,
            **recommendation.metrics,
        )
        return recommendation.new_threshold

    def get_adjustment_history(self) -> list[ThresholdAdjustment]:
        return list(self._history)

    def get_quality_stats(self) -> dict[str, Any]:
        samples = list(self.window)
        if not samples:
            return {"samples": 0}
        return {
            "samples": len(samples),
            "total_rules": sum(sample.total_rules for sample in samples),
            "approved_rules": sum(sample.approved_rules for sample in samples),
            "avg_auto_approve_rate": round(_mean([s.auto_approve_rate for s in samples]), 4),
            "avg_quality_score": round(_mean([s.avg_quality_score for s in samples]), 2),
            "avg_confidence": round(_mean([s.avg_confidence for s in samples]), 4),
            "adjustments": len(self._history),
        }

    def reset(self) -> None:
        self.window.clear()
        self._history.clear()

"""Approval policy and persistence of evaluated rules.

``decide`` applies a fixed, ordered policy; the first matching condition
wins. ``process`` runs a whole batch: evaluate, check duplicates, decide,
then write each rule into the directory of its terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rulelearner.core.config import EvaluationConfig
from rulelearner.core.errors import RuleStorageError
from rulelearner.core.logging import get_logger
from rulelearner.core.models import (
    ApprovalAction,
    ApprovalDecision,
    CandidateRule,
    DuplicateResult,
    DuplicateType,
    EvaluationResult,
    LearningContext,
)
from rulelearner.learning.duplicates import RuleDuplicateDetector
from rulelearner.learning.evaluator import QualityEvaluator
from rulelearner.learning.lifecycle import ACTION_STATES, RuleLifecycle, RuleState
from rulelearner.learning.storage import RuleFileStore
from rulelearner.learning.validator import RuleValidator

_logger = get_logger("approver")

MAX_BASIC_ISSUES = 2


@dataclass
class ApprovalStats:
    total_processed: int = 0
    auto_approved: int = 0
    manual_review: int = 0
    rejected: int = 0
    write_failures: int = 0


@dataclass
class ApprovalBatch:
    """Outcome of processing one batch of candidate rules."""

    approved: list[CandidateRule] = field(default_factory=list)
    manual_review: list[CandidateRule] = field(default_factory=list)
    rejected: list[CandidateRule] = field(default_factory=list)
    written: dict[str, Path] = field(default_factory=dict)
    """Rule id -> file written for it."""

    failed: list[str] = field(default_factory=list)
    """Ids of rules whose file could not be written."""

    deduplicated: list[CandidateRule] = field(default_factory=list)
    """Rejected duplicates that were dropped without a file; also in ``rejected``."""

    @property
    def evaluated(self) -> int:
        return len(self.approved) + len(self.manual_review) + len(self.rejected)


class AutoApprover:
    """Routes evaluated rules to approve, manual review or reject."""

    def __init__(
        self,
        evaluator: QualityEvaluator,
        detector: RuleDuplicateDetector,
        store: RuleFileStore,
        validator: RuleValidator | None = None,
        config: EvaluationConfig | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.detector = detector
        self.store = store
        self.config = config or EvaluationConfig()
        self.validator = validator or evaluator.validator
        self.threshold = self.config.auto_approval_confidence
        """Current confidence threshold; updated by the threshold adjuster."""

        self._stats = ApprovalStats()

    @property
    def min_quality_score(self) -> int:
        return self.config.auto_approval_threshold

    def decide(
        self,
        rule: CandidateRule,
        evaluation: EvaluationResult,
        threshold: float,
        duplicate: DuplicateResult,
    ) -> ApprovalDecision:
        """Apply the approval policy. Pure in its four arguments."""
        if not evaluation.should_keep:
            return ApprovalDecision(ApprovalAction.REJECT, "Quality evaluation recommends discarding")

        if evaluation.combined_score < self.min_quality_score:
            return ApprovalDecision(
                ApprovalAction.MANUAL_REVIEW,
                f"Quality score {evaluation.combined_score} is below {self.min_quality_score}",
            )

        if rule.confidence < threshold:
            return ApprovalDecision(
                ApprovalAction.MANUAL_REVIEW,
                f"Confidence {rule.confidence} is below threshold {threshold}",
            )

        if len(evaluation.basic_issues) > MAX_BASIC_ISSUES:
            return ApprovalDecision(
                ApprovalAction.MANUAL_REVIEW,
                f"Too many basic validation issues ({len(evaluation.basic_issues)})",
            )

        completeness = evaluation.completeness or self.validator.perform_completeness_validation(
            rule
        )
        if not completeness.passed:
            return ApprovalDecision(
                ApprovalAction.MANUAL_REVIEW,
                f"Completeness check failed: {completeness.reason}",
            )

        security = self.validator.validate_security_rule(rule)
        if not security.passed:
            return ApprovalDecision(ApprovalAction.MANUAL_REVIEW, security.reason)

        if duplicate.duplicate_type in (DuplicateType.EXACT, DuplicateType.HIGH_SIMILARITY):
            matched = duplicate.matched_rules[0].title if duplicate.matched_rules else "unknown"
            return ApprovalDecision(
                ApprovalAction.REJECT,
                f"Duplicate of existing rule '{matched}' "
                f"({duplicate.duplicate_type.value}, similarity {duplicate.similarity})",
            )

        return ApprovalDecision(ApprovalAction.APPROVE, "Meets all auto-approval conditions")

    def manual_review_reasons(self, rule: CandidateRule, decision: ApprovalDecision) -> str:
        """Render the reasons a reviewer should look at this rule."""
        reasons: list[str] = []
        evaluation = rule.evaluation
        if evaluation is not None:
            if evaluation.combined_score < self.min_quality_score:
                reasons.append(
                    f"质量分数低于阈值 ({evaluation.combined_score} < {self.min_quality_score})"
                )
            if len(evaluation.basic_issues) > MAX_BASIC_ISSUES:
                reasons.append(f"基础验证问题过多 ({len(evaluation.basic_issues)}个)")
        if rule.confidence < self.threshold:
            reasons.append(f"置信度低于阈值 ({rule.confidence} < {self.threshold})")
        if not self.validator.validate_security_rule(rule).passed:
            reasons.append("安全规则严重程度可能不足")
        reasons.append(f"审批决策: {decision.reason}")
        return "\n".join(f"- {reason}" for reason in reasons)

    async def process(
        self,
        rules: list[CandidateRule],
        context: LearningContext,
    ) -> ApprovalBatch:
        """Evaluate, decide and persist a batch of rules.

        Approved rules are deduplicated against each other by
        (category, type, title) in input order before anything is written.
        Rules dropped that way, and rejected exact duplicates of the corpus,
        are rejected without a file. A rule whose file cannot be written is
        logged and skipped.
        """
        batch = ApprovalBatch()
        decided: list[tuple[CandidateRule, RuleLifecycle, ApprovalDecision]] = []
        approved_keys: set[tuple[str, str, str]] = set()
        dropped: set[str] = set()

        for rule in rules:
            lifecycle = RuleLifecycle(rule.id)
            evaluation = await self.evaluator.evaluate(rule, context)
            duplicate = await self.detector.check_duplicate(rule)
            decision = self.decide(rule, evaluation, self.threshold, duplicate)

            if decision.action is ApprovalAction.APPROVE:
                if rule.dedup_key in approved_keys:
                    decision = ApprovalDecision(
                        ApprovalAction.REJECT, "Duplicate of another rule in this batch"
                    )
                    dropped.add(rule.id)
                else:
                    approved_keys.add(rule.dedup_key)
            elif (
                decision.action is ApprovalAction.REJECT
                and duplicate.duplicate_type is DuplicateType.EXACT
            ):
                dropped.add(rule.id)

            basic = evaluation.basic_validation
            if basic is not None and not basic.passed:
                lifecycle.transition(RuleState.REJECTED)
            else:
                lifecycle.transition(RuleState.VALIDATED)
                lifecycle.transition(RuleState.EVALUATED)
                lifecycle.apply_decision(decision.action)
            if lifecycle.state is not ACTION_STATES[decision.action]:
                decision = ApprovalDecision(ApprovalAction.REJECT, decision.reason)

            rule.approval = decision
            decided.append((rule, lifecycle, decision))

        for rule, lifecycle, decision in decided:
            if rule.id in dropped:
                batch.rejected.append(rule)
                batch.deduplicated.append(rule)
                _logger.debug("rule_deduplicated", title=rule.title, reason=decision.reason)
                continue
            await self._persist(rule, lifecycle.state, decision, context, batch)

        self._stats.total_processed += len(rules)
        self._stats.auto_approved += len(batch.approved)
        self._stats.manual_review += len(batch.manual_review)
        self._stats.rejected += len(batch.rejected)
        _logger.info(
            "approval_batch_complete",
            approved=len(batch.approved),
            manual_review=len(batch.manual_review),
            rejected=len(batch.rejected),
            deduplicated=len(batch.deduplicated),
            write_failures=len(batch.failed),
            threshold=self.threshold,
        )
        return batch

    async def _persist(
        self,
        rule: CandidateRule,
        state: RuleState,
        decision: ApprovalDecision,
        context: LearningContext,
        batch: ApprovalBatch,
    ) -> None:
        if state is RuleState.APPROVED:
            bucket, reasons = batch.approved, ""
        elif state is RuleState.MANUAL_REVIEW:
            bucket, reasons = batch.manual_review, self.manual_review_reasons(rule, decision)
        else:
            bucket, reasons = batch.rejected, decision.reason

        try:
            path = await self.store.write(rule, state, context, reasons=reasons)
        except RuleStorageError as e:
            self._stats.write_failures += 1
            batch.failed.append(rule.id)
            _logger.exception("rule_write_failed", title=rule.title, state=state.value, error=str(e))
            return

        bucket.append(rule)
        batch.written[rule.id] = path
        if state is RuleState.APPROVED:
            await self.detector.add_to_cache(rule, file_path=str(path))

    def get_stats(self) -> dict[str, Any]:
        stats = self._stats
        return {
            "total_processed": stats.total_processed,
            "auto_approved": stats.auto_approved,
            "manual_review": stats.manual_review,
            "rejected": stats.rejected,
            "write_failures": stats.write_failures,
            "approval_rate": (
                round(stats.auto_approved / stats.total_processed, 4)
                if stats.total_processed
                else 0.0
            ),
            "current_threshold": self.threshold,
        }

    def reset_stats(self) -> None:
        self._stats = ApprovalStats()

"""End-to-end rule learning.

The host builds the text generator, the history provider and the config;
``RuleLearningPipeline`` owns every other component. One learning run goes

    analysis record -> context -> candidate rules -> evaluation
        -> duplicate check -> approval decision -> rule file

and finishes by feeding the batch outcome to the threshold adjuster.
Processing is strictly sequential.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rulelearner.backends import create_generator
from rulelearner.backends.base import TextGenerator
from rulelearner.core.config import RuleLearningConfig
from rulelearner.core.errors import MissingCollaboratorError
from rulelearner.core.logging import LearningRunContext, get_logger, with_context
from rulelearner.core.models import AnalysisRecord, LearningContext
from rulelearner.learning.approver import AutoApprover
from rulelearner.learning.duplicates import RuleDuplicateDetector
from rulelearner.learning.evaluator import QualityEvaluator
from rulelearner.learning.generator import RuleGenerator
from rulelearner.learning.history import (
    HistoryAnalyzer,
    HistoryProvider,
    calculate_average_confidence,
)
from rulelearner.learning.monitor import LearningMonitor
from rulelearner.learning.storage import RuleFileStore
from rulelearner.learning.threshold import SmartThresholdAdjuster
from rulelearner.learning.validator import RuleValidator
from rulelearner.prompts import PromptBuilder

_logger = get_logger("pipeline")

# A record this confident triggers learning even without similar history
TRIGGER_CONFIDENCE = 0.7
REPRESENTATIVE_CONFIDENCE = 0.8
SIMILAR_SEARCH_PREFIX = 20
SIMILAR_SEARCH_LIMIT = 5


@dataclass
class LearningSummary:
    """Counts for one learning run or an aggregated batch."""

    generated: int = 0
    evaluated: int = 0
    approved: int = 0
    manual_review: int = 0
    rejected: int = 0
    threshold: float = 0.0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    patterns_processed: int = 0

    def merge(self, other: LearningSummary) -> None:
        self.generated += other.generated
        self.evaluated += other.evaluated
        self.approved += other.approved
        self.manual_review += other.manual_review
        self.rejected += other.rejected
        self.threshold = other.threshold
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated": self.generated,
            "evaluated": self.evaluated,
            "approved": self.approved,
            "manual_review": self.manual_review,
            "rejected": self.rejected,
            "threshold": self.threshold,
            "errors": list(self.errors),
            "skipped": self.skipped,
            "patterns_processed": self.patterns_processed,
        }


class RuleLearningPipeline:
    """Learns audit rules from analysis records.

    Args:
        config: Validated pipeline configuration.
        generator: Text-generation backend.
        history: Read-only history provider.
        store: Rule file store; built from ``config.storage`` if omitted.
        monitor: Metrics sink; a private one is created if omitted.
        prompts: Prompt builder shared by generation and evaluation.

    Raises:
        MissingCollaboratorError: If ``generator`` or ``history`` is None.
    """

    def __init__(
        self,
        config: RuleLearningConfig,
        generator: TextGenerator | None,
        history: HistoryProvider | None,
        store: RuleFileStore | None = None,
        monitor: LearningMonitor | None = None,
        prompts: PromptBuilder | None = None,
    ) -> None:
        if generator is None:
            raise MissingCollaboratorError("RuleLearningPipeline requires a text generator")
        if history is None:
            raise MissingCollaboratorError("RuleLearningPipeline requires a history provider")

        self.config = config
        self.text_generator = generator
        self.history = history
        self.monitor = monitor or LearningMonitor()
        self.prompts = prompts or PromptBuilder()
        timeout = config.performance.task_timeout_seconds

        self.store = store or RuleFileStore(
            config.storage.rules_root_dir,
            organize_by_month=config.storage.organize_by_month,
        )
        self.validator = RuleValidator(
            completeness_confidence=config.evaluation.completeness_confidence,
            security_min_severity=config.evaluation.security_min_severity,
        )
        self.rule_generator = RuleGenerator(
            generator,
            config=config.generation,
            prompts=self.prompts,
            timeout_seconds=timeout,
            monitor=self.monitor,
        )
        self.evaluator = QualityEvaluator(
            generator,
            validator=self.validator,
            config=config.evaluation,
            prompts=self.prompts,
            timeout_seconds=timeout,
            monitor=self.monitor,
        )
        self.detector = RuleDuplicateDetector(self.store, config.duplicates)
        self.approver = AutoApprover(
            self.evaluator,
            self.detector,
            self.store,
            validator=self.validator,
            config=config.evaluation,
        )
        self.adjuster = SmartThresholdAdjuster(config.threshold)
        self.analyzer = HistoryAnalyzer(
            history, max_records=config.learning.max_records_per_learning
        )

    @classmethod
    def from_config(
        cls,
        config: RuleLearningConfig,
        history: HistoryProvider | None,
        generator: TextGenerator | None = None,
    ) -> RuleLearningPipeline:
        """Build a pipeline, creating the backend from ``config.backend`` if needed."""
        return cls(config, generator or create_generator(config.backend), history)

    @property
    def current_threshold(self) -> float:
        return self.approver.threshold

    @current_threshold.setter
    def current_threshold(self, value: float) -> None:
        self.approver.threshold = value

    def should_trigger_learning(self, record: AnalysisRecord, similar_count: int = 0) -> bool:
        """Whether a record is worth learning from."""
        if not self.config.learning.enabled:
            return False
        confidence = calculate_average_confidence(record)
        if confidence < self.config.learning.min_confidence:
            return False
        if not record.has_issues:
            return False
        return (
            similar_count >= self.config.learning.min_similar_records
            or confidence >= TRIGGER_CONFIDENCE
        )

    async def build_learning_context(self, record: AnalysisRecord) -> LearningContext:
        """Build the generation context, including similar history.

        The first search hit is the record itself and is dropped.
        """
        similar = await self.history.search_history(
            record.sql[:SIMILAR_SEARCH_PREFIX], limit=SIMILAR_SEARCH_LIMIT
        )
        return LearningContext.from_record(record, similar_records=list(similar)[1:])

    async def learn_from_analysis(self, record: AnalysisRecord) -> LearningSummary:
        """Learn from one analysis record. Always returns a summary."""
        session_id = self.monitor.start_session(source="live")
        try:
            with with_context(LearningRunContext(session_id=session_id, source="live")):
                return await self._learn(record, check_trigger=True)
        finally:
            self.monitor.end_session()

    async def _learn(self, record: AnalysisRecord, check_trigger: bool) -> LearningSummary:
        summary = LearningSummary(threshold=self.current_threshold)
        try:
            context = await self.build_learning_context(record)
            if check_trigger and not self.should_trigger_learning(
                record, len(context.similar_records)
            ):
                _logger.debug("learning_not_triggered", sql_length=len(record.sql))
                summary.skipped = True
                return summary

            rules = await self.rule_generator.generate(context)
            summary.generated = len(rules)
            if not rules:
                return summary

            batch = await self.approver.process(rules, context)
            summary.evaluated = len(rules)
            summary.approved = len(batch.approved)
            summary.manual_review = len(batch.manual_review)
            summary.rejected = len(batch.rejected)
            summary.errors.extend(f"Failed to write rule {rule_id}" for rule_id in batch.failed)
            self.monitor.record_decisions(
                summary.approved, summary.manual_review, summary.rejected
            )

            self.adjuster.record_quality_data(rules, batch.approved)
            self.current_threshold = self.adjuster.apply_adjustment(self.current_threshold)
        except Exception as e:
            _logger.exception("learning_run_failed", error=str(e))
            summary.errors.append(str(e))

        summary.threshold = self.current_threshold
        _logger.info("learning_run_complete", **summary.to_dict())
        return summary

    async def batch_learn_from_history(
        self,
        batch_size: int | None = None,
        min_confidence: float | None = None,
    ) -> LearningSummary:
        """Learn from recurring SQL patterns in history.

        Nothing runs when fewer than ``min_batch_size`` quality records exist.
        Patterns seen at least ``min_similar_records`` times are learned from
        one representative record each, up to ``batch_size`` patterns.
        """
        batch_size = batch_size or self.config.learning.batch_size
        if min_confidence is None:
            min_confidence = self.config.learning.min_confidence

        total = LearningSummary(threshold=self.current_threshold)
        session_id = self.monitor.start_session(source="batch")
        try:
            with with_context(LearningRunContext(session_id=session_id, source="batch")):
                try:
                    records = await self.analyzer.get_quality_history(min_confidence)
                except Exception as e:
                    _logger.exception("history_load_failed", error=str(e))
                    total.errors.append(str(e))
                    return total

                min_batch_size = self.config.learning.min_batch_size
                if len(records) < min_batch_size:
                    _logger.info(
                        "batch_learning_skipped",
                        records=len(records),
                        min_batch_size=min_batch_size,
                    )
                    total.skipped = True
                    return total

                groups = self.analyzer.group_by_sql_pattern(records)
                eligible = [
                    group
                    for group in groups.values()
                    if len(group) >= self.config.learning.min_similar_records
                ]
                _logger.info(
                    "batch_learning_started",
                    records=len(records),
                    patterns=len(groups),
                    eligible=len(eligible),
                    batch_size=batch_size,
                )

                for group in eligible[:batch_size]:
                    representative = next(
                        (
                            record
                            for record in group
                            if calculate_average_confidence(record) >= REPRESENTATIVE_CONFIDENCE
                        ),
                        group[0],
                    )
                    total.merge(await self._learn(representative, check_trigger=False))
                    total.patterns_processed += 1
        finally:
            self.monitor.end_session()

        total.threshold = self.current_threshold
        _logger.info("batch_learning_complete", **total.to_dict())
        return total

    async def perform_batch_learning(
        self,
        batch_size: int | None = None,
        min_confidence: float | None = None,
    ) -> LearningSummary:
        return await self.batch_learn_from_history(batch_size, min_confidence)

    def get_stats(self) -> dict[str, Any]:
        return {
            "threshold": self.current_threshold,
            "generation": self.rule_generator.get_metrics(),
            "evaluation_cache": self.evaluator.get_cache_stats(),
            "approval": self.approver.get_stats(),
            "quality": self.adjuster.get_quality_stats(),
            "monitor": self.monitor.get_report(),
        }

    async def close(self) -> None:
        await self.text_generator.close()

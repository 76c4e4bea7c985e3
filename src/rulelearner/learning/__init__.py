"""Rule learning: generation, evaluation, approval and threshold feedback.

Key components:
- RuleLearningPipeline: Wires the components and runs learning passes
- RuleGenerator: Candidate rules from the text generator, with fallback templates
- QualityEvaluator: Composite basic plus rubric quality score
- AutoApprover: Approve, manual review or reject, then persist
- RuleDuplicateDetector: Exact and near duplicates against published rules
- SmartThresholdAdjuster: Feedback control of the approval threshold
"""

from rulelearner.learning.approver import ApprovalBatch, AutoApprover
from rulelearner.learning.duplicates import RuleDuplicateDetector, compute_similarity
from rulelearner.learning.evaluator import QualityEvaluator, combine_scores, quality_level_for
from rulelearner.learning.generator import RuleGenerator, dedupe_rules
from rulelearner.learning.history import HistoryAnalyzer, HistoryProvider, JsonHistoryStore
from rulelearner.learning.json_extract import ParseResult, extract_json
from rulelearner.learning.lifecycle import RuleLifecycle, RuleState
from rulelearner.learning.monitor import LearningMonitor
from rulelearner.learning.normalizer import normalize_sql_pattern
from rulelearner.learning.pipeline import LearningSummary, RuleLearningPipeline
from rulelearner.learning.similarity import keyword_similarity, levenshtein_similarity
from rulelearner.learning.storage import RuleFileStore, StoredRule, should_include_directory
from rulelearner.learning.threshold import (
    QualityWindow,
    SmartThresholdAdjuster,
    ThresholdRecommendation,
)
from rulelearner.learning.validator import RuleValidator

__all__ = [
    # Pipeline
    "LearningSummary",
    "RuleLearningPipeline",
    # Components
    "ApprovalBatch",
    "AutoApprover",
    "HistoryAnalyzer",
    "HistoryProvider",
    "JsonHistoryStore",
    "LearningMonitor",
    "QualityEvaluator",
    "QualityWindow",
    "RuleDuplicateDetector",
    "RuleFileStore",
    "RuleGenerator",
    "RuleLifecycle",
    "RuleState",
    "RuleValidator",
    "SmartThresholdAdjuster",
    "StoredRule",
    "ThresholdRecommendation",
    # Functions
    "ParseResult",
    "combine_scores",
    "compute_similarity",
    "dedupe_rules",
    "extract_json",
    "keyword_similarity",
    "levenshtein_similarity",
    "normalize_sql_pattern",
    "quality_level_for",
    "should_include_directory",
]

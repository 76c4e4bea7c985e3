"""Core models, configuration, logging and errors for the rule learner."""

from rulelearner.core.config import RuleLearningConfig
from rulelearner.core.errors import (
    ConfigurationError,
    InvalidTransitionError,
    MissingCollaboratorError,
    RuleLearningError,
    RuleStorageError,
    ValidationLevelError,
)
from rulelearner.core.models import (
    AnalysisIssue,
    AnalysisRecord,
    ApprovalAction,
    ApprovalDecision,
    CandidateRule,
    Category,
    DimensionAnalysis,
    DuplicateMatch,
    DuplicateResult,
    DuplicateType,
    EvaluationResult,
    LearningContext,
    QualityLevel,
    QualitySample,
    Severity,
    ValidationResult,
)

__all__ = [
    "AnalysisIssue",
    "AnalysisRecord",
    "ApprovalAction",
    "ApprovalDecision",
    "CandidateRule",
    "Category",
    "ConfigurationError",
    "DimensionAnalysis",
    "DuplicateMatch",
    "DuplicateResult",
    "DuplicateType",
    "EvaluationResult",
    "InvalidTransitionError",
    "LearningContext",
    "MissingCollaboratorError",
    "QualityLevel",
    "QualitySample",
    "RuleLearningConfig",
    "RuleLearningError",
    "RuleStorageError",
    "Severity",
    "ValidationLevelError",
    "ValidationResult",
]

"""SQL rule learner: turns SQL analysis history into published audit rules."""

from rulelearner.core.config import RuleLearningConfig
from rulelearner.core.logging import configure_logging, configure_logging_from, get_logger
from rulelearner.learning.pipeline import LearningSummary, RuleLearningPipeline

__version__ = "0.3.0"

__all__ = [
    "LearningSummary",
    "RuleLearningConfig",
    "RuleLearningPipeline",
    "__version__",
    "configure_logging",
    "configure_logging_from",
    "get_logger",
]

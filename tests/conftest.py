"""Pytest fixtures for rule learner tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from rulelearner.core.config import RuleLearningConfig
from rulelearner.core.models import AnalysisRecord, LearningContext
from rulelearner.learning.storage import RuleFileStore

from tests.helpers import make_record


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers so each test starts unconfigured."""
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def rules_root(tmp_path: Path) -> Path:
    """Empty rule corpus root."""
    root = tmp_path / "learning-rules"
    root.mkdir()
    return root


@pytest.fixture
def rule_store(rules_root: Path) -> RuleFileStore:
    return RuleFileStore(rules_root)


@pytest.fixture
def select_star_record() -> AnalysisRecord:
    """A confident analysis flagging SELECT * as a performance issue."""
    return make_record(
        "SELECT * FROM users WHERE id = 1",
        performance=[{"type": "select_star", "severity": "medium",
                      "description": "SELECT * reads every column"}],
        confidence=0.9,
    )


@pytest.fixture
def select_star_context(select_star_record: AnalysisRecord) -> LearningContext:
    return LearningContext.from_record(select_star_record)


@pytest.fixture
def config(rules_root: Path) -> RuleLearningConfig:
    """Default configuration writing into the temporary rule root."""
    return RuleLearningConfig.model_validate({
        "storage": {"rules_root_dir": str(rules_root)},
        "backend": {"type": "disabled"},
        "performance": {"task_timeout_seconds": 5},
    })

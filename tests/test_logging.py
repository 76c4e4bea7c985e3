"""Tests for rulelearner.core.logging."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from rulelearner.core.config import RuleLearningConfig
from rulelearner.core.logging import (
    SENSITIVE_PATTERNS,
    LearnerLogger,
    LearningRunContext,
    _sanitize_event_dict,
    configure_logging,
    configure_logging_from,
    get_current_context,
    get_logger,
    with_context,
)


class TestSanitization:
    def test_known_sensitive_patterns(self) -> None:
        for pattern in ("api_key", "token", "password", "secret"):
            assert pattern in SENSITIVE_PATTERNS

    def test_redacts_top_level_and_nested_keys(self) -> None:
        event = _sanitize_event_dict(None, "info", {
            "event": "call",
            "ANTHROPIC_API_KEY": "sk-123",
            "headers": {"Authorization": "Bearer x", "accept": "json"},
            "model": "claude",
        })
        assert event["ANTHROPIC_API_KEY"] == "[REDACTED]"
        assert event["headers"] == {"Authorization": "[REDACTED]", "accept": "json"}
        assert event["model"] == "claude"


class TestLearningRunContext:
    def test_with_component_keeps_run_id(self) -> None:
        ctx = LearningRunContext(session_id="s1", source="batch")
        other = ctx.with_component("approver")
        assert other.run_id == ctx.run_id
        assert other.to_dict() == {
            "run_id": ctx.run_id,
            "component": "approver",
            "source": "batch",
            "session_id": "s1",
        }

    def test_session_id_omitted_when_absent(self) -> None:
        assert "session_id" not in LearningRunContext().to_dict()

    def test_with_context_restores_previous(self) -> None:
        assert get_current_context() is None
        ctx = LearningRunContext()
        with with_context(ctx) as active:
            assert active is ctx
            assert get_current_context() is ctx
        assert get_current_context() is None


class TestLearnerLogger:
    def test_get_logger_binds_component(self) -> None:
        logger = get_logger("generator", model="m")
        assert isinstance(logger, LearnerLogger)
        assert logger.component == "generator"

    def test_bind_returns_new_logger(self) -> None:
        logger = get_logger("generator")
        bound = logger.bind(rule_id="r1")
        assert bound is not logger
        assert bound.component == "generator"
        assert "rule_id" not in logger._context


class TestConfigureLogging:
    def test_both_requires_file_path(self) -> None:
        with pytest.raises(ValueError, match="file_path is required"):
            configure_logging(format="both")

    def test_sets_root_level(self) -> None:
        configure_logging(level="WARNING", format="console")
        assert logging.getLogger().level == logging.WARNING

    def test_json_file_output_includes_context(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "learner.log"
        configure_logging(level="INFO", format="json", file_path=log_file)
        ctx = LearningRunContext(source="batch")

        with with_context(ctx):
            get_logger("pipeline").info("batch_started", api_key="secret", patterns=3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        [line] = log_file.read_text(encoding="utf-8").splitlines()
        event = json.loads(line)
        assert event["event"] == "batch_started"
        assert event["component"] == "pipeline"
        assert event["run_id"] == ctx.run_id
        assert event["source"] == "batch"
        assert event["api_key"] == "[REDACTED]"
        assert event["patterns"] == 3
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_debug_filtered_at_info(self, tmp_path: Path) -> None:
        log_file = tmp_path / "learner.log"
        configure_logging(level="INFO", format="json", file_path=log_file)
        get_logger("pipeline").debug("noise")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert log_file.read_text(encoding="utf-8") == ""

    def test_configured_from_logging_section(self, tmp_path: Path) -> None:
        log_file = tmp_path / "learner.log"
        config = RuleLearningConfig.model_validate({
            "logging": {"level": "WARNING", "format": "json", "file_path": str(log_file)},
        })

        configure_logging_from(config.logging)
        logger = get_logger("pipeline")
        logger.info("ignored")
        logger.warning("threshold_at_bound", threshold=0.6)
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert logging.getLogger().level == logging.WARNING
        [line] = log_file.read_text(encoding="utf-8").splitlines()
        assert json.loads(line)["event"] == "threshold_at_bound"

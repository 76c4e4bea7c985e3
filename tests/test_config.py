"""Tests for rulelearner.core.config."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from rulelearner.core.config import (
    BackendConfig,
    DuplicateConfig,
    EvaluationConfig,
    GenerationConfig,
    RuleLearningConfig,
    ThresholdConfig,
)
from rulelearner.core.errors import ConfigurationError


class TestDefaults:
    def test_root_defaults(self) -> None:
        config = RuleLearningConfig()
        assert config.learning.enabled is True
        assert config.learning.min_confidence == 0.7
        assert config.generation.max_rules_per_learning == 10
        assert config.evaluation.auto_approval_threshold == 70
        assert config.evaluation.auto_approval_confidence == 0.8
        assert config.threshold.target_auto_approve_rate == 0.3
        assert config.threshold.min_threshold == 0.6
        assert config.threshold.max_threshold == 0.85
        assert config.duplicates.high_similarity == 0.8
        assert config.storage.rules_root_dir == Path("rules/learning-rules")
        assert config.performance.task_timeout_seconds == 60.0
        assert config.backend.type == "anthropic"
        assert config.backend.model == "claude-sonnet-4-20250514"

    @pytest.mark.parametrize(
        ("backend_type", "model"),
        [
            ("anthropic", "claude-sonnet-4-20250514"),
            ("ollama", "qwen2.5:7b"),
            ("disabled", None),
        ],
    )
    def test_backend_model_follows_backend_type(
        self, backend_type: str, model: str | None,
    ) -> None:
        config = RuleLearningConfig.from_yaml_string(f"backend:\n  type: {backend_type}\n")
        assert config.backend.model == model

    def test_explicit_backend_model_is_kept(self) -> None:
        assert BackendConfig(type="ollama", model="llama3:8b").model == "llama3:8b"


class TestSectionValidation:
    def test_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValidationError, match="must sum to 1.0"):
            EvaluationConfig(basic_weight=0.5, llm_weight=0.7)

    def test_confidence_clamp_order(self) -> None:
        with pytest.raises(ValidationError):
            GenerationConfig(llm_confidence_min=0.9, llm_confidence_max=0.5)

    def test_threshold_bounds_order(self) -> None:
        with pytest.raises(ValidationError):
            ThresholdConfig(min_threshold=0.9, max_threshold=0.6)

    def test_duplicate_cutoffs_order(self) -> None:
        with pytest.raises(ValidationError):
            DuplicateConfig(high_similarity=0.5, warn_similarity=0.7)

    def test_initial_threshold_inside_bounds(self) -> None:
        with pytest.raises(ValidationError, match="must lie within"):
            RuleLearningConfig.model_validate({
                "evaluation": {"auto_approval_confidence": 0.95},
            })

    @pytest.mark.parametrize(
        "section",
        [
            {"learning": {"min_confidence": 1.5}},
            {"evaluation": {"auto_approval_threshold": 120}},
            {"performance": {"task_timeout_seconds": 0}},
            {"backend": {"type": "openai"}},
        ],
    )
    def test_out_of_range_values_rejected(self, section: dict) -> None:
        with pytest.raises(ValidationError):
            RuleLearningConfig.model_validate(section)


class TestYamlLoading:
    def test_from_yaml_string(self) -> None:
        config = RuleLearningConfig.from_yaml_string(
            """
learning:
  min_confidence: 0.6
storage:
  rules_root_dir: /srv/rules
backend:
  type: ollama
  model: qwen2.5:7b
"""
        )
        assert config.learning.min_confidence == 0.6
        assert config.storage.rules_root_dir == Path("/srv/rules")
        assert config.backend.type == "ollama"

    def test_empty_yaml_gives_defaults(self) -> None:
        assert RuleLearningConfig.from_yaml_string("") == RuleLearningConfig()

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "learner.yaml"
        path.write_text("generation:\n  max_rules_per_learning: 3\n", encoding="utf-8")
        assert RuleLearningConfig.from_yaml(path).generation.max_rules_per_learning == 3

    def test_invalid_yaml_values_raise_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid rule learning configuration"):
            RuleLearningConfig.from_yaml_string("evaluation:\n  basic_weight: 2\n")


class TestEnvOverrides:
    def test_overrides_applied(self) -> None:
        config = RuleLearningConfig().with_env_overrides({
            "RULE_LEARNING_ENABLED": "false",
            "RULE_LEARNING_MIN_CONFIDENCE": "0.75",
            "RULE_GENERATION_MAX_RULES": "4",
            "RULE_STORAGE_ROOT_DIR": "/tmp/rules",
        })
        assert config.learning.enabled is False
        assert config.learning.min_confidence == 0.75
        assert config.generation.max_rules_per_learning == 4
        assert config.storage.rules_root_dir == Path("/tmp/rules")

    def test_no_overrides_returns_same_instance(self) -> None:
        config = RuleLearningConfig()
        assert config.with_env_overrides({"UNRELATED": "1", "RULE_LEARNING_ENABLED": ""}) is config

    def test_malformed_override_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            RuleLearningConfig().with_env_overrides({"RULE_GENERATION_MAX_RULES": "many"})

"""Configuration models for the rule-learning pipeline.

Every section is a pydantic model with documented defaults. The root
``RuleLearningConfig`` loads from YAML and can be overlaid with the
``RULE_*`` environment variables used by deployments.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from rulelearner.core.errors import ConfigurationError


class LearningConfig(BaseModel):
    """When and how much the pipeline learns."""

    enabled: bool = Field(
        default=True,
        description="Master switch. When disabled, should_trigger_learning is always False.",
    )
    min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum average analysis confidence for a record to be learnable.",
    )
    min_batch_size: int = Field(
        default=5,
        ge=1,
        description="Minimum number of quality records before batch learning runs.",
    )
    max_records_per_learning: int = Field(
        default=50,
        ge=1,
        description="Upper bound on history records scanned per batch.",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        description="Maximum number of SQL patterns learned per batch.",
    )
    min_similar_records: int = Field(
        default=2,
        ge=0,
        description="Similar history records needed to trigger learning "
        "when confidence alone is not enough.",
    )


class GenerationConfig(BaseModel):
    """Rule generation limits."""

    max_rules_per_learning: int = Field(default=10, ge=1)
    deduplication_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    llm_confidence_min: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Lower clamp for LLM-produced rule confidence.",
    )
    llm_confidence_max: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Upper clamp for LLM-produced rule confidence.",
    )
    enable_deep_learning: bool = Field(
        default=True,
        description="Retry with the broader-context prompt before falling back.",
    )

    @model_validator(mode="after")
    def _validate_clamp(self) -> GenerationConfig:
        if self.llm_confidence_min > self.llm_confidence_max:
            raise ValueError(
                f"llm_confidence_min ({self.llm_confidence_min}) must not exceed "
                f"llm_confidence_max ({self.llm_confidence_max})"
            )
        return self


class EvaluationConfig(BaseModel):
    """Quality evaluation and approval policy."""

    auto_approval_threshold: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Minimum combined quality score for auto approval.",
    )
    auto_approval_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Initial confidence threshold; retuned by the threshold adjuster.",
    )
    basic_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    llm_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keep_threshold: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Combined score below which a rule is not worth keeping.",
    )
    completeness_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Confidence required by completeness validation.",
    )
    security_min_severity: Literal["medium", "high"] = Field(
        default="medium",
        description="Lowest severity accepted for security rules.",
    )
    enable_caching: bool = True

    @model_validator(mode="after")
    def _validate_weights(self) -> EvaluationConfig:
        if abs(self.basic_weight + self.llm_weight - 1.0) > 1e-6:
            raise ValueError(
                f"basic_weight ({self.basic_weight}) + llm_weight ({self.llm_weight}) "
                "must sum to 1.0"
            )
        return self


class ThresholdConfig(BaseModel):
    """Smart threshold adjuster tuning."""

    target_auto_approve_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    min_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    adjustment_step: float = Field(default=0.05, gt=0.0, le=0.5)
    window_size: int = Field(
        default=20,
        ge=1,
        description="Capacity of the quality sample ring buffer.",
    )
    min_samples: int = Field(
        default=5,
        ge=1,
        description="Samples needed before any adjustment is made.",
    )
    averaging_window: int = Field(
        default=10,
        ge=1,
        description="Most recent samples averaged per recommendation.",
    )

    @model_validator(mode="after")
    def _validate_bounds(self) -> ThresholdConfig:
        if self.min_threshold > self.max_threshold:
            raise ValueError(
                f"min_threshold ({self.min_threshold}) must not exceed "
                f"max_threshold ({self.max_threshold})"
            )
        return self


class DuplicateConfig(BaseModel):
    """Similarity cut-offs for duplicate detection."""

    high_similarity: float = Field(default=0.8, ge=0.0, le=1.0)
    warn_similarity: float = Field(default=0.6, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_order(self) -> DuplicateConfig:
        if self.warn_similarity > self.high_similarity:
            raise ValueError("warn_similarity must not exceed high_similarity")
        return self


class StorageConfig(BaseModel):
    """Where rule files are written."""

    rules_root_dir: Path = Field(default=Path("rules/learning-rules"))
    organize_by_month: bool = Field(
        default=True,
        description="Place rule files in YYYY-MM subdirectories.",
    )


class PerformanceConfig(BaseModel):
    task_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout applied to each external text-generation call.",
    )


# Model used when ``backend.model`` is not set.
DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "ollama": "qwen2.5:7b",
}


class BackendConfig(BaseModel):
    """Text-generation backend selection."""

    type: Literal["anthropic", "ollama", "disabled"] = "anthropic"
    model: str | None = Field(
        default=None,
        description="Model name; defaults to the backend type's entry in DEFAULT_MODELS.",
    )
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=120.0, gt=0)
    ollama_base_url: str = "http://localhost:11434"

    @model_validator(mode="after")
    def _default_model(self) -> BackendConfig:
        if self.model is None:
            self.model = DEFAULT_MODELS.get(self.type)
        return self


class LogConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console", "both"] = "console"
    file_path: Path | None = None


# env var -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "RULE_LEARNING_ENABLED": ("learning", "enabled"),
    "RULE_LEARNING_MIN_CONFIDENCE": ("learning", "min_confidence"),
    "RULE_GENERATION_MAX_RULES": ("generation", "max_rules_per_learning"),
    "RULE_EVALUATION_AUTO_APPROVAL_THRESHOLD": ("evaluation", "auto_approval_threshold"),
    "RULE_EVALUATION_AUTO_APPROVAL_CONFIDENCE": ("evaluation", "auto_approval_confidence"),
    "RULE_STORAGE_ROOT_DIR": ("storage", "rules_root_dir"),
}


class RuleLearningConfig(BaseModel):
    """Root configuration for the rule-learning pipeline."""

    learning: LearningConfig = Field(default_factory=LearningConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    threshold: ThresholdConfig = Field(default_factory=ThresholdConfig)
    duplicates: DuplicateConfig = Field(default_factory=DuplicateConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @model_validator(mode="after")
    def _validate_initial_threshold(self) -> RuleLearningConfig:
        confidence = self.evaluation.auto_approval_confidence
        if not self.threshold.min_threshold <= confidence <= self.threshold.max_threshold:
            raise ValueError(
                f"evaluation.auto_approval_confidence ({confidence}) must lie within "
                f"[{self.threshold.min_threshold}, {self.threshold.max_threshold}]"
            )
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> RuleLearningConfig:
        """Load configuration from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls._validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> RuleLearningConfig:
        """Load configuration from a YAML string."""
        return cls._validate(yaml.safe_load(yaml_str) or {})

    @classmethod
    def _validate(cls, data: Any) -> RuleLearningConfig:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid rule learning configuration: {e}") from e

    def with_env_overrides(self, environ: Mapping[str, str]) -> RuleLearningConfig:
        """Return a copy with ``RULE_*`` environment overrides applied.

        Values are re-validated, so a malformed override raises
        ConfigurationError rather than being silently ignored.

        Args:
            environ: Environment mapping, usually ``os.environ``.

        Returns:
            A new, validated RuleLearningConfig.
        """
        data = self.model_dump()
        applied = False
        for env_name, (section, key) in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            data[section][key] = _coerce_env_value(raw)
            applied = True
        if not applied:
            return self
        return self._validate(data)


def _coerce_env_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return raw.strip()


__all__ = [
    "BackendConfig",
    "DEFAULT_MODELS",
    "DuplicateConfig",
    "ENV_OVERRIDES",
    "EvaluationConfig",
    "GenerationConfig",
    "LearningConfig",
    "LogConfig",
    "PerformanceConfig",
    "RuleLearningConfig",
    "StorageConfig",
    "ThresholdConfig",
]

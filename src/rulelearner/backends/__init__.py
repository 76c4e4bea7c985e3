"""Text-generation backends."""

from rulelearner.backends.anthropic_api import AnthropicTextGenerator
from rulelearner.backends.base import GenerationResult, TextGenerator, generate_with_timeout
from rulelearner.backends.disabled import DisabledTextGenerator
from rulelearner.backends.ollama import OllamaTextGenerator
from rulelearner.core.config import BackendConfig


def create_generator(config: BackendConfig) -> TextGenerator:
    """Build the text generator selected by ``config.type``."""
    if config.type == "anthropic":
        return AnthropicTextGenerator.from_config(config)
    if config.type == "ollama":
        return OllamaTextGenerator.from_config(config)
    return DisabledTextGenerator()


__all__ = [
    "AnthropicTextGenerator",
    "DisabledTextGenerator",
    "GenerationResult",
    "OllamaTextGenerator",
    "TextGenerator",
    "create_generator",
    "generate_with_timeout",
]

"""Anthropic API text generator using the official SDK.

Provides rate limit detection, token tracking, and graceful error handling.
"""

from __future__ import annotations

import os
import re
import time

import anthropic

from rulelearner.backends.base import GenerationResult, TextGenerator
from rulelearner.core.config import DEFAULT_MODELS, BackendConfig
from rulelearner.core.logging import get_logger

_logger = get_logger("backend.anthropic")

_RATE_LIMIT_PATTERNS = (
    r"rate.?limit",
    r"quota",
    r"too many requests",
    r"429",
    r"overloaded",
)


class AnthropicTextGenerator(TextGenerator):
    """Generate text through the Anthropic Messages API."""

    def __init__(
        self,
        model: str = DEFAULT_MODELS["anthropic"],
        api_key_env: str = "ANTHROPIC_API_KEY",
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout_seconds: float = 120.0,
    ) -> None:
        """Initialize the generator.

        Args:
            model: Model id to use.
            api_key_env: Environment variable holding the API key.
            max_tokens: Maximum tokens in the reply.
            temperature: Sampling temperature.
            timeout_seconds: Per-request timeout passed to the SDK.
        """
        self.model = model
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self._api_key = os.environ.get(api_key_env)
        self._client: anthropic.AsyncAnthropic | None = None

    @classmethod
    def from_config(cls, config: BackendConfig) -> AnthropicTextGenerator:
        return cls(
            model=config.model or DEFAULT_MODELS["anthropic"],
            api_key_env=config.api_key_env,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return f"anthropic:{self.model}"

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise RuntimeError(
                    f"API key not found in environment variable: {self.api_key_env}"
                )
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
            )
        return self._client

    async def generate(self, prompt: str) -> GenerationResult:
        start_time = time.monotonic()
        _logger.debug("anthropic_generate_start", model=self.model, prompt_length=len(prompt))

        try:
            client = self._get_client()
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            text = "".join(
                block.text for block in response.content if hasattr(block, "text")
            )
            tokens_used = (
                response.usage.input_tokens + response.usage.output_tokens
                if response.usage
                else None
            )
            duration = time.monotonic() - start_time
            _logger.debug(
                "anthropic_generate_complete",
                duration_seconds=round(duration, 3),
                tokens_used=tokens_used,
            )
            return GenerationResult(
                success=True,
                content=text,
                duration_seconds=duration,
                model=self.model,
                tokens_used=tokens_used,
            )

        except anthropic.RateLimitError as e:
            return self._failure(start_time, "rate_limit", f"Rate limited: {e}")
        except anthropic.AuthenticationError as e:
            return self._failure(start_time, "authentication", f"Authentication failed: {e}")
        except anthropic.APITimeoutError as e:
            return self._failure(
                start_time, "timeout", f"API timeout after {self.timeout_seconds}s: {e}"
            )
        except anthropic.APIConnectionError as e:
            return self._failure(start_time, "connection", f"Connection error: {e}")
        except anthropic.APIStatusError as e:
            error_type = "rate_limit" if self._detect_rate_limit(str(e)) else "api_error"
            return self._failure(start_time, error_type, str(e))
        except RuntimeError as e:
            return self._failure(start_time, "configuration", str(e))
        except Exception as e:
            _logger.exception("anthropic_generate_error", error=str(e))
            return self._failure(start_time, "exception", f"Unexpected error: {e}")

    def _failure(self, start_time: float, error_type: str, message: str) -> GenerationResult:
        _logger.warning("anthropic_generate_failed", error_type=error_type, error=message)
        return GenerationResult(
            success=False,
            error=message,
            error_type=error_type,
            duration_seconds=time.monotonic() - start_time,
            model=self.model,
        )

    @staticmethod
    def _detect_rate_limit(message: str) -> bool:
        lowered = message.lower()
        return any(re.search(pattern, lowered) for pattern in _RATE_LIMIT_PATTERNS)

    async def health_check(self) -> bool:
        if not self._api_key:
            return False
        try:
            client = self._get_client()
            response = await client.messages.create(
                model=self.model,
                max_tokens=10,
                messages=[{"role": "user", "content": "Reply with only: ok"}],
            )
            return len(response.content) > 0
        except (anthropic.APIError, RuntimeError) as e:
            _logger.warning("anthropic_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

"""Ollama text generator over the local HTTP API.

Uses the non-streaming ``/api/chat`` endpoint and ``/api/tags`` for
health checks.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from rulelearner.backends.base import GenerationResult, HttpxClientMixin, TextGenerator
from rulelearner.core.config import DEFAULT_MODELS, BackendConfig
from rulelearner.core.logging import get_logger

_logger = get_logger("backend.ollama")


class OllamaTextGenerator(HttpxClientMixin, TextGenerator):
    """Generate text with a locally served Ollama model.

    Example usage:
        generator = OllamaTextGenerator(model="qwen2.5:7b")
        result = await generator.generate("Summarize this SQL issue")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_MODELS["ollama"],
        timeout: float = 120.0,
        temperature: float = 0.3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            base_url: Ollama server URL.
            model: Model name as known to Ollama.
            timeout: Request timeout in seconds.
            temperature: Sampling temperature.
            client: Pre-built client (tests inject one with a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self._init_httpx_mixin(self.base_url, self.timeout, client=client)

    @classmethod
    def from_config(cls, config: BackendConfig) -> OllamaTextGenerator:
        return cls(
            base_url=config.ollama_base_url,
            model=config.model or DEFAULT_MODELS["ollama"],
            timeout=config.timeout_seconds,
            temperature=config.temperature,
        )

    @property
    def name(self) -> str:
        return f"ollama:{self.model}"

    async def generate(self, prompt: str) -> GenerationResult:
        start_time = time.monotonic()
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"temperature": self.temperature},
        }

        try:
            client = await self._get_client()
            response = await client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            return self._failure(start_time, "connection", f"Connection error: {e}")
        except httpx.TimeoutException as e:
            return self._failure(start_time, "timeout", f"Timeout: {e}")
        except httpx.HTTPStatusError as e:
            error_type = "rate_limit" if e.response.status_code == 429 else "api_error"
            return self._failure(start_time, error_type, str(e))
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(start_time, "exception", str(e))

        content = data.get("message", {}).get("content", "")
        tokens = (data.get("prompt_eval_count") or 0) + (data.get("eval_count") or 0)
        duration = time.monotonic() - start_time
        _logger.debug(
            "ollama_generate_complete",
            model=self.model,
            duration_seconds=round(duration, 3),
            content_length=len(content),
        )
        return GenerationResult(
            success=True,
            content=content,
            duration_seconds=duration,
            model=self.model,
            tokens_used=tokens or None,
        )

    def _failure(self, start_time: float, error_type: str, message: str) -> GenerationResult:
        _logger.warning("ollama_generate_failed", error_type=error_type, error=message)
        return GenerationResult(
            success=False,
            error=message,
            error_type=error_type,
            duration_seconds=time.monotonic() - start_time,
            model=self.model,
        )

    async def health_check(self) -> bool:
        """Check that Ollama is up and the configured model is pulled."""
        try:
            client = await self._get_client()
            response = await client.get("/api/tags", timeout=10.0)
            if response.status_code != 200:
                _logger.warning("ollama_health_check_failed", status_code=response.status_code)
                return False
            models = response.json().get("models", [])
        except (httpx.HTTPError, ValueError) as e:
            _logger.warning("ollama_health_check_error", error=str(e))
            return False

        model_base = self.model.split(":")[0]
        available = any(entry.get("name", "").startswith(model_base) for entry in models)
        if not available:
            _logger.warning(
                "ollama_model_not_found",
                model=self.model,
                available_models=[entry.get("name") for entry in models],
            )
        return available

    async def close(self) -> None:
        await self._close_httpx_client()

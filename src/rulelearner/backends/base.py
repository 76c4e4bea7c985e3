"""Abstract base for text-generation backends.

The pipeline treats text generation as an opaque, possibly slow and
possibly failing oracle: a prompt goes in, text (or an error) comes out.
Backends never raise for API failures; they return an unsuccessful
GenerationResult instead.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from rulelearner.core.logging import get_logger

_logger = get_logger("backend")


@dataclass
class GenerationResult:
    """Result of one text-generation call."""

    success: bool
    """Whether the backend returned usable content."""

    content: str = ""
    """Generated text. Empty on failure."""

    error: str | None = None
    """Human-readable error message if the call failed."""

    error_type: str | None = None
    """Classified error: timeout, rate_limit, connection, configuration, ..."""

    duration_seconds: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    model: str | None = None
    tokens_used: int | None = None


class TextGenerator(ABC):
    """Abstract text-generation collaborator."""

    @abstractmethod
    async def generate(self, prompt: str) -> GenerationResult:
        """Send a prompt and return the generated text.

        Args:
            prompt: The full prompt.

        Returns:
            GenerationResult; ``success`` is False on any failure.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check whether the backend can currently serve requests."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release any held resources. Default is a no-op."""


async def generate_with_timeout(
    generator: TextGenerator,
    prompt: str,
    timeout_seconds: float,
) -> GenerationResult:
    """Call a generator with a hard timeout, converting every failure to a result.

    A timeout or an unexpected exception from the backend yields an
    unsuccessful GenerationResult, so callers only branch on ``success``.
    """
    start = datetime.now(UTC)
    try:
        return await asyncio.wait_for(generator.generate(prompt), timeout=timeout_seconds)
    except TimeoutError:
        _logger.warning(
            "generation_timeout",
            backend=generator.name,
            timeout_seconds=timeout_seconds,
        )
        return GenerationResult(
            success=False,
            error=f"Generation timed out after {timeout_seconds}s",
            error_type="timeout",
            duration_seconds=timeout_seconds,
            started_at=start,
        )
    except Exception as e:
        _logger.exception("generation_error", backend=generator.name, error=str(e))
        return GenerationResult(
            success=False,
            error=str(e),
            error_type="exception",
            duration_seconds=(datetime.now(UTC) - start).total_seconds(),
            started_at=start,
        )


class HttpxClientMixin:
    """Lazily created, reusable ``httpx.AsyncClient`` for HTTP backends."""

    _base_url: str
    _timeout: float
    _connect_timeout: float
    _client: httpx.AsyncClient | None

    def _init_httpx_mixin(
        self,
        base_url: str,
        timeout: float,
        connect_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
            )
        return self._client

    async def _close_httpx_client(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

"""Tests for text-generation backends.

Tests cover:
- AnthropicTextGenerator: SDK client, error classification, rate limit detection
- OllamaTextGenerator: HTTP chat endpoint through a mock transport
- DisabledTextGenerator and create_generator
- generate_with_timeout: timeouts and unexpected exceptions become results
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from rulelearner.backends import (
    AnthropicTextGenerator,
    DisabledTextGenerator,
    GenerationResult,
    OllamaTextGenerator,
    TextGenerator,
    create_generator,
    generate_with_timeout,
)
from rulelearner.core.config import BackendConfig


# ============================================================================
# AnthropicTextGenerator
# ============================================================================


def _mock_response(text: str = "{}", input_tokens: int = 10, output_tokens: int = 5) -> MagicMock:
    response = MagicMock()
    block = MagicMock()
    block.text = text
    response.content = [block]
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


def _client_with(side_effect: object = None, response: object = None) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=side_effect, return_value=response)
    return client


class TestAnthropicTextGeneratorInit:
    def test_defaults(self) -> None:
        generator = AnthropicTextGenerator()
        assert generator.model == "claude-sonnet-4-20250514"
        assert generator.api_key_env == "ANTHROPIC_API_KEY"
        assert generator.max_tokens == 4096
        assert generator.name == "anthropic:claude-sonnet-4-20250514"

    def test_from_config(self) -> None:
        config = BackendConfig(model="claude-haiku", max_tokens=512, temperature=0.1)
        generator = AnthropicTextGenerator.from_config(config)
        assert generator.model == "claude-haiku"
        assert generator.max_tokens == 512
        assert generator.temperature == 0.1


class TestAnthropicTextGeneratorGenerate:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        generator = AnthropicTextGenerator()
        client = _client_with(response=_mock_response('{"rules": []}'))

        with patch.object(generator, "_get_client", return_value=client):
            result = await generator.generate("prompt")

        assert result.success
        assert result.content == '{"rules": []}'
        assert result.tokens_used == 15
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_missing_api_key_is_configuration_error(
        self, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("RULELEARNER_TEST_KEY", raising=False)
        generator = AnthropicTextGenerator(api_key_env="RULELEARNER_TEST_KEY")

        result = await generator.generate("prompt")

        assert not result.success
        assert result.error_type == "configuration"
        assert "RULELEARNER_TEST_KEY" in (result.error or "")

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        generator = AnthropicTextGenerator()
        error = anthropic.RateLimitError(
            message="Rate limit exceeded",
            response=MagicMock(status_code=429),
            body=None,
        )
        with patch.object(generator, "_get_client", return_value=_client_with(error)):
            result = await generator.generate("prompt")
        assert not result.success
        assert result.error_type == "rate_limit"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        generator = AnthropicTextGenerator()
        error = anthropic.APITimeoutError(request=MagicMock())
        with patch.object(generator, "_get_client", return_value=_client_with(error)):
            result = await generator.generate("prompt")
        assert result.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_unexpected_exception(self) -> None:
        generator = AnthropicTextGenerator()
        with patch.object(generator, "_get_client", return_value=_client_with(ValueError("boom"))):
            result = await generator.generate("prompt")
        assert result.error_type == "exception"
        assert "boom" in (result.error or "")

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Rate limit exceeded", True),
            ("Server overloaded", True),
            ("HTTP 429", True),
            ("Invalid request", False),
        ],
    )
    def test_detect_rate_limit(self, message: str, expected: bool) -> None:
        assert AnthropicTextGenerator._detect_rate_limit(message) is expected

    @pytest.mark.asyncio
    async def test_health_check_without_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RULELEARNER_TEST_KEY", raising=False)
        generator = AnthropicTextGenerator(api_key_env="RULELEARNER_TEST_KEY")
        assert await generator.health_check() is False


# ============================================================================
# OllamaTextGenerator
# ============================================================================


def _ollama(handler) -> OllamaTextGenerator:
    client = httpx.AsyncClient(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler)
    )
    return OllamaTextGenerator(base_url="http://ollama.test", model="qwen2.5:7b", client=client)


class TestOllamaTextGenerator:
    def test_from_config_uses_ollama_default_model(self) -> None:
        config = BackendConfig(type="ollama", ollama_base_url="http://ollama.test")
        generator = OllamaTextGenerator.from_config(config)
        assert generator.model == "qwen2.5:7b"
        assert generator.name == "ollama:qwen2.5:7b"

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={
                "message": {"role": "assistant", "content": "hello"},
                "prompt_eval_count": 7,
                "eval_count": 3,
            })

        generator = _ollama(handler)
        result = await generator.generate("prompt")
        await generator.close()

        assert result.success
        assert result.content == "hello"
        assert result.tokens_used == 10
        assert seen[0]["stream"] is False
        assert seen[0]["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_rate_limited_status(self) -> None:
        generator = _ollama(lambda request: httpx.Response(429, text="slow down"))
        result = await generator.generate("prompt")
        assert not result.success
        assert result.error_type == "rate_limit"

    @pytest.mark.asyncio
    async def test_server_error_status(self) -> None:
        generator = _ollama(lambda request: httpx.Response(500, text="oops"))
        result = await generator.generate("prompt")
        assert result.error_type == "api_error"

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _ollama(handler).generate("prompt")
        assert result.error_type == "connection"

    @pytest.mark.asyncio
    async def test_health_check_finds_model(self) -> None:
        generator = _ollama(
            lambda request: httpx.Response(200, json={"models": [{"name": "qwen2.5:7b"}]})
        )
        assert await generator.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_missing_model(self) -> None:
        generator = _ollama(
            lambda request: httpx.Response(200, json={"models": [{"name": "llama3:8b"}]})
        )
        assert await generator.health_check() is False


# ============================================================================
# Disabled backend, factory and timeout wrapper
# ============================================================================


class TestDisabledAndFactory:
    @pytest.mark.asyncio
    async def test_disabled_always_fails(self) -> None:
        generator = DisabledTextGenerator()
        result = await generator.generate("prompt")
        assert not result.success
        assert result.error_type == "disabled"
        assert await generator.health_check() is False

    @pytest.mark.parametrize(
        ("backend_type", "expected"),
        [
            ("anthropic", AnthropicTextGenerator),
            ("ollama", OllamaTextGenerator),
            ("disabled", DisabledTextGenerator),
        ],
    )
    def test_create_generator(self, backend_type: str, expected: type) -> None:
        assert isinstance(create_generator(BackendConfig(type=backend_type)), expected)


class _SlowGenerator(TextGenerator):
    @property
    def name(self) -> str:
        return "slow"

    async def generate(self, prompt: str) -> GenerationResult:
        await asyncio.sleep(5)
        return GenerationResult(success=True, content="late")

    async def health_check(self) -> bool:
        return True


class _BrokenGenerator(_SlowGenerator):
    async def generate(self, prompt: str) -> GenerationResult:
        raise KeyError("missing")


class TestGenerateWithTimeout:
    @pytest.mark.asyncio
    async def test_timeout_becomes_result(self) -> None:
        result = await generate_with_timeout(_SlowGenerator(), "prompt", 0.01)
        assert not result.success
        assert result.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_exception_becomes_result(self) -> None:
        result = await generate_with_timeout(_BrokenGenerator(), "prompt", 1.0)
        assert not result.success
        assert result.error_type == "exception"

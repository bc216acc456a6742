"""Contract tests for the Anthropic-backed generation service

These tests pin the service's use of the SDK streaming API and the mapping
of SDK exceptions onto the genpack error taxonomy.
"""

import os
from dataclasses import dataclass
from unittest.mock import Mock, patch

import anthropic
import httpx
import pytest

from genpack.config import GenerationSettings
from genpack.exceptions import GenerationServiceError, TransientNetworkError
from genpack.generation_service import AnthropicGenerationService, StreamOptions
from genpack.models import TokenUsage

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


# ============================================================================
# Mock Response Objects
# ============================================================================


@dataclass
class MockUsage:
    """Mock Anthropic Usage object"""

    input_tokens: int
    output_tokens: int


class MockMessage:
    """Mock Anthropic Message object"""

    def __init__(self, input_tokens: int, output_tokens: int, stop_reason: str = "end_turn"):
        self.usage = MockUsage(input_tokens=input_tokens, output_tokens=output_tokens)
        self.stop_reason = stop_reason


class MockAsyncStream:
    """Mock Anthropic async stream context manager"""

    def __init__(self, content_chunks: list, final_message: MockMessage = None, error: Exception = None):
        self.content_chunks = content_chunks
        self.final_message = final_message
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    @property
    def text_stream(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.content_chunks:
            yield chunk

    async def get_final_message(self):
        return self.final_message


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_client():
    return Mock()


@pytest.fixture
def service(mock_client):
    return AnthropicGenerationService(model="claude-sonnet-4-5", client=mock_client)


async def collect(service, system_instruction="You write code."):
    chunks = []
    result = await service.stream_complete(
        "Generate files", system_instruction, StreamOptions(max_output_tokens=1000, temperature=0.2), chunks.append
    )
    return chunks, result


# ============================================================================
# Test: Initialization
# ============================================================================


def test_init_with_api_key():
    with patch("genpack.generation_service.AsyncAnthropic") as mock_anthropic:
        AnthropicGenerationService(api_key="explicit-key")
        mock_anthropic.assert_called_once_with(
            api_key="explicit-key", timeout=AnthropicGenerationService.DEFAULT_TIMEOUT
        )


def test_init_with_env_api_key():
    with patch("genpack.generation_service.AsyncAnthropic") as mock_anthropic:
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "env-key"}):
            AnthropicGenerationService()
        assert mock_anthropic.call_args.kwargs["api_key"] == "env-key"


def test_init_without_api_key_raises():
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(GenerationServiceError, match="ANTHROPIC_API_KEY"):
            AnthropicGenerationService()


def test_from_settings_uses_anthropic_fields():
    settings = GenerationSettings(
        _env_file=None, anthropic_model="claude-haiku-4-5", anthropic_timeout_seconds=45.0
    )
    with patch("genpack.generation_service.AsyncAnthropic") as mock_anthropic:
        service = AnthropicGenerationService.from_settings(settings, api_key="explicit-key")

    assert service.model == "claude-haiku-4-5"
    assert service.timeout == 45.0
    mock_anthropic.assert_called_once_with(api_key="explicit-key", timeout=45.0)


# ============================================================================
# Test: Streaming
# ============================================================================


@pytest.mark.asyncio
async def test_stream_forwards_chunks_and_usage(service, mock_client):
    mock_client.messages.stream.return_value = MockAsyncStream(
        ['{"files": ', "", '{"a.ts": "x"}}'], MockMessage(input_tokens=100, output_tokens=50)
    )

    chunks, result = await collect(service)

    assert chunks == ['{"files": ', '{"a.ts": "x"}}']
    assert result.usage == TokenUsage(input_tokens=100, output_tokens=50)
    assert result.hit_output_limit is False

    request = mock_client.messages.stream.call_args.kwargs
    assert request["model"] == "claude-sonnet-4-5"
    assert request["max_tokens"] == 1000
    assert request["temperature"] == 0.2
    assert request["system"] == "You write code."
    assert request["messages"] == [{"role": "user", "content": "Generate files"}]


@pytest.mark.asyncio
async def test_empty_system_instruction_is_omitted(service, mock_client):
    mock_client.messages.stream.return_value = MockAsyncStream(["x"], MockMessage(1, 1))

    await collect(service, system_instruction="")

    assert "system" not in mock_client.messages.stream.call_args.kwargs


@pytest.mark.asyncio
async def test_max_tokens_stop_reason(service, mock_client):
    mock_client.messages.stream.return_value = MockAsyncStream(
        ["partial"], MockMessage(10, 1000, stop_reason="max_tokens")
    )

    _, result = await collect(service)

    assert result.hit_output_limit is True


# ============================================================================
# Test: Error Mapping
# ============================================================================


@pytest.mark.asyncio
async def test_timeout_is_transient(service, mock_client):
    mock_client.messages.stream.return_value = MockAsyncStream(
        [], error=anthropic.APITimeoutError(request=REQUEST)
    )
    with pytest.raises(TransientNetworkError):
        await collect(service)


@pytest.mark.asyncio
async def test_connection_error_is_transient(service, mock_client):
    mock_client.messages.stream.return_value = MockAsyncStream(
        [], error=anthropic.APIConnectionError(request=REQUEST)
    )
    with pytest.raises(TransientNetworkError):
        await collect(service)


@pytest.mark.asyncio
async def test_rate_limit_is_transient_with_status(service, mock_client):
    error = anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=REQUEST), body=None
    )
    mock_client.messages.stream.return_value = MockAsyncStream([], error=error)

    with pytest.raises(TransientNetworkError) as exc_info:
        await collect(service)

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_bad_request_is_service_error(service, mock_client):
    error = anthropic.BadRequestError(
        "prompt too long", response=httpx.Response(400, request=REQUEST), body=None
    )
    mock_client.messages.stream.return_value = MockAsyncStream([], error=error)

    with pytest.raises(GenerationServiceError) as exc_info:
        await collect(service)

    assert exc_info.value.status_code == 400

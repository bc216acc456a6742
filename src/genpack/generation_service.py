"""Generation service contract and the Anthropic implementation.

The session only needs one capability from a provider: stream a completion
for a prompt, handing each text chunk to a callback, and say when the stream
has ended. ``GenerationService`` is that contract; ``AnthropicGenerationService``
implements it on top of the Anthropic SDK's async streaming API.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import anthropic
from anthropic import AsyncAnthropic

from .config import GenerationSettings
from .exceptions import GenerationServiceError, TransientNetworkError
from .models import TokenUsage

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]

# HTTP statuses worth retrying on the same request
TRANSIENT_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504, 529}


@dataclass(frozen=True)
class StreamOptions:
    max_output_tokens: int = 32768
    temperature: float = 0.7
    response_format: Optional[str] = "json"


@dataclass(frozen=True)
class StreamResult:
    usage: Optional[TokenUsage] = None
    stop_reason: Optional[str] = None

    @property
    def hit_output_limit(self) -> bool:
        return self.stop_reason == "max_tokens"


class GenerationService(Protocol):
    """Streaming completion contract.

    Chunks passed to ``on_chunk`` are strictly additive: the full response is
    their concatenation. The returned awaitable resolves once the stream has
    ended; usage metadata is optional.
    """

    async def stream_complete(
        self,
        prompt: str,
        system_instruction: str,
        options: StreamOptions,
        on_chunk: ChunkCallback,
    ) -> Optional[StreamResult]:
        ...


class AnthropicGenerationService:
    """``GenerationService`` backed by ``AsyncAnthropic.messages.stream``."""

    DEFAULT_TIMEOUT = 600.0

    def __init__(
        self,
        model: str = "claude-sonnet-4-5",
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[AsyncAnthropic] = None,
    ):
        """
        Args:
            model: Anthropic model name
            api_key: API key; defaults to ANTHROPIC_API_KEY
            timeout: Request timeout in seconds
            client: Preconfigured client (tests, proxies)

        Raises:
            GenerationServiceError: If no API key is available
        """
        self.model = model
        self.timeout = timeout
        if client is not None:
            self.client = client
        else:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise GenerationServiceError(
                    "ANTHROPIC_API_KEY environment variable not set and no api_key provided"
                )
            self.client = AsyncAnthropic(api_key=api_key, timeout=timeout)
        logger.info(f"[Anthropic] Generation service initialized for model: {self.model}")

    @classmethod
    def from_settings(
        cls,
        settings: GenerationSettings,
        api_key: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ) -> "AnthropicGenerationService":
        """Build from the ``anthropic_*`` fields of ``GenerationSettings``."""
        return cls(
            model=settings.anthropic_model,
            api_key=api_key,
            timeout=settings.anthropic_timeout_seconds,
            client=client,
        )

    async def stream_complete(
        self,
        prompt: str,
        system_instruction: str,
        options: StreamOptions,
        on_chunk: ChunkCallback,
    ) -> Optional[StreamResult]:
        request = {
            "model": self.model,
            "max_tokens": options.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": options.temperature,
        }
        if system_instruction:
            request["system"] = system_instruction
        if options.response_format and options.response_format != "json":
            logger.debug(f"[Anthropic] response_format={options.response_format} is prompt-driven")

        try:
            async with self.client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    if text:
                        on_chunk(text)
                message = await stream.get_final_message()
        except anthropic.APITimeoutError as e:
            raise TransientNetworkError(f"Anthropic request timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise TransientNetworkError(f"Anthropic connection error: {e}") from e
        except anthropic.APIStatusError as e:
            status_code = getattr(e, "status_code", None)
            if status_code in TRANSIENT_STATUS_CODES:
                raise TransientNetworkError(
                    f"Anthropic API error {status_code}: {e}", status_code=status_code
                ) from e
            raise GenerationServiceError(
                f"Anthropic API error {status_code}: {e}", status_code=status_code
            ) from e

        stop_reason = getattr(message, "stop_reason", None)
        if stop_reason == "max_tokens":
            logger.warning("[Anthropic] Output was truncated (stop_reason=max_tokens)")

        usage = None
        raw_usage = getattr(message, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage(
                input_tokens=getattr(raw_usage, "input_tokens", 0) or 0,
                output_tokens=getattr(raw_usage, "output_tokens", 0) or 0,
            )
        return StreamResult(usage=usage, stop_reason=stop_reason)

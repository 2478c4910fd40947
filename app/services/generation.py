"""Generation service — streams a reply from the chat model.

``TextGenerator.stream`` yields text deltas as they are produced, then one
terminal chunk carrying the finish reason and token usage.  Any provider
error (on connect or mid-stream) surfaces as ``GenerationFailure``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import AsyncOpenAI

from app.config import Settings
from app.core.errors import GenerationFailure
from app.core.logging import get_logger
from app.schemas.chat import ModelTurn
from app.schemas.usage import TokenUsage

logger = get_logger(__name__)


@dataclass
class GenerationChunk:
    """A text delta, or the terminal chunk when ``done`` is set."""

    text: str = ""
    done: bool = False
    finish_reason: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


class TextGenerator(Protocol):
    model: str

    def stream(self, system: str, turns: list[ModelTurn]) -> AsyncIterator[GenerationChunk]:
        ...


def _usage_from_openai(usage: Any) -> TokenUsage:
    completion_details = getattr(usage, "completion_tokens_details", None)
    prompt_details = getattr(usage, "prompt_tokens_details", None)
    return TokenUsage(
        input_tokens=getattr(usage, "prompt_tokens", None),
        output_tokens=getattr(usage, "completion_tokens", None),
        total_tokens=getattr(usage, "total_tokens", None),
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", None),
        cached_input_tokens=getattr(prompt_details, "cached_tokens", None),
    )


class OpenAIGenerator:
    """Streaming chat completions through the OpenAI API."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float,
        max_tokens: int | None = None,
    ) -> None:
        self._client = client
        self.model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIGenerator":
        client = AsyncOpenAI(
            api_key=settings.openai_api_key or None,
            base_url=settings.openai_base_url,
        )
        return cls(
            client,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    async def stream(self, system: str, turns: list[ModelTurn]) -> AsyncIterator[GenerationChunk]:
        messages: list[dict] = [{"role": "system", "content": system}]
        messages.extend(t.model_dump() for t in turns)

        extra: dict = {}
        if self._max_tokens:
            extra["max_tokens"] = self._max_tokens

        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self._temperature,
                stream=True,
                stream_options={"include_usage": True},
                **extra,
            )
        except Exception as e:
            raise GenerationFailure(str(e)) from e

        finish_reason: str | None = None
        usage = TokenUsage()
        try:
            async for chunk in stream:
                # Usage info (last chunk, no choices)
                if getattr(chunk, "usage", None):
                    usage = _usage_from_openai(chunk.usage)

                choice = chunk.choices[0] if chunk.choices else None
                if not choice:
                    continue
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                if choice.delta and choice.delta.content:
                    yield GenerationChunk(text=choice.delta.content)
        except GenerationFailure:
            raise
        except Exception as e:
            raise GenerationFailure(f"Stream error: {e}") from e

        yield GenerationChunk(done=True, finish_reason=finish_reason or "stop", usage=usage)

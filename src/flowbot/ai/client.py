"""AI client abstraction with Anthropic and OpenAI backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from flowbot.config import AIConfig, AnthropicConfig, OpenAIConfig
from flowbot.core.errors import ExternalServiceError
from flowbot.log import get_logger

logger = get_logger(__name__)


@dataclass
class AIResponse:
    """Unified response from any AI backend."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None  # Backend-specific raw response


class AIClient(ABC):
    """Abstract base class for AI backends."""

    def __init__(self, ai_config: AIConfig):
        self._ai_config = ai_config

    @property
    def model_name(self) -> str:
        return self._ai_config.model

    @abstractmethod
    async def complete(self, system_prompts: list[str], turns: list[dict[str, str]]) -> AIResponse:
        """Send system prompts and ``{"role", "content"}`` turns; return the reply.

        Provider failures raise :class:`ExternalServiceError`.
        """
        ...


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, ai_config: AIConfig):
        import anthropic

        super().__init__(ai_config)
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def complete(self, system_prompts: list[str], turns: list[dict[str, str]]) -> AIResponse:
        import anthropic

        model = self._ai_config.model
        logger.debug("api_request", backend="anthropic", model=model, message_count=len(turns))
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=self._ai_config.max_tokens,
                temperature=self._ai_config.temperature,
                system="\n\n".join(p for p in system_prompts if p),
                messages=turns,
            )
        except anthropic.APIError as e:
            raise ExternalServiceError("anthropic", str(e)) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        logger.debug(
            "api_response",
            backend="anthropic",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return AIResponse(
            text=text.strip(),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            raw=response,
        )


class OpenAIClient(AIClient):
    """OpenAI chat completions backend."""

    def __init__(self, config: OpenAIConfig, ai_config: AIConfig):
        import openai

        super().__init__(ai_config)
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
        )

    async def complete(self, system_prompts: list[str], turns: list[dict[str, str]]) -> AIResponse:
        import openai

        model = self._ai_config.model
        messages = [{"role": "system", "content": p} for p in system_prompts if p] + turns
        logger.debug("api_request", backend="openai", model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self._ai_config.max_tokens,
                temperature=self._ai_config.temperature,
            )
        except openai.OpenAIError as e:
            raise ExternalServiceError("openai", str(e)) from e

        text = response.choices[0].message.content if response.choices else ""
        usage = response.usage
        logger.debug(
            "api_response",
            backend="openai",
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
        return AIResponse(
            text=(text or "").strip(),
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            raw=response,
        )

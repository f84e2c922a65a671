from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from openai import OpenAI
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from coqui.config import ModelConfig, get_model_config, settings
from coqui.models.agent_schemas import ModelResponse, ProviderError, TokenUsage, ToolCall

logger = logging.getLogger(__name__)


class ModelProvider(Protocol):
    def complete(self, messages: list[dict], tools: list[dict]) -> ModelResponse: ...


def _create_openai_client(base_url: str = "") -> OpenAI:
    """Create an OpenAI client, optionally wrapped with PromptLayer."""
    url = base_url or settings.llm_base_url
    if settings.promptlayer_api_key:
        from promptlayer import PromptLayer

        promptlayer_client = PromptLayer(api_key=settings.promptlayer_api_key)
        return promptlayer_client.openai.OpenAI(
            api_key=settings.llm_api_key,
            base_url=url,
        )
    return OpenAI(
        api_key=settings.llm_api_key,
        base_url=url,
    )


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LLMService:
    def __init__(self, config: ModelConfig | None = None) -> None:
        if config is None:
            config = get_model_config()
        self._config = config
        self.client = _create_openai_client(config.base_url)
        self.model = config.model or settings.llm_model
        self._temperature = config.temperature
        self._max_tokens = config.max_tokens

    def _get_temperature(self) -> float:
        return self._temperature if self._temperature is not None else 0.2

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=2, max=30))
    def generate_with_tools(self, messages: list[dict], tools: list[dict]):
        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self._get_temperature(),
        }
        if tools:
            kwargs["tools"] = tools
        if self._max_tokens is not None:
            kwargs["max_tokens"] = self._max_tokens
        if settings.promptlayer_api_key:
            kwargs["pl_tags"] = ["coqui", "agent-loop"]
        return self.client.chat.completions.create(**kwargs)

    def complete(self, messages: list[dict], tools: list[dict]) -> ModelResponse:
        try:
            response = self.generate_with_tools(messages, tools)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise ProviderError(f"Model provider failed ({self.model}): {cause}") from cause

        if not response.choices:
            raise ProviderError(f"Model provider returned no choices ({self.model})")
        message = response.choices[0].message

        calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in (message.tool_calls or [])
        ]

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return ModelResponse(content=message.content or "", tool_calls=calls, usage=usage)


def create_provider(config: ModelConfig) -> ModelProvider:
    return LLMService(config)

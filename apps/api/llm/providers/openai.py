"""OpenAI chat completions adapter (also used for OpenAI-compatible vendors)."""

from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from llm.base import BaseLLMProvider
from llm.types import LLMRequest, LLMResponse, LLMUsage, ProviderConfig, ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    provider_name = "openai"
    default_model = "gpt-3.5-turbo"

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        # SDK retries are disabled: the orchestrator owns the retry budget.
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url or None,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    async def generate_completion(self, request: LLMRequest) -> LLMResponse:
        model = request.model or self.config.model or self.default_model
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[message.as_dict() for message in request.messages],
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                stream=False,
            )
        except OpenAIError as exc:
            raise ProviderError(self.name, f"chat completion failed: {exc}") from exc

        if not response.choices:
            raise ProviderError(self.name, "response contained no choices")
        choice = response.choices[0]
        content = (choice.message.content or "").strip() if choice.message else ""
        if not content:
            raise ProviderError(self.name, "response contained no content")

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or model,
            provider=self.name,
            usage=LLMUsage(
                prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
                total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
            ),
            finish_reason=choice.finish_reason,
        )

    async def is_available(self, timeout_seconds: float = 5.0) -> bool:
        try:
            await self.client.with_options(timeout=timeout_seconds).models.list()
            return True
        except OpenAIError as exc:
            logger.warning("%s service unavailable: %s", self.name, exc)
            return False

    async def aclose(self) -> None:
        await self.client.close()


class DeepSeekProvider(OpenAIProvider):
    """DeepSeek speaks the OpenAI wire format under its own base URL."""

    provider_name = "deepseek"
    default_model = "deepseek-chat"

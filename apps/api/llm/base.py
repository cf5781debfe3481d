"""Provider capability interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from llm.types import LLMMessage, LLMRequest, LLMResponse, ProviderConfig


ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert survey researcher and data analyst. "
    "Give precise, well-structured and actionable analysis."
)
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 2000


def build_analysis_request(prompt: str, context: Optional[str] = None) -> LLMRequest:
    """Expert persona, optional context, then the user's prompt at low temperature."""
    messages = [LLMMessage(role="system", content=ANALYSIS_SYSTEM_PROMPT)]
    if context:
        messages.append(LLMMessage(role="system", content=f"Context: {context}"))
    messages.append(LLMMessage(role="user", content=prompt))
    return LLMRequest(
        messages=messages,
        temperature=ANALYSIS_TEMPERATURE,
        max_tokens=ANALYSIS_MAX_TOKENS,
    )


class BaseLLMProvider(ABC):
    """
    One vendor adapter. Subclasses translate the canonical request into
    their wire format and back, raising ProviderError on any failure.
    Adapters make a single attempt per call; retries belong to the
    orchestrator.
    """

    provider_name: str = "base"

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name or self.provider_name

    @abstractmethod
    async def generate_completion(self, request: LLMRequest) -> LLMResponse:
        raise NotImplementedError

    async def generate_analysis(self, prompt: str, context: Optional[str] = None) -> str:
        response = await self.generate_completion(build_analysis_request(prompt, context))
        return response.content

    @abstractmethod
    async def is_available(self, timeout_seconds: float = 5.0) -> bool:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release HTTP resources held by the adapter."""

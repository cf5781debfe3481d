"""Canonical request/response contracts shared by every LLM provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence


Role = Literal["system", "user", "assistant"]


class ProviderError(RuntimeError):
    """Raised by a provider adapter when a single call fails."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class AllProvidersExhaustedError(RuntimeError):
    """Raised when every registered provider failed after its retries."""

    def __init__(self, attempted: Sequence[str]):
        self.attempted = list(attempted)
        super().__init__("AI service is temporarily unavailable. Please try again later.")


class NoProvidersConfiguredError(AllProvidersExhaustedError):
    """Raised when the orchestrator has nothing registered to try."""


@dataclass(frozen=True)
class LLMMessage:
    role: Role
    content: str

    def as_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMRequest:
    messages: List[LLMMessage]
    temperature: float = 0.7
    max_tokens: int = 1000
    stream: bool = False
    model: Optional[str] = None


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class LLMResponse:
    content: str
    model: str
    provider: str
    usage: LLMUsage = field(default_factory=LLMUsage)
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    api_key: str
    base_url: str
    model: str
    timeout_seconds: float = 30.0

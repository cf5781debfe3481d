"""LLM provider adapters and the fallback orchestrator."""

from llm.base import BaseLLMProvider, build_analysis_request
from llm.manager import LLMOrchestrator, build_orchestrator
from llm.types import (
    AllProvidersExhaustedError,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    NoProvidersConfiguredError,
    ProviderConfig,
    ProviderError,
)

__all__ = [
    "AllProvidersExhaustedError",
    "BaseLLMProvider",
    "LLMMessage",
    "LLMOrchestrator",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "NoProvidersConfiguredError",
    "ProviderConfig",
    "ProviderError",
    "build_analysis_request",
    "build_orchestrator",
]

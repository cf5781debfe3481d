"""Multi-provider LLM orchestration with ordered fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type

from config import Settings, settings as default_settings
from llm.base import BaseLLMProvider, build_analysis_request
from llm.providers import DeepSeekProvider, HuggingFaceProvider, OpenAIProvider, QwenProvider
from llm.types import (
    AllProvidersExhaustedError,
    LLMRequest,
    LLMResponse,
    NoProvidersConfiguredError,
    ProviderConfig,
    ProviderError,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class LLMOrchestrator:
    """
    Registry of named provider adapters tried in a fixed priority order.

    Each adapter gets its own retry budget (bounded attempts, linear
    backoff, per-attempt timeout). Only when that budget is spent does the
    orchestrator move to the next adapter. Adapters are tried one at a
    time, never raced. Health results never change the order.
    """

    def __init__(
        self,
        *,
        priority: Iterable[str] = (),
        retry_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        call_timeout_seconds: float = 30.0,
        health_timeout_seconds: float = 5.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._providers: Dict[str, BaseLLMProvider] = {}
        self._priority: List[str] = []
        for name in priority:
            if name and name not in self._priority:
                self._priority.append(name)
        self.retry_attempts = max(int(retry_attempts), 1)
        self.retry_delay_seconds = max(float(retry_delay_seconds), 0.0)
        self.call_timeout_seconds = float(call_timeout_seconds)
        self.health_timeout_seconds = float(health_timeout_seconds)
        self._sleep = sleep
        self._frozen = False

    def register_adapter(self, name: str, provider: BaseLLMProvider) -> None:
        if self._frozen:
            raise RuntimeError("LLM provider registry is frozen; restart to change providers.")
        if not name:
            raise ValueError("Provider name is required.")
        if name in self._providers:
            raise ValueError(f"Provider {name} is already registered.")
        self._providers[name] = provider
        if name not in self._priority:
            self._priority.append(name)

    def freeze(self) -> "LLMOrchestrator":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def available_providers(self) -> List[str]:
        """Registered provider names in the order they will be tried."""
        return [name for name in self._priority if name in self._providers]

    async def _call_with_retry(self, name: str, provider: BaseLLMProvider, request: LLMRequest) -> LLMResponse:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await asyncio.wait_for(
                    provider.generate_completion(request),
                    timeout=self.call_timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "LLM provider %s timed out after %ss (attempt %s/%s)",
                    name,
                    self.call_timeout_seconds,
                    attempt,
                    self.retry_attempts,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "LLM provider %s failed (attempt %s/%s): %s",
                    name,
                    attempt,
                    self.retry_attempts,
                    exc,
                )
            if attempt < self.retry_attempts and self.retry_delay_seconds > 0:
                await self._sleep(self.retry_delay_seconds * attempt)
        raise last_error or ProviderError(name, "no attempts were made")

    async def generate_completion(self, request: LLMRequest) -> LLMResponse:
        order = self.available_providers()
        if not order:
            raise NoProvidersConfiguredError([])

        attempted: List[str] = []
        for name in order:
            attempted.append(name)
            logger.debug("Trying LLM provider: %s", name)
            try:
                response = await self._call_with_retry(name, self._providers[name], request)
            except Exception as exc:
                logger.warning("LLM provider %s exhausted its retries: %s", name, exc)
                continue
            logger.info("Generated completion using %s", name)
            return response

        logger.error("All LLM providers failed: %s", ", ".join(attempted))
        raise AllProvidersExhaustedError(attempted)

    async def generate_analysis(self, prompt: str, context: Optional[str] = None) -> str:
        response = await self.generate_completion(build_analysis_request(prompt, context))
        return response.content

    async def _probe(self, name: str, provider: BaseLLMProvider) -> Tuple[str, bool]:
        try:
            healthy = await asyncio.wait_for(
                provider.is_available(timeout_seconds=self.health_timeout_seconds),
                timeout=self.health_timeout_seconds,
            )
            return name, bool(healthy)
        except Exception as exc:
            logger.warning("Health check failed for %s: %s", name, exc)
            return name, False

    async def check_health(self) -> Dict[str, bool]:
        results = await asyncio.gather(
            *(self._probe(name, self._providers[name]) for name in self.available_providers())
        )
        return dict(results)

    async def aclose(self) -> None:
        for name, provider in self._providers.items():
            try:
                await provider.aclose()
            except Exception as exc:
                logger.warning("Failed to close LLM provider %s: %s", name, exc)


PROVIDER_CLASSES: Dict[str, Type[BaseLLMProvider]] = {
    "huggingface": HuggingFaceProvider,
    "openai": OpenAIProvider,
    "deepseek": DeepSeekProvider,
    "qwen": QwenProvider,
}


def _usable_api_key(api_key: Optional[str]) -> str:
    """Treat blank and placeholder keys as unconfigured."""
    value = (api_key or "").strip()
    if not value or "your_" in value or value == "test-key":
        return ""
    return value


def resolve_provider_configs(config: Settings) -> List[ProviderConfig]:
    """Provider configs that have credentials, in priority order."""
    ordered: List[str] = []
    for name in [config.LLM_PRIMARY_PROVIDER, *config.LLM_FALLBACK_PROVIDERS, *PROVIDER_CLASSES]:
        key = (name or "").strip().lower()
        if key in PROVIDER_CLASSES and key not in ordered:
            ordered.append(key)

    resolved: List[ProviderConfig] = []
    for name in ordered:
        prefix = name.upper()
        api_key = _usable_api_key(getattr(config, f"{prefix}_API_KEY", ""))
        if not api_key:
            continue
        resolved.append(
            ProviderConfig(
                name=name,
                api_key=api_key,
                base_url=getattr(config, f"{prefix}_BASE_URL", ""),
                model=getattr(config, f"{prefix}_MODEL", ""),
                timeout_seconds=float(config.LLM_TIMEOUT_SECONDS),
            )
        )
    return resolved


def build_orchestrator(config: Optional[Settings] = None) -> LLMOrchestrator:
    """Build the process-wide orchestrator from settings and freeze its registry."""
    config = config or default_settings
    provider_configs = resolve_provider_configs(config)
    orchestrator = LLMOrchestrator(
        priority=[item.name for item in provider_configs],
        retry_attempts=config.LLM_RETRY_ATTEMPTS,
        retry_delay_seconds=config.LLM_RETRY_DELAY_SECONDS,
        call_timeout_seconds=config.LLM_TIMEOUT_SECONDS,
        health_timeout_seconds=config.LLM_HEALTH_TIMEOUT_SECONDS,
    )
    for provider_config in provider_configs:
        provider_cls = PROVIDER_CLASSES[provider_config.name]
        orchestrator.register_adapter(provider_config.name, provider_cls(provider_config))
    logger.info("Initialized %s LLM providers: %s", len(provider_configs), orchestrator.available_providers())
    return orchestrator.freeze()

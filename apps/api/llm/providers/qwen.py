"""Alibaba DashScope (Qwen) text-generation adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from llm.base import BaseLLMProvider
from llm.types import LLMRequest, LLMResponse, LLMUsage, ProviderConfig, ProviderError

logger = logging.getLogger(__name__)

GENERATION_PATH = "/services/aigc/text-generation/generation"


class QwenProvider(BaseLLMProvider):
    provider_name = "qwen"
    default_model = "qwen-turbo"

    def __init__(self, config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
                "X-DashScope-SSE": "disable",
            },
            transport=transport,
        )

    def _model(self, request: Optional[LLMRequest] = None) -> str:
        return (request.model if request else None) or self.config.model or self.default_model

    def _payload(self, request: LLMRequest) -> Dict[str, Any]:
        return {
            "model": self._model(request),
            "input": {"messages": [message.as_dict() for message in request.messages]},
            "parameters": {
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "top_p": 0.8,
            },
        }

    async def generate_completion(self, request: LLMRequest) -> LLMResponse:
        try:
            response = await self.client.post(GENERATION_PATH, json=self._payload(request))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"generation request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(self.name, "generation response was not JSON") from exc

        output = data.get("output") or {}
        text = output.get("text")
        finish_reason = output.get("finish_reason")
        choices = output.get("choices")
        if not text and isinstance(choices, list) and choices:
            first = choices[0] or {}
            text = (first.get("message") or {}).get("content")
            finish_reason = first.get("finish_reason") or finish_reason
        if not text:
            raise ProviderError(self.name, data.get("message") or "generation returned no text")

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens", 0) or 0)
        completion_tokens = int(usage.get("output_tokens", 0) or 0)
        return LLMResponse(
            content=str(text).strip(),
            model=self._model(request),
            provider=self.name,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=int(usage.get("total_tokens", 0) or prompt_tokens + completion_tokens),
            ),
            finish_reason=finish_reason or "stop",
        )

    async def is_available(self, timeout_seconds: float = 5.0) -> bool:
        # DashScope has no cheap health endpoint; a 1-token generation stands in.
        payload = {
            "model": self._model(),
            "input": {"messages": [{"role": "user", "content": "ping"}]},
            "parameters": {"max_tokens": 1},
        }
        try:
            response = await self.client.post(GENERATION_PATH, json=payload, timeout=timeout_seconds)
            return response.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("%s service unavailable: %s", self.name, exc)
            return False

    async def aclose(self) -> None:
        await self.client.aclose()

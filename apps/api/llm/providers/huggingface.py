"""Hugging Face Inference API adapter."""

from __future__ import annotations

import logging
import re
from typing import List, Optional

import httpx

from llm.base import BaseLLMProvider
from llm.types import LLMMessage, LLMRequest, LLMResponse, LLMUsage, ProviderConfig, ProviderError

logger = logging.getLogger(__name__)

_ROLE_PREFIX = {"system": "System", "user": "Human", "assistant": "Assistant"}
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_WORD_RE = re.compile(r"[a-zA-Z]+")
_LEADING_ROLE_RE = re.compile(r"^(Assistant:|Human:|System:)\s*")


def format_messages_as_prompt(messages: List[LLMMessage]) -> str:
    lines = [f"{_ROLE_PREFIX.get(message.role, message.role)}: {message.content}" for message in messages]
    return "\n".join(lines) + "\nAssistant:"


def clean_generated_text(generated: str, prompt: str) -> str:
    """Drop the echoed prompt, a leading role tag and repeated lines."""
    cleaned = generated.replace(prompt, "", 1).strip()
    cleaned = _LEADING_ROLE_RE.sub("", cleaned).strip()
    seen = set()
    unique_lines = []
    for line in cleaned.split("\n"):
        if line in seen:
            continue
        seen.add(line)
        unique_lines.append(line)
    return "\n".join(unique_lines).strip()


def estimate_tokens(text: str) -> int:
    return len(_CJK_RE.findall(text or "")) * 2 + len(_WORD_RE.findall(text or ""))


class HuggingFaceProvider(BaseLLMProvider):
    provider_name = "huggingface"
    default_model = "microsoft/DialoGPT-medium"

    def __init__(self, config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def _model(self, request: Optional[LLMRequest] = None) -> str:
        return (request.model if request else None) or self.config.model or self.default_model

    async def generate_completion(self, request: LLMRequest) -> LLMResponse:
        model = self._model(request)
        prompt = format_messages_as_prompt(request.messages)
        payload = {
            "inputs": prompt,
            "parameters": {
                "max_length": request.max_tokens,
                "temperature": request.temperature,
                "do_sample": True,
                "top_p": 0.9,
            },
            "options": {"wait_for_model": True, "use_cache": False},
        }
        try:
            response = await self.client.post(f"/models/{model}", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"inference request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(self.name, "inference response was not JSON") from exc

        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(self.name, str(data["error"]))
        generated = ""
        if isinstance(data, list) and data and isinstance(data[0], dict):
            generated = str(data[0].get("generated_text") or "")
        elif isinstance(data, dict):
            generated = str(data.get("generated_text") or "")

        content = clean_generated_text(generated, prompt)
        if not content:
            raise ProviderError(self.name, "inference returned no usable text")

        prompt_tokens = estimate_tokens(prompt)
        completion_tokens = estimate_tokens(content)
        return LLMResponse(
            content=content,
            model=model,
            provider=self.name,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
        )

    async def is_available(self, timeout_seconds: float = 5.0) -> bool:
        try:
            response = await self.client.get(f"/models/{self._model()}", timeout=timeout_seconds)
            return response.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("%s service unavailable: %s", self.name, exc)
            return False

    async def aclose(self) -> None:
        await self.client.aclose()

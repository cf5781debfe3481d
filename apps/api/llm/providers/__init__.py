"""Vendor adapters implementing the provider capability interface."""

from llm.providers.huggingface import HuggingFaceProvider
from llm.providers.openai import DeepSeekProvider, OpenAIProvider
from llm.providers.qwen import QwenProvider

__all__ = [
    "DeepSeekProvider",
    "HuggingFaceProvider",
    "OpenAIProvider",
    "QwenProvider",
]

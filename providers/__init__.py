"""
Provider adapters: one streamed model turn per call, normalized to Chunks.
"""

from typing import Dict, Optional

import httpx

from config import PROVIDERS
from providers.base import ProviderAdapter, StreamOptions  # noqa: F401
from providers.errors import ProviderError, classify_http_error  # noqa: F401
from providers.reassembler import StreamReassembler, NativeCallAccumulator  # noqa: F401
from providers.transport import HttpStreamClient, RetryPolicy  # noqa: F401
from providers.gemini import GeminiAdapter
from providers.openai_compat import OpenAICompatAdapter, OPENAI_COMPATIBLE_PROVIDERS
from providers.anthropic import AnthropicAdapter
from providers.ollama import OllamaAdapter
from providers.bedrock import BedrockAdapter

_ADAPTER_CLASSES = {
    "gemini": GeminiAdapter,
    "anthropic": AnthropicAdapter,
    "ollama": OllamaAdapter,
    "bedrock": BedrockAdapter,
}


def create_adapter(provider: str, transport: Optional[httpx.AsyncBaseTransport] = None,
                   retry: Optional[RetryPolicy] = None) -> ProviderAdapter:
    """Instantiate the adapter for a provider id."""
    if provider in OPENAI_COMPATIBLE_PROVIDERS:
        return OpenAICompatAdapter(provider, transport=transport, retry=retry)
    cls = _ADAPTER_CLASSES.get(provider)
    if cls is None:
        raise ValueError(f"Unknown provider: {provider}")
    return cls(transport=transport, retry=retry)


def create_all_adapters(transport: Optional[httpx.AsyncBaseTransport] = None,
                        retry: Optional[RetryPolicy] = None) -> Dict[str, ProviderAdapter]:
    return {p["id"]: create_adapter(p["id"], transport, retry) for p in PROVIDERS}

"""模块说明：__init__。"""

from nene.providers.base import FinishReason, LLMProvider, LLMResponse, StreamChunk, ToolCallRequest
from nene.providers.litellm_provider import LiteLLMProvider
from nene.providers.registry import ProviderRegistry

__all__ = [
    "FinishReason",
    "LLMProvider",
    "LLMResponse",
    "StreamChunk",
    "ToolCallRequest",
    "LiteLLMProvider",
    "ProviderRegistry",
]

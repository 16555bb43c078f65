"""基于 LiteLLM 的多厂商模型后端。"""

import json
import os
from typing import Any, AsyncIterator

import litellm
from litellm import acompletion
from loguru import logger

from nene.errors import ProviderError
from nene.providers.base import FinishReason, LLMProvider, LLMResponse, StreamChunk, ToolCallRequest


def _parse_arguments(raw: Any) -> dict[str, Any]:
    """工具参数可能是 JSON 字符串，也可能已经是 dict。"""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
    return args if isinstance(args, dict) else {"raw": raw}


class LiteLLMProvider(LLMProvider):
    """类说明：LiteLLMProvider。"""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "openai/gpt-4o"
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        # OpenRouter 通过 key 前缀或 base URL 识别
        self.is_openrouter = bool(
            (api_key and api_key.startswith("sk-or-")) or
            (api_base and "openrouter" in api_base)
        )

        # 其余自定义 base URL 视为 OpenAI 兼容服务（vLLM 等）
        self.is_vllm = bool(api_base) and not self.is_openrouter

        if api_key:
            if self.is_openrouter:
                os.environ["OPENROUTER_API_KEY"] = api_key
            elif self.is_vllm:
                os.environ["OPENAI_API_KEY"] = api_key
            elif "deepseek" in default_model:
                os.environ.setdefault("DEEPSEEK_API_KEY", api_key)
            elif "anthropic" in default_model or "claude" in default_model:
                os.environ.setdefault("ANTHROPIC_API_KEY", api_key)
            elif "azure" in default_model:
                os.environ.setdefault("AZURE_API_KEY", api_key)
            elif "openai" in default_model or "gpt" in default_model:
                os.environ["OPENAI_API_KEY"] = api_key
            elif "gemini" in default_model.lower():
                os.environ.setdefault("GEMINI_API_KEY", api_key)
            elif "groq" in default_model:
                os.environ.setdefault("GROQ_API_KEY", api_key)

        if api_base:
            litellm.api_base = api_base

        litellm.suppress_debug_info = True

    def _resolve_model(self, model: str | None) -> str:
        model = model or self.default_model

        if self.is_openrouter and not model.startswith("openrouter/"):
            model = f"openrouter/{model}"

        if "gemini" in model.lower() and not model.startswith(("gemini/", "openrouter/")):
            model = f"gemini/{model}"

        return model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(model),
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """异步函数说明：chat。"""
        kwargs = self._build_kwargs(messages, tools, model, max_tokens, temperature)
        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            raise ProviderError(f"Error calling LLM: {e}") from e
        return self._parse_response(response)

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[StreamChunk]:
        """流式调用。

        工具调用参数以分片形式按 index 陆续到达，这里先拼接，
        在流结束时一次性产出完整的 ToolCallRequest。
        """
        kwargs = self._build_kwargs(messages, tools, model, max_tokens, temperature)
        kwargs["stream"] = True

        pending: dict[int, dict[str, str]] = {}
        finish_reason = ""

        try:
            response = await acompletion(**kwargs)
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta

                content = getattr(delta, "content", None)
                if content:
                    yield StreamChunk(delta=content)

                for tc in getattr(delta, "tool_calls", None) or []:
                    index = tc.index if tc.index is not None else len(pending)
                    slot = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function is not None:
                        if tc.function.name:
                            slot["name"] = tc.function.name
                        if tc.function.arguments:
                            slot["arguments"] += tc.function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except Exception as e:
            raise ProviderError(f"Error calling LLM: {e}") from e

        for index in sorted(pending):
            slot = pending[index]
            yield StreamChunk(tool_call=ToolCallRequest(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            ))

        if pending and finish_reason != FinishReason.TOOL_CALLS:
            logger.debug(f"Stream ended with {len(pending)} tool call(s) and finish_reason={finish_reason!r}")
            finish_reason = FinishReason.TOOL_CALLS
        yield StreamChunk(finish_reason=finish_reason or FinishReason.STOP)

    def _parse_response(self, response: Any) -> LLMResponse:
        """函数说明：_parse_response。"""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if hasattr(message, "tool_calls") and message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(ToolCallRequest(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=_parse_arguments(tc.function.arguments),
                ))

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or FinishReason.STOP,
            usage=usage,
        )

    def get_default_model(self) -> str:
        """函数说明：get_default_model。"""
        return self.default_model

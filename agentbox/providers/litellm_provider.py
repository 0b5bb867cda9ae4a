"""
LiteLLM 提供者实现模块 - 多 LLM 服务商的统一调用层。

LiteLLM 是一个 Python 库，它将 100+ 家 LLM 服务商的 API 统一为 OpenAI 兼容格式。
类比 Java 世界：LiteLLM 类似于 JDBC - 一套接口，多种数据库驱动。

核心设计：
  1. 模型名称解析：根据 registry.py 中的元数据自动为模型名添加 LiteLLM 前缀
     例如 "ollama:llama3" → "ollama_chat/llama3"，"gemini-2.0-flash" → "gemini/gemini-2.0-flash"
  2. 网关检测：自动识别 OpenRouter，应用网关前缀
  3. 错误上抛：LLM 调用失败或超时时抛出 ProviderError，由本轮对话的调用方决定如何处理，
     不伪造任何回复文本
  4. 可取消：调用方取消所在的 asyncio.Task 时，进行中的 HTTP 请求随之中止

数据流：
  ToolLoopExecutor → LiteLLMProvider.chat() → _resolve_model() → litellm.acompletion() → LLM API
"""

import json
import os
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from agentbox.providers.base import LLMProvider, LLMResponse, ProviderError, ToolCallRequest
from agentbox.providers.registry import find_by_model, find_gateway, normalize_model


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的 LLM 提供者实现类。

    构造参数：
        api_key: API 密钥
        api_base: 自定义 API 基础 URL（用于代理/网关/本地部署）
        default_model: 默认模型名称
        extra_headers: 额外的 HTTP 请求头
        provider_name: 配置文件中的提供者名称，用于网关检测
        request_timeout: 单次请求超时（秒）
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-20250514",
        extra_headers: dict[str, str] | None = None,
        provider_name: str | None = None,
        request_timeout: float = 120.0,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.request_timeout = request_timeout

        self._gateway = find_gateway(provider_name, api_key)

        if api_key:
            self._setup_env(api_key, default_model)

        # 禁用 LiteLLM 的调试日志输出（默认很啰嗦）
        litellm.suppress_debug_info = True
        # 自动丢弃服务商不支持的参数
        litellm.drop_params = True

    def _setup_env(self, api_key: str, model: str) -> None:
        """LiteLLM 内部通过环境变量查找各服务商的 API Key，这里按服务商元数据设置。"""
        spec = self._gateway or find_by_model(model)
        if not spec:
            return
        if self._gateway:
            os.environ[spec.env_key] = api_key
        else:
            os.environ.setdefault(spec.env_key, api_key)

    def _resolve_model(self, model: str) -> str:
        """
        解析模型名称，添加 LiteLLM 所需的服务商前缀。

        - 网关模式：统一加网关前缀（"claude-3" → "openrouter/claude-3"）
        - 标准模式：已知服务商且未带前缀时补上前缀
        """
        model = normalize_model(model)

        if self._gateway:
            prefix = self._gateway.litellm_prefix
            if prefix and not model.startswith(f"{prefix}/"):
                model = f"{prefix}/{model}"
            return model

        spec = find_by_model(model)
        if spec and spec.litellm_prefix:
            if model.startswith("ollama/"):
                model = model[len("ollama/"):]
            if not any(model.startswith(s) for s in spec.skip_prefixes):
                model = f"{spec.litellm_prefix}/{model}"

        return model

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送对话补全请求。

        Agent 的每一轮"思考"都会调用此方法：把消息和工具定义发送给 LLM，
        拿回文本回复或工具调用请求。失败时抛出 ProviderError。
        """
        model = self._resolve_model(model or self.default_model)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.request_timeout,
        }

        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            logger.error(f"LLM call failed ({model}): {e}")
            raise ProviderError(f"Error calling LLM {model}: {e}") from e

    def _parse_response(self, response: Any) -> LLMResponse:
        """将 LiteLLM 的原始响应（OpenAI 格式）解析为统一的 LLMResponse。"""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if hasattr(message, "tool_calls") and message.tool_calls:
            for tc in message.tool_calls:
                args = tc.function.arguments
                if isinstance(args, str):
                    try:
                        args = json.loads(args) if args else {}
                    except json.JSONDecodeError:
                        args = {"raw": args}

                tool_calls.append(ToolCallRequest(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=args,
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
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            reasoning_content=getattr(message, "reasoning_content", None),
        )

    def get_default_model(self) -> str:
        """获取默认模型名称。"""
        return self.default_model

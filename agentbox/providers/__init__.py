"""
LLM 提供者抽象层模块（providers 包）。

本模块是 agentbox 与各种大语言模型（LLM）服务之间的桥梁层。
核心设计思想：通过 LiteLLM 库实现"一套接口，多家 LLM"的统一调用。

模块组成：
- base.py             : LLMProvider 抽象基类、LLMResponse、ProviderError
- litellm_provider.py : LLMProvider 的实现类，基于 LiteLLM 对接所有 LLM 服务商
- registry.py         : 提供者注册表，集中管理各服务商的元数据（API Key、模型前缀等）
"""

from agentbox.providers.base import GenerateOptions, LLMProvider, LLMResponse, ProviderError, ToolCallRequest
from agentbox.providers.litellm_provider import LiteLLMProvider

__all__ = [
    "GenerateOptions",
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "ProviderError",
    "ToolCallRequest",
]

"""
LLM 提供者基类定义模块。

本模块定义了与大语言模型交互的核心抽象接口，类似于 Java 中的 Interface + DTO 模式：
- ToolCallRequest : LLM 返回的工具调用请求
- LLMResponse     : LLM 的统一响应格式（文本内容、工具调用、token 用量等）
- GenerateOptions : 单次生成的调用参数（模型、所属 Agent、最大 token 数）
- ProviderError   : 生成调用失败或超时
- LLMProvider     : 抽象基类，定义了所有 LLM 提供者必须实现的接口

架构角色：
  Tool Loop → LLMProvider.generate_with_tools() → chat() → LLM API → LLMResponse

两个对外方法：
  - generate()            : 纯文本生成，返回字符串（无工具的 Agent、会话摘要）
  - generate_with_tools() : 携带工具定义的生成，返回 LLMResponse（工具循环）
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class ProviderError(Exception):
    """LLM 调用失败（网络错误、API 报错、超时）。直接向本轮对话的调用方抛出。"""


@dataclass
class ToolCallRequest:
    """
    LLM 返回的工具调用请求。

    属性：
        id: 工具调用的唯一标识符（由 LLM API 生成，用于将工具结果与请求关联）
        name: 要调用的工具名称（如 "memory__read"、"web"）
        arguments: 工具调用的参数字典
    """
    id: str
    name: str
    arguments: dict[str, Any]

    def to_openai(self) -> dict[str, Any]:
        """转成 OpenAI function calling 格式的 tool_call 记录（参数序列化为 JSON 字符串）。"""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


@dataclass
class LLMResponse:
    """
    LLM 的统一响应数据结构。

    无论底层使用哪家 LLM 服务商，都会被统一解析成这个格式。

    属性：
        content: LLM 返回的文本内容（只返回工具调用时可能为 None）
        tool_calls: LLM 请求调用的工具列表
        finish_reason: 结束原因（"stop" / "tool_calls" / "length"）
        usage: token 用量统计
        reasoning_content: 推理内容（部分模型会返回思考过程）
    """
    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    reasoning_content: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        """检查响应中是否包含工具调用请求。"""
        return len(self.tool_calls) > 0

    @property
    def type(self) -> str:
        """有工具调用时为 "tool_use"，否则为 "text"。"""
        return "tool_use" if self.has_tool_calls else "text"

    @property
    def text(self) -> str:
        return self.content or ""

    @property
    def stop_reason(self) -> str:
        return self.finish_reason


@dataclass
class GenerateOptions:
    """单次生成调用的参数。"""
    model: str | None = None
    agent_id: str | None = None
    max_tokens: int = 2048
    temperature: float = 0.7


class LLMProvider(ABC):
    """
    LLM 提供者抽象基类（类似 Java 的 interface）。

    子类只需实现 chat() 和 get_default_model()；
    generate() / generate_with_tools() 是在 chat() 之上的统一入口。

    属性：
        api_key: API 密钥
        api_base: API 基础 URL（用于自定义端点或代理）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送对话补全请求（核心方法）。

        参数：
            messages: OpenAI 格式的消息列表
            tools: 可选的工具定义列表（OpenAI 函数调用格式）
            model: 模型标识符
            max_tokens: 响应的最大 token 数
            temperature: 采样温度

        返回：
            LLMResponse

        异常：
            ProviderError: 调用失败或超时
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """获取该提供者的默认模型名称。"""
        pass

    async def generate(self, messages: list[dict[str, Any]], opts: GenerateOptions | None = None) -> str:
        """纯文本生成，返回回复文本。"""
        opts = opts or GenerateOptions()
        response = await self.chat(
            messages=messages,
            model=opts.model,
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
        )
        return response.text

    async def generate_with_tools(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        opts: GenerateOptions | None = None,
    ) -> LLMResponse:
        """携带工具定义的生成。"""
        opts = opts or GenerateOptions()
        return await self.chat(
            messages=messages,
            tools=tools or None,
            model=opts.model,
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
        )

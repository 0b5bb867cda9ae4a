"""
工具循环执行器 - 一轮对话里"模型推理 -> 调用工具 -> 再推理"的多轮循环。

核心类 ToolLoopExecutor 采用经典的 ReAct（Reasoning + Acting）范式：
1. 没有任何可用工具时，只做一次纯文本生成（generate）
2. 否则最多执行 max_iterations 次 generate_with_tools：
   - 模型返回纯文本 -> 作为最终回复，结束循环
   - 模型返回工具调用 -> 追加一条助手消息（带 tool_calls），
     再为每个调用追加一条 tool 消息（输出截断到 max_output_chars），进入下一次迭代
3. 达到上限仍未得到文本回复时，返回固定的兜底回复

每个工具调用都恰好对应一条 tool 消息：失败的调用也会带着错误文本回传给模型，
由模型自己决定如何纠正。

【Java 开发者类比】
- ToolLoopExecutor 类似一个无状态的 @Service，每次 run() 都是独立的一次请求处理
- on_progress 回调类似观察者模式里的 Listener，用于在界面上展示"正在调用 xxx 工具"
"""

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from agentbox.agent.context import add_assistant_message, add_tool_result
from agentbox.agent.features import AgentFeatures
from agentbox.agent.tools.base import ToolContext, ToolUsage
from agentbox.agent.tools.dispatcher import ToolDispatcher
from agentbox.providers.base import GenerateOptions, LLMProvider
from agentbox.storage.models import AgentRecord

MAX_ITERATIONS_REPLY = "I was unable to complete the task within the allowed number of tool calls."

ProgressCallback = Callable[[str], Awaitable[None] | None]


@dataclass
class LoopResult:
    reply: str
    tools_used: list[ToolUsage] = field(default_factory=list)
    iterations: int = 0


class ToolLoopExecutor:
    """
    多轮工具调用循环。

    属性：
        provider: LLM 提供者
        dispatcher: 工具分发器（组装工具清单 + 执行单个调用）
        max_iterations: 模型调用次数上限
        max_tokens / temperature: 每次生成的参数
    """

    def __init__(
        self,
        provider: LLMProvider,
        dispatcher: ToolDispatcher,
        max_iterations: int = 10,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def run(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None,
        agent_id: str,
        conversation_id: int | None = None,
        agent: AgentRecord | None = None,
        features: AgentFeatures | None = None,
        tools_enabled: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> LoopResult:
        """
        执行工具循环，返回最终回复和工具使用记录。

        参数：
            messages: [system, *history, user]，循环中会在副本上追加助手消息和工具结果
            model: 本轮使用的模型（None 表示提供者默认模型）
            agent / features: 用于筛选工具清单；features 为 None 时视为全部开启
            tools_enabled: False 时直接走纯文本生成
            on_progress: 每次执行工具前以工具名回调（同步或异步均可）

        异常：
            ProviderError: 模型调用失败，直接抛给调用方
        """
        features = features or AgentFeatures()
        opts = GenerateOptions(
            model=model, agent_id=agent_id, max_tokens=self.max_tokens, temperature=self.temperature,
        )
        tools = self.dispatcher.definitions(agent, features) if tools_enabled else []

        if not tools:
            reply = await self.provider.generate(messages, opts)
            return LoopResult(reply=reply, iterations=1)

        context = ToolContext(agent_id=agent_id, conversation_id=conversation_id)
        current = list(messages)
        tools_used: list[ToolUsage] = []
        iterations = 0

        while iterations < self.max_iterations:
            iterations += 1
            response = await self.provider.generate_with_tools(current, tools, opts)

            if not response.has_tool_calls:
                return LoopResult(reply=response.text, tools_used=tools_used, iterations=iterations)

            add_assistant_message(
                current,
                response.content,
                [tc.to_openai() for tc in response.tool_calls],
                reasoning_content=response.reasoning_content,
            )

            for call in response.tool_calls:
                await self._notify(on_progress, call.name)
                logger.info(f"Tool call: {call.name}({json.dumps(call.arguments, ensure_ascii=False)[:200]})")
                result = await self.dispatcher.dispatch(call, context, agent=agent, features=features)
                add_tool_result(current, call.id, call.name, result.output)
                tools_used.append(ToolUsage(
                    name=call.name, input=call.arguments, output=result.output, success=result.success,
                ))

        logger.warning(f"Tool loop for agent {agent_id} hit {self.max_iterations} iterations")
        return LoopResult(reply=MAX_ITERATIONS_REPLY, tools_used=tools_used, iterations=iterations)

    @staticmethod
    async def _notify(on_progress: ProgressCallback | None, tool_name: str) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(tool_name)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed for {tool_name}: {e}")

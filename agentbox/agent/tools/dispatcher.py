"""
工具分发器 (agent/tools/dispatcher.py)

模块职责：
    1. definitions(): 为某个 Agent 组装本轮可见的工具清单
       - 内置分组按特性开关筛选（memory / cron / agent / fs / browser）
       - 每个启用的能力提供者生成一个描述符（action 枚举 + params 对象）
    2. dispatch(): 执行模型发出的单个工具调用，永远返回 ToolResult，不抛异常

执行流程：
    ToolCallRequest
      -> resolve_tool_call()  得到路由
      -> isinstance 分派：内置工具注册表 / 能力注册表 / 未知工具
      -> 输出截断到 max_output_chars
      -> ToolResult(tool_call_id, name, output, success)

内置工具在 use_context(ctx) 块内执行，工具通过 current_context() 拿到
所属 Agent 和会话，并发的多个回合互不串扰。
"""

import json
from typing import Any

from loguru import logger

from agentbox.agent.features import AgentFeatures
from agentbox.agent.tools.base import ToolContext, ToolResult, truncate_output, use_context
from agentbox.agent.tools.registry import ToolRegistry
from agentbox.agent.tools.routing import (
    BuiltinRoute,
    LegacyNamespaced,
    ProviderRouted,
    Unknown,
    resolve_tool_call,
)
from agentbox.capabilities.base import CapabilityContext, CapabilityResult
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.providers.base import ToolCallRequest
from agentbox.storage.models import AgentRecord

# 内置分组 -> 控制它的特性开关
GROUP_FEATURES = {
    "memory": "soul_memory",
    "cron": "proactive",
    "agent": "background_agents",
    "fs": "deep_tools",
    "browser": "deep_tools",
}


def enabled_groups(features: AgentFeatures) -> set[str]:
    """根据有效特性得出启用的内置工具分组。"""
    return {group for group, flag in GROUP_FEATURES.items() if getattr(features, flag)}


class ToolDispatcher:
    """
    内置工具与能力提供者的统一入口。

    【Java 开发者类比】
    相当于 Spring MVC 的 DispatcherServlet：resolve_tool_call() 是 HandlerMapping，
    ToolRegistry / CapabilityRegistry 是两类 Handler。
    """

    def __init__(
        self,
        registry: ToolRegistry,
        capabilities: CapabilityRegistry,
        max_output_chars: int = 20000,
    ):
        self.registry = registry
        self.capabilities = capabilities
        self.max_output_chars = max_output_chars

    def definitions(self, agent: AgentRecord | None, features: AgentFeatures) -> list[dict[str, Any]]:
        """本轮暴露给模型的工具定义（OpenAI function 格式）。"""
        tools = self.registry.definitions(enabled_groups(features))
        if agent and agent.capabilities:
            tools.extend(self.capabilities.descriptors(agent.capabilities))
        return tools

    def _providers_for(self, agent: AgentRecord | None) -> list[str]:
        registered = self.capabilities.names()
        if agent is None:
            return registered
        return [name for name in agent.capabilities if name in registered]

    async def dispatch(
        self,
        call: ToolCallRequest,
        context: ToolContext,
        *,
        agent: AgentRecord | None = None,
        features: AgentFeatures | None = None,
    ) -> ToolResult:
        """
        执行一个工具调用。

        参数:
            call: 模型发出的工具调用
            context: 所属 Agent 和会话
            agent: 传入时只允许调用该 Agent 启用的能力
            features: 传入时只允许调用已启用分组的内置工具
        """
        arguments = call.arguments if isinstance(call.arguments, dict) else {}
        route = resolve_tool_call(call.name, arguments, self._providers_for(agent))
        logger.debug(f"Tool call {call.name} -> {type(route).__name__}: {json.dumps(arguments, ensure_ascii=False)[:200]}")

        if isinstance(route, BuiltinRoute):
            group = route.tool.split("__", 1)[0]
            if features is not None and group not in enabled_groups(features):
                output, success = f"Error: Tool '{call.name}' not found", False
            else:
                with use_context(context):
                    output, success = await self.registry.execute(route.tool, arguments)
        elif isinstance(route, ProviderRouted):
            if route.action is None:
                output, success = "Missing required parameter: action", False
            else:
                output, success = await self._run_capability(route.provider, route.action, route.params, context)
        elif isinstance(route, LegacyNamespaced):
            output, success = await self._run_capability(route.provider, route.method, route.params, context)
        elif isinstance(route, Unknown):
            output, success = f"Error: Tool '{route.name}' not found", False
        else:
            raise TypeError(f"Unhandled tool route: {type(route).__name__}")

        if len(output) > self.max_output_chars:
            logger.debug(f"Truncated output for {call.name}: {len(output)} -> {self.max_output_chars} chars")
        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            output=truncate_output(output, self.max_output_chars),
            success=success,
        )

    async def _run_capability(
        self,
        provider: str,
        action: str,
        params: dict[str, Any],
        context: ToolContext,
    ) -> tuple[str, bool]:
        result: CapabilityResult = await self.capabilities.execute(
            provider, action, params, CapabilityContext(context.agent_id, context.conversation_id),
        )
        if not result.success:
            return result.error or "Tool execution failed", False
        data = result.data
        if isinstance(data, str):
            return data, True
        return json.dumps(data, indent=2, ensure_ascii=False, default=str), True

"""
Agent 工具子包 (agent/tools)

模块职责：
    定义 Agent 可调用的内置工具，以及把模型发出的工具调用分发到内置工具或能力提供者的机制。
      - Tool（基类）：统一接口（名称、描述、参数 schema、执行方法）
      - ToolRegistry（注册表）：按名称管理内置工具实例
      - resolve_tool_call（路由）：把工具名解析为内置分组 / 能力 / 旧格式 / 未知
      - ToolDispatcher（分发器）：组装工具清单、执行单个调用并产出 ToolResult

内置工具分组（名称前缀 -> 特性开关）：
    - memory__*   记忆文档读写检索     soul_memory
    - cron__*     定时任务管理         proactive
    - agent__*    后台任务             background_agents
    - fs__*       允许目录内的文件操作  deep_tools
    - browser__*  Playwright 浏览器    deep_tools
"""

from agentbox.agent.tools.base import Tool, ToolContext, ToolError, ToolResult, ToolUsage, use_context
from agentbox.agent.tools.dispatcher import ToolDispatcher
from agentbox.agent.tools.registry import ToolRegistry
from agentbox.agent.tools.routing import resolve_tool_call

__all__ = [
    "Tool",
    "ToolContext",
    "ToolDispatcher",
    "ToolError",
    "ToolRegistry",
    "ToolResult",
    "ToolUsage",
    "resolve_tool_call",
    "use_context",
]

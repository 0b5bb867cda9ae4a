"""
Agent 核心模块 - 对话运行时的"大脑"。

本包包含一轮对话所需的全部核心组件：
- AgentRuntime: 一条消息 -> 一条回复的编排入口（类比 Java 中的应用层 Facade）
- ContextBuilder: 把身份、工具策略、会话摘要、渠道提示、相关记忆和历史拼成模型输入
- ToolLoopExecutor: 多轮工具调用循环，带迭代上限和输出截断
- MemoryStore: 每个 Agent 的持久化文档（soul.md、context.md 与笔记）及词法检索
- BackgroundAgentRunner: 在隔离会话中执行后台任务，带超时控制
"""

from agentbox.agent.context import ContextBuilder
from agentbox.agent.loop import ToolLoopExecutor
from agentbox.agent.memory import MemoryStore
from agentbox.agent.runtime import AgentRuntime, TurnResult
from agentbox.agent.subagent import BackgroundAgentRunner

__all__ = [
    "AgentRuntime",
    "BackgroundAgentRunner",
    "ContextBuilder",
    "MemoryStore",
    "ToolLoopExecutor",
    "TurnResult",
]

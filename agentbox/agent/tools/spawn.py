"""
后台任务工具模块 (agent/tools/spawn.py)

模块职责：
    提供 agent__spawn_task 工具，允许 Agent 把一个任务交给隔离会话中的后台 Agent 执行，
    并等待它的结果（超时默认 120 秒，限制在 10~600 秒之间）。

在架构中的位置：
    SpawnTaskTool 是 BackgroundAgentRunner（agent/subagent.py）的薄封装层：
    - SpawnTaskTool 负责定义工具接口，供 LLM 调用
    - BackgroundAgentRunner 负责任务记录、隔离会话和超时控制

    调用链：
    LLM -> tool_call("agent__spawn_task", {task: "..."})
      -> SpawnTaskTool.execute()
        -> BackgroundAgentRunner.run_task()
          -> asyncio.wait_for(AgentRuntime.handle_turn(...))

由 background_agents 特性开关控制是否暴露给模型。
"""

from typing import Any, TYPE_CHECKING

from agentbox.agent.tools.base import Tool, ToolError, current_context

# 仅在类型检查时导入，避免循环导入
if TYPE_CHECKING:
    from agentbox.agent.subagent import BackgroundAgentRunner


class SpawnTaskTool(Tool):
    """在隔离会话中执行后台任务并返回结果。"""

    name = "agent__spawn_task"
    description = (
        "[agent] Spawn an isolated background task. The task runs in its own conversation context "
        "with full tool access. Use for: long-running research, parallel work, tasks that need isolation. "
        "Returns the result when complete."
    )
    parameters = {
        "type": "object",
        "properties": {
            "task": {
                "type": "string",
                "description": "The task description / prompt for the background agent",
            },
            "timeout_seconds": {
                "type": "number",
                "description": "Max execution time in seconds (default: 120, max: 600)",
            },
        },
        "required": ["task"],
    }

    def __init__(
        self,
        runner: "BackgroundAgentRunner",
        default_timeout: int = 120,
        min_timeout: int = 10,
        max_timeout: int = 600,
    ):
        self._runner = runner
        self.default_timeout = default_timeout
        self.min_timeout = min_timeout
        self.max_timeout = max_timeout

    def clamp_timeout(self, value: Any) -> float:
        """缺省或 0 时取默认值，再限制在 [min_timeout, max_timeout]。"""
        seconds = value or self.default_timeout
        return float(max(self.min_timeout, min(self.max_timeout, seconds)))

    async def execute(self, task: str = "", timeout_seconds: float | None = None, **kwargs: Any) -> str:
        if not task:
            raise ToolError("Missing task parameter")

        ctx = current_context()
        try:
            result = await self._runner.run_task(ctx.agent_id, task, self.clamp_timeout(timeout_seconds))
        except RuntimeError as e:
            raise ToolError(f"Agent tool error: {e}")

        if result.status == "completed":
            return f"Background task completed (run #{result.run_id}):\n\n{result.reply or '(empty response)'}"
        raise ToolError(f"Background task failed (run #{result.run_id}): {result.error or 'Unknown error'}")

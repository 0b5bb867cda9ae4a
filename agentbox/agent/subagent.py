"""
后台 Agent 模块 - 在隔离会话里执行一次性任务。

【工作原理】
1. 创建一条任务执行记录（TaskRun，run_type="background"，状态 running）
2. 新建一个隔离会话（external_user_id="__background__"，标题 "Background Task"），
   与用户的聊天历史互不干扰
3. 在独立的 asyncio.Task 里跑一轮完整的对话（AgentRuntime.handle_turn），
   用 asyncio.wait_for 等待，超时即取消该任务；取消会一直传到正在进行的模型调用
4. 把结果写回执行记录（completed / failed）并返回给调用方

调用方（agent__spawn_task 工具）会等待任务结束，所以这里返回的是最终结果而不是"已启动"。

【Java 开发者类比】
类似 CompletableFuture.supplyAsync(...).orTimeout(...)：
- run_task() 相当于 submit + get(timeout)
- cancel_all() 相当于 executorService.shutdownNow()
"""

import asyncio
from dataclasses import dataclass

from loguru import logger

from agentbox.agent.features import FeatureResolver
from agentbox.agent.runtime import AgentRuntime
from agentbox.storage.base import Storage

BACKGROUND_USER_ID = "__background__"
BACKGROUND_TITLE = "Background Task"


@dataclass
class BackgroundResult:
    run_id: int
    status: str  # completed / failed
    reply: str | None = None
    error: str | None = None


class BackgroundAgentRunner:
    """
    后台任务执行器。

    属性:
        runtime: 对话运行时
        storage: 写任务执行记录
        features: 校验 background_agents 特性
        default_timeout: 默认超时（秒）
        _running: 运行中的任务 {run_id: asyncio.Task}
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        storage: Storage,
        features: FeatureResolver | None = None,
        default_timeout: float = 120.0,
    ):
        self.runtime = runtime
        self.storage = storage
        self.features = features
        self.default_timeout = default_timeout
        self._running: dict[int, asyncio.Task] = {}

    async def run_task(self, agent_id: str, task: str, timeout_seconds: float | None = None) -> BackgroundResult:
        """
        在隔离会话中执行任务并等待结果。

        异常:
            RuntimeError: 该 Agent 未启用后台任务
        """
        if self.features is not None:
            features = await self.features.for_agent(agent_id)
            if not features.background_agents:
                raise RuntimeError("Background agents feature is not enabled")

        timeout = timeout_seconds or self.default_timeout
        run = await self.storage.create_task_run(agent_id, "background", task)
        logger.info(f"Background run #{run.id} for agent {agent_id}: {task[:80]!r} (timeout {timeout:.0f}s)")

        conversation_id = None
        try:
            conv = await self.runtime.start_conversation(agent_id, BACKGROUND_USER_ID, BACKGROUND_TITLE)
            conversation_id = conv.id

            job = asyncio.create_task(self.runtime.handle_turn(agent_id, conv.id, task))
            self._running[run.id] = job
            job.add_done_callback(lambda _: self._running.pop(run.id, None))

            try:
                result = await asyncio.wait_for(job, timeout=timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f"Task timed out after {int(timeout * 1000)}ms")

            await self.storage.finish_task_run(
                run.id, status="completed", result=result.reply, conversation_id=conversation_id,
            )
            logger.info(f"Background run #{run.id} completed ({len(result.reply)} chars)")
            return BackgroundResult(run_id=run.id, status="completed", reply=result.reply)

        except asyncio.CancelledError:
            await self.storage.finish_task_run(
                run.id, status="failed", error="Task cancelled", conversation_id=conversation_id,
            )
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Background run #{run.id} failed: {error}")
            await self.storage.finish_task_run(
                run.id, status="failed", error=error, conversation_id=conversation_id,
            )
            return BackgroundResult(run_id=run.id, status="failed", error=error)

    def running_count(self) -> int:
        return len(self._running)

    async def cancel_all(self) -> int:
        """取消所有运行中的任务，返回取消的数量。"""
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

"""
定时任务工具模块 (agent/tools/cron.py)

模块职责：
    让 Agent 通过 function call 管理自己的定时任务：
      - cron__schedule(schedule, task_text, enabled)  创建任务
      - cron__list()                                  列出本 Agent 的任务
      - cron__update(job_id, schedule?, task_text?, enabled?)
      - cron__delete(job_id)

    调度写法：cron 表达式（"0 9 * * *" 每天 9 点）或间隔（"every 30m"、"every 2h"）。
    task_text 是任务触发时 Agent 要执行的指令。

在架构中的位置：
    工具内部依赖 CronService 管理任务，任务只能被创建它的 Agent 修改或删除。
    由 proactive 特性开关控制是否暴露给模型。

使用场景举例：
    用户："每个工作日早上 9 点给我发一份市场简报"
    -> 模型调用 cron__schedule(schedule="0 9 * * 1-5", task_text="Prepare a market briefing")
"""

from datetime import datetime, timezone
from typing import Any

from agentbox.agent.tools.base import Tool, ToolError, current_context
from agentbox.cron.service import CronService
from agentbox.cron.types import CronJob


def _iso(ms: int | None, fallback: str) -> str:
    if not ms:
        return fallback
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _job_id(value: Any) -> int:
    if value is None or value == "" or value == 0:
        raise ToolError("Missing job_id parameter")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolError(f"Invalid job_id: {value!r}")


class _CronTool(Tool):
    def __init__(self, cron_service: CronService):
        self._cron = cron_service


class CronScheduleTool(_CronTool):
    name = "cron__schedule"
    description = (
        '[cron] Create a scheduled job. Supports cron syntax (e.g. "0 9 * * *" for daily 9am) '
        'or intervals ("every 30m", "every 1h", "every 24h"). The task_text is what you will be '
        'asked to do when the job fires.'
    )
    parameters = {
        "type": "object",
        "properties": {
            "schedule": {"type": "string", "description": 'Cron expression or interval (e.g. "0 9 * * 1-5", "every 2h")'},
            "task_text": {"type": "string", "description": "The task/prompt to execute when the job fires"},
            "enabled": {"type": "boolean", "description": "Whether the job starts enabled (default: true)"},
        },
        "required": ["schedule", "task_text"],
    }

    async def execute(self, schedule: str = "", task_text: str = "", enabled: bool = True, **kwargs: Any) -> str:
        if not schedule:
            raise ToolError("Missing schedule parameter")
        if not task_text:
            raise ToolError("Missing task_text parameter")

        ctx = current_context()
        try:
            job = self._cron.add_job(ctx.agent_id, schedule, task_text, enabled=enabled is not False)
        except ValueError as e:
            raise ToolError(f"Cron tool error: {e}")

        return (
            f"Cron job created (ID: {job.id}).\n"
            f"Schedule: {job.schedule}\n"
            f"Task: {job.task_text}\n"
            f"Enabled: {str(job.enabled).lower()}\n"
            f"Next run: {_iso(job.state.next_run_at_ms, 'calculating...')}"
        )


class CronListTool(_CronTool):
    name = "cron__list"
    description = "[cron] List all scheduled cron jobs for this agent. Shows schedule, task, status, and next run time."
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        jobs = self._cron.list_jobs(current_context().agent_id)
        if not jobs:
            return "No cron jobs configured."
        return f"{len(jobs)} cron job(s):\n\n" + "\n\n".join(self._format(j) for j in jobs)

    @staticmethod
    def _format(job: CronJob) -> str:
        task = job.task_text[:80] + ("..." if len(job.task_text) > 80 else "")
        status = "✅" if job.enabled else "⏸️"
        return (
            f'[ID: {job.id}] {status} "{task}"\n'
            f"  Schedule: {job.schedule} | Next: {_iso(job.state.next_run_at_ms, 'N/A')} "
            f"| Last: {_iso(job.state.last_run_at_ms, 'never')}"
        )


class CronUpdateTool(_CronTool):
    name = "cron__update"
    description = "[cron] Update an existing cron job. Can change schedule, task text, or enable/disable."
    parameters = {
        "type": "object",
        "properties": {
            "job_id": {"type": "number", "description": "The ID of the cron job to update"},
            "schedule": {"type": "string", "description": "New cron expression or interval"},
            "task_text": {"type": "string", "description": "New task text"},
            "enabled": {"type": "boolean", "description": "Enable or disable the job"},
        },
        "required": ["job_id"],
    }

    async def execute(
        self,
        job_id: Any = None,
        schedule: str | None = None,
        task_text: str | None = None,
        enabled: bool | None = None,
        **kwargs: Any,
    ) -> str:
        jid = _job_id(job_id)
        if schedule is None and task_text is None and enabled is None:
            raise ToolError("No fields to update. Provide schedule, task_text, or enabled.")

        try:
            job = self._cron.update_job(
                jid, current_context().agent_id,
                schedule=schedule, task_text=task_text, enabled=enabled,
            )
        except ValueError as e:
            raise ToolError(f"Cron tool error: {e}")
        if job is None:
            raise ToolError(f"Cron job {jid} not found or not owned by this agent.")

        return (
            f"Cron job {jid} updated.\n"
            f"Schedule: {job.schedule}\n"
            f"Task: {job.task_text[:80]}\n"
            f"Enabled: {str(job.enabled).lower()}\n"
            f"Next run: {_iso(job.state.next_run_at_ms, 'N/A')}"
        )


class CronDeleteTool(_CronTool):
    name = "cron__delete"
    description = "[cron] Delete a scheduled cron job by ID."
    parameters = {
        "type": "object",
        "properties": {
            "job_id": {"type": "number", "description": "The ID of the cron job to delete"},
        },
        "required": ["job_id"],
    }

    async def execute(self, job_id: Any = None, **kwargs: Any) -> str:
        jid = _job_id(job_id)
        if not self._cron.remove_job(jid, current_context().agent_id):
            raise ToolError(f"Cron job {jid} not found or not owned by this agent.")
        return f"Cron job {jid} deleted."


def cron_tools(cron_service: CronService) -> list[Tool]:
    return [
        CronScheduleTool(cron_service),
        CronListTool(cron_service),
        CronUpdateTool(cron_service),
        CronDeleteTool(cron_service),
    ]

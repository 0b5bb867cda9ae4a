"""
定时任务模块 - 让 Agent 按计划主动执行任务。

- CronService：调度引擎（JSON 持久化 + 单一 asyncio 定时器）
- CronJob：属于某个 Agent 的任务，task_text 在触发时交给 Agent 执行
- parse_schedule：解析 "every 30m" 或 5 段 cron 表达式
"""

from agentbox.cron.service import CronService, compute_next_run, parse_schedule
from agentbox.cron.types import CronJob, CronSchedule

__all__ = ["CronService", "CronJob", "CronSchedule", "compute_next_run", "parse_schedule"]

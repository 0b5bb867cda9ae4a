"""
定时任务类型定义 - 定时任务系统的数据模型。

- CronSchedule：解析后的调度规则（固定间隔或 cron 表达式）
- CronJobState：任务运行时状态（下次运行时间、上次运行结果等）
- CronJob：属于某个 Agent 的定时任务
- CronStore：持久化存储结构

调度字符串两种写法：
- 间隔："every 30m" / "every 2 hours" / "every 1d"（最小 1 分钟）
- 5 段 cron 表达式："0 9 * * 1-5"（工作日早上 9 点）
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class CronSchedule:
    kind: Literal["every", "cron"]
    every_ms: int | None = None  # "every" 模式：间隔（毫秒）
    expr: str | None = None  # "cron" 模式：5 段表达式


@dataclass
class CronJobState:
    next_run_at_ms: int | None = None
    last_run_at_ms: int | None = None
    last_status: Literal["ok", "error"] | None = None
    last_error: str | None = None


@dataclass
class CronJob:
    """
    一个定时任务。

    task_text 是任务触发时发给 Agent 的指令，由 Agent 在一个全新的隔离会话里执行。
    """
    id: int
    agent_id: str
    schedule: str  # 原始调度字符串
    task_text: str
    enabled: bool = True
    model: str | None = None
    state: CronJobState = field(default_factory=CronJobState)
    created_at_ms: int = 0
    updated_at_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "schedule": self.schedule,
            "taskText": self.task_text,
            "enabled": self.enabled,
            "model": self.model,
            "state": {
                "nextRunAtMs": self.state.next_run_at_ms,
                "lastRunAtMs": self.state.last_run_at_ms,
                "lastStatus": self.state.last_status,
                "lastError": self.state.last_error,
            },
            "createdAtMs": self.created_at_ms,
            "updatedAtMs": self.updated_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronJob":
        state = data.get("state", {})
        return cls(
            id=int(data["id"]),
            agent_id=data["agentId"],
            schedule=data["schedule"],
            task_text=data.get("taskText", ""),
            enabled=data.get("enabled", True),
            model=data.get("model"),
            state=CronJobState(
                next_run_at_ms=state.get("nextRunAtMs"),
                last_run_at_ms=state.get("lastRunAtMs"),
                last_status=state.get("lastStatus"),
                last_error=state.get("lastError"),
            ),
            created_at_ms=data.get("createdAtMs", 0),
            updated_at_ms=data.get("updatedAtMs", 0),
        )


@dataclass
class CronStore:
    """序列化为 JSON 文件（<workspace>/data/cron/jobs.json）。"""
    version: int = 1
    next_id: int = 1
    jobs: list[CronJob] = field(default_factory=list)

"""定时任务调度服务 - 管理和执行 Agent 的定时任务。

本模块实现了定时任务调度引擎：
- 任务持久化：JSON 文件存储（<workspace>/data/cron/jobs.json）
- 两种调度写法：固定间隔（every 30m）、5 段 cron 表达式（由 croniter 计算）
- 异步定时器：单一 asyncio.Task，指向最早到期的任务
- 任务生命周期：增删改查、启用/禁用、手动触发

执行通过 on_job 回调委托给外部（网关里是"在隔离会话中跑一轮对话并广播结果"）。
执行失败也会推进 next_run，不会在紧密循环里反复重试。
"""

import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Callable, Coroutine

from croniter import croniter
from loguru import logger

from agentbox.cron.types import CronJob, CronJobState, CronSchedule, CronStore

_INTERVAL_RE = re.compile(r"^every\s+(\d+)\s*(m|min|minutes?|h|hours?|d|days?)$", re.IGNORECASE)
_UNIT_MS = {"m": 60_000, "h": 3_600_000, "d": 86_400_000}
MIN_INTERVAL_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_schedule(schedule: str) -> CronSchedule:
    """
    解析调度字符串。

    异常:
        ValueError: 无法识别的写法，或间隔小于 1 分钟
    """
    text = (schedule or "").strip()
    match = _INTERVAL_RE.match(text)
    if match:
        every_ms = int(match.group(1)) * _UNIT_MS[match.group(2)[0].lower()]
        if every_ms < MIN_INTERVAL_MS:
            raise ValueError(f"Invalid schedule expression: '{schedule}'. Minimum interval is 1 minute")
        return CronSchedule(kind="every", every_ms=every_ms)

    if len(text.split()) == 5 and croniter.is_valid(text):
        return CronSchedule(kind="cron", expr=text)

    raise ValueError(
        f"Invalid schedule expression: '{schedule}'. "
        f"Use cron format (e.g., '0 9 * * *') or interval (e.g., 'every 30m')"
    )


def compute_next_run(schedule: CronSchedule, now_ms: int) -> int | None:
    """根据调度规则计算下次执行时间（毫秒时间戳）。"""
    if schedule.kind == "every":
        if not schedule.every_ms or schedule.every_ms <= 0:
            return None
        return now_ms + schedule.every_ms

    if schedule.kind == "cron" and schedule.expr:
        try:
            return int(croniter(schedule.expr, now_ms / 1000).get_next(float) * 1000)
        except Exception as e:
            logger.warning(f"Cron: cannot compute next run for '{schedule.expr}': {e}")
            return None

    return None


class CronService:
    """定时任务调度服务。

    调度机制：
    - 只设置一个定时器，指向最早到期的任务
    - 定时器到期后扫描所有到期任务并逐个执行
    - 执行完成后重新计算下次触发时间并重置定时器
    """

    def __init__(
        self,
        store_path: Path,
        on_job: Callable[[CronJob], Coroutine[Any, Any, str | None]] | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        参数:
            store_path: 任务持久化文件路径
            on_job: 任务执行回调，接收 CronJob 并返回 Agent 回复文本
            clock: 返回当前毫秒时间戳的函数
        """
        self.store_path = store_path
        self.on_job = on_job
        self.clock = clock
        self._store: CronStore | None = None
        self._timer_task: asyncio.Task | None = None
        self._running = False
        self._in_tick = False

    def _load_store(self) -> CronStore:
        if self._store:
            return self._store

        if self.store_path.exists():
            try:
                data = json.loads(self.store_path.read_text())
                jobs = [CronJob.from_dict(j) for j in data.get("jobs", [])]
                next_id = data.get("nextId") or max((j.id for j in jobs), default=0) + 1
                self._store = CronStore(version=data.get("version", 1), next_id=next_id, jobs=jobs)
            except Exception as e:
                logger.warning(f"Failed to load cron store: {e}")
                self._store = CronStore()
        else:
            self._store = CronStore()

        return self._store

    def _save_store(self) -> None:
        if not self._store:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": self._store.version,
            "nextId": self._store.next_id,
            "jobs": [j.to_dict() for j in self._store.jobs],
        }
        self.store_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))

    async def start(self) -> None:
        """加载任务、重新计算执行时间、激活定时器。"""
        self._running = True
        self._load_store()
        self._recompute_next_runs()
        self._save_store()
        self._arm_timer()
        logger.info(f"Cron service started with {len(self._store.jobs if self._store else [])} jobs")

    def stop(self) -> None:
        self._running = False
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None

    def _recompute_next_runs(self) -> None:
        if not self._store:
            return
        now = self.clock()
        for job in self._store.jobs:
            if job.enabled:
                job.state.next_run_at_ms = self._next_run(job, now)

    def _next_run(self, job: CronJob, now_ms: int) -> int | None:
        try:
            return compute_next_run(parse_schedule(job.schedule), now_ms)
        except ValueError as e:
            logger.warning(f"Cron: job {job.id} has invalid schedule: {e}")
            return None

    def _get_next_wake_ms(self) -> int | None:
        if not self._store:
            return None
        times = [j.state.next_run_at_ms for j in self._store.jobs
                 if j.enabled and j.state.next_run_at_ms]
        return min(times) if times else None

    def _arm_timer(self) -> None:
        # 执行到期任务期间（任务里可能再调用 add_job / update_job）不动定时器，结束后统一重设
        if self._in_tick:
            return
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None

        next_wake = self._get_next_wake_ms()
        if not next_wake or not self._running:
            return

        delay_s = max(0, next_wake - self.clock()) / 1000

        async def tick():
            await asyncio.sleep(delay_s)
            if self._running:
                await self._on_timer()

        self._timer_task = asyncio.create_task(tick())

    async def _on_timer(self) -> None:
        """定时器到期：执行所有到期任务。"""
        if not self._store:
            return

        now = self.clock()
        due_jobs = [
            j for j in self._store.jobs
            if j.enabled and j.state.next_run_at_ms and now >= j.state.next_run_at_ms
        ]
        self._in_tick = True
        try:
            for job in due_jobs:
                await self._execute_job(job)
        finally:
            self._in_tick = False

        self._save_store()
        self._timer_task = None
        self._arm_timer()

    async def _execute_job(self, job: CronJob) -> None:
        start_ms = self.clock()
        logger.info(f"Cron: executing job {job.id} for agent {job.agent_id}: {job.task_text[:80]!r}")

        try:
            if self.on_job:
                await self.on_job(job)
            job.state.last_status = "ok"
            job.state.last_error = None
            logger.info(f"Cron: job {job.id} completed")
        except Exception as e:
            job.state.last_status = "error"
            job.state.last_error = str(e)
            logger.error(f"Cron: job {job.id} failed: {e}")

        job.state.last_run_at_ms = start_ms
        job.updated_at_ms = self.clock()
        job.state.next_run_at_ms = self._next_run(job, self.clock())

    # ========== 公开 API ==========

    def list_jobs(self, agent_id: str | None = None, include_disabled: bool = True) -> list[CronJob]:
        """列出任务（按创建顺序）。"""
        store = self._load_store()
        return [
            j for j in store.jobs
            if (agent_id is None or j.agent_id == agent_id) and (include_disabled or j.enabled)
        ]

    def get_job(self, job_id: int, agent_id: str | None = None) -> CronJob | None:
        for job in self._load_store().jobs:
            if job.id == job_id and (agent_id is None or job.agent_id == agent_id):
                return job
        return None

    def add_job(
        self,
        agent_id: str,
        schedule: str,
        task_text: str,
        enabled: bool = True,
        model: str | None = None,
    ) -> CronJob:
        """
        添加任务。

        异常:
            ValueError: 调度字符串无效
        """
        parsed = parse_schedule(schedule)
        store = self._load_store()
        now = self.clock()

        job = CronJob(
            id=store.next_id,
            agent_id=agent_id,
            schedule=schedule.strip(),
            task_text=task_text,
            enabled=enabled,
            model=model,
            state=CronJobState(next_run_at_ms=compute_next_run(parsed, now) if enabled else None),
            created_at_ms=now,
            updated_at_ms=now,
        )
        store.next_id += 1
        store.jobs.append(job)
        self._save_store()
        self._arm_timer()

        logger.info(f"Cron: added job {job.id} for agent {agent_id} ({job.schedule})")
        return job

    def update_job(
        self,
        job_id: int,
        agent_id: str | None = None,
        *,
        schedule: str | None = None,
        task_text: str | None = None,
        enabled: bool | None = None,
    ) -> CronJob | None:
        """
        修改任务；任务不存在或不属于该 Agent 时返回 None。

        异常:
            ValueError: 新的调度字符串无效
        """
        job = self.get_job(job_id, agent_id)
        if job is None:
            return None

        parsed = parse_schedule(schedule) if schedule is not None else None
        if schedule is not None:
            job.schedule = schedule.strip()
        if task_text is not None:
            job.task_text = task_text
        if enabled is not None:
            job.enabled = enabled

        now = self.clock()
        job.updated_at_ms = now
        if not job.enabled:
            job.state.next_run_at_ms = None
        elif parsed is not None or enabled:
            job.state.next_run_at_ms = compute_next_run(parsed or parse_schedule(job.schedule), now)

        self._save_store()
        self._arm_timer()
        return job

    def remove_job(self, job_id: int, agent_id: str | None = None) -> bool:
        store = self._load_store()
        before = len(store.jobs)
        store.jobs = [
            j for j in store.jobs
            if not (j.id == job_id and (agent_id is None or j.agent_id == agent_id))
        ]
        removed = len(store.jobs) < before

        if removed:
            self._save_store()
            self._arm_timer()
            logger.info(f"Cron: removed job {job_id}")
        return removed

    def enable_job(self, job_id: int, enabled: bool = True) -> CronJob | None:
        return self.update_job(job_id, enabled=enabled)

    async def run_job(self, job_id: int, force: bool = False) -> bool:
        """手动触发执行任务。force=True 时可执行已禁用的任务。"""
        job = self.get_job(job_id)
        if job is None or (not force and not job.enabled):
            return False
        await self._execute_job(job)
        self._save_store()
        self._arm_timer()
        return True

    def status(self) -> dict:
        store = self._load_store()
        return {
            "enabled": self._running,
            "jobs": len(store.jobs),
            "next_wake_at_ms": self._get_next_wake_ms(),
        }

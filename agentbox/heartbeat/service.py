"""
心跳服务实现 - 定期唤醒 Agent 按检查清单自检。

本模块实现了多 Agent 的周期性心跳：
- 每个 Agent 有独立的心跳配置（间隔、检查清单、免打扰时段、时区），来自 AgentProfile.heartbeat
- 固定间隔（默认 60 秒）轮询一次，找出到期的 Agent 逐个执行
- 到期条件：已启用 + 距上次心跳已满一个间隔 + 当前不在免打扰时段
- 上次心跳时间持久化到 JSON 文件（<workspace>/data/heartbeat/state.json），重启后继续计时

架构设计：
- 基于 asyncio.Task 的定期循环
- 通过 on_heartbeat 回调委托给外部执行（网关里是"在隔离会话中跑一轮对话并按需广播"）
- Agent 回复 HEARTBEAT_OK 表示"无事可报"，不会广播到渠道

二开提示：
- 可修改 build_heartbeat_prompt() 来自定义心跳提示词
- trigger_now() 支持手动触发某个 Agent 的心跳，适合调试
"""

import asyncio
import json
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Callable, Coroutine
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from agentbox.config.schema import HeartbeatBinding
from agentbox.utils.helpers import utc_now

# 默认轮询间隔：60 秒
DEFAULT_POLL_INTERVAL_S = 60

# Agent 回复中表示"无事可报"的标记令牌
HEARTBEAT_OK_TOKEN = "HEARTBEAT_OK"

DEFAULT_CHECKLIST = "No specific checklist configured. Check if anything needs attention."


def build_heartbeat_prompt(checklist: str | None) -> str:
    """根据检查清单生成心跳提示词。清单为空时使用通用提示。"""
    checklist = (checklist or "").strip() or DEFAULT_CHECKLIST
    return (
        "You are performing a periodic check. Review your checklist:\n\n"
        f"{checklist}\n\n"
        f"If nothing needs attention, respond with {HEARTBEAT_OK_TOKEN}."
    )


def is_heartbeat_ok(reply: str | None) -> bool:
    """回复（去掉首尾空白后）恰好是 HEARTBEAT_OK。"""
    return (reply or "").strip() == HEARTBEAT_OK_TOKEN


def _minutes_of_day(value: str) -> int | None:
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]) * 60 + int(parts[1])
    except ValueError:
        return None


def _zone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Heartbeat: unknown timezone '{name}', using UTC")
        return timezone.utc


def is_in_quiet_hours(
    now: datetime,
    start: str | None,
    end: str | None,
    tz_name: str | None = "UTC",
) -> bool:
    """
    判断当前时间是否落在免打扰时段 [start, end) 内。

    参数:
        now: 当前时间（带时区信息）
        start / end: "HH:MM" 或 "HH:MM:SS"；任一为空或无法解析时视为没有免打扰时段
        tz_name: 时段所在的 IANA 时区名

    start 晚于 end 表示跨午夜（如 23:00 到 08:00）；start 等于 end 时为空时段。
    """
    if not start or not end:
        return False
    start_minutes = _minutes_of_day(start)
    end_minutes = _minutes_of_day(end)
    if start_minutes is None or end_minutes is None:
        return False

    local = now.astimezone(_zone(tz_name))
    current = local.hour * 60 + local.minute
    if start_minutes <= end_minutes:
        return start_minutes <= current < end_minutes
    return current >= start_minutes or current < end_minutes


def is_due(config: HeartbeatBinding, last_heartbeat_at: datetime | None, now: datetime) -> bool:
    """
    判断一个 Agent 的心跳是否到期。

    返回 True 需要同时满足：
    1. 心跳已启用
    2. 从未执行过，或距上次心跳已满 interval_minutes
    3. 当前不在免打扰时段
    """
    if not config.enabled:
        return False
    if last_heartbeat_at is not None:
        elapsed = (now - last_heartbeat_at).total_seconds()
        if elapsed < config.interval_minutes * 60:
            return False
    return not is_in_quiet_hours(now, config.quiet_hours_start, config.quiet_hours_end, config.timezone)


class HeartbeatService:
    """
    心跳服务 - 定期唤醒各个 Agent 按检查清单自检。

    工作流程：
    1. 每隔 poll_interval_s 秒轮询一次
    2. 对每个配置了心跳的 Agent 调用 is_due() 判断是否到期
    3. 到期的 Agent 依次调用 on_heartbeat(agent_id, 提示词)
    4. 无论成功失败都记录本次心跳时间，下一个间隔后才会再次执行
    """

    def __init__(
        self,
        store_path: Path,
        configs: dict[str, HeartbeatBinding] | None = None,
        on_heartbeat: Callable[[str, str], Coroutine[Any, Any, str | None]] | None = None,
        poll_interval_s: int = DEFAULT_POLL_INTERVAL_S,
        enabled: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        初始化心跳服务。

        参数:
            store_path: 上次心跳时间的持久化文件路径
            configs: {Agent ID: 心跳配置}
            on_heartbeat: 心跳执行回调，接收 Agent ID 和提示词，返回 Agent 回复（跳过时返回 None）
            poll_interval_s: 轮询间隔秒数
            enabled: 是否启用心跳服务（对应全局 proactive 开关）
            clock: 返回当前 UTC 时间的函数
        """
        self.store_path = store_path
        self.configs: dict[str, HeartbeatBinding] = dict(configs or {})
        self.on_heartbeat = on_heartbeat
        self.poll_interval_s = poll_interval_s
        self.enabled = enabled
        self.clock = clock
        self._last_runs: dict[str, datetime] | None = None
        self._running = False
        self._in_tick = False
        self._task: asyncio.Task | None = None

    def configure(self, agent_id: str, config: HeartbeatBinding) -> None:
        """新增或替换某个 Agent 的心跳配置。"""
        self.configs[agent_id] = config

    # ========== 状态持久化 ==========

    def _load_state(self) -> dict[str, datetime]:
        if self._last_runs is not None:
            return self._last_runs

        self._last_runs = {}
        if self.store_path.exists():
            try:
                data = json.loads(self.store_path.read_text())
                for agent_id, value in (data.get("lastHeartbeatAt") or {}).items():
                    self._last_runs[agent_id] = datetime.fromisoformat(value)
            except Exception as e:
                logger.warning(f"Failed to load heartbeat state: {e}")
                self._last_runs = {}
        return self._last_runs

    def _save_state(self) -> None:
        if self._last_runs is None:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": 1,
            "lastHeartbeatAt": {agent_id: at.isoformat() for agent_id, at in self._last_runs.items()},
        }
        self.store_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))

    def last_heartbeat_at(self, agent_id: str) -> datetime | None:
        return self._load_state().get(agent_id)

    def due_agents(self) -> list[str]:
        """当前到期的 Agent ID（按配置顺序）。"""
        now = self.clock()
        last_runs = self._load_state()
        return [
            agent_id for agent_id, config in self.configs.items()
            if is_due(config, last_runs.get(agent_id), now)
        ]

    # ========== 生命周期 ==========

    async def start(self) -> None:
        """启动心跳轮询。enabled=False 时直接返回不启动。"""
        if not self.enabled:
            logger.info("Heartbeat disabled")
            return
        if self._running:
            logger.warning("Heartbeat already running")
            return

        self._load_state()
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Heartbeat started for {len(self.configs)} agent(s) (polling every {self.poll_interval_s}s)")

    def stop(self) -> None:
        """停止心跳服务并取消轮询任务。"""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        """轮询主循环。先等待一个轮询周期，再检查到期的 Agent，循环往复。"""
        while self._running:
            try:
                await asyncio.sleep(self.poll_interval_s)
                if self._running:
                    await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")

    async def tick(self) -> list[str]:
        """
        执行一轮检查：依次运行所有到期 Agent 的心跳，返回执行过的 Agent ID。

        上一轮还没结束时直接跳过本轮。
        """
        if self._in_tick:
            logger.debug("Heartbeat: previous tick still running, skipped")
            return []

        self._in_tick = True
        try:
            due = self.due_agents()
            for agent_id in due:
                await self.trigger_now(agent_id)
            return due
        finally:
            self._in_tick = False

    async def trigger_now(self, agent_id: str) -> str | None:
        """
        立即执行一次某个 Agent 的心跳（不检查是否到期），返回 Agent 的回复。

        执行失败只记录日志并返回 None；成功或失败都会更新上次心跳时间。
        """
        config = self.configs.get(agent_id)
        if config is None:
            logger.warning(f"Heartbeat: no config for agent {agent_id}")
            return None
        if self.on_heartbeat is None:
            return None

        logger.info(f"Heartbeat: checking agent {agent_id}")
        reply: str | None = None
        try:
            reply = await self.on_heartbeat(agent_id, build_heartbeat_prompt(config.checklist))
            if reply is None:
                logger.info(f"Heartbeat: agent {agent_id} skipped")
            elif is_heartbeat_ok(reply):
                logger.info(f"Heartbeat: agent {agent_id} OK (no action needed)")
            else:
                logger.info(f"Heartbeat: agent {agent_id} reported: {reply[:100]!r}")
        except Exception as e:
            logger.error(f"Heartbeat: agent {agent_id} failed: {e}")

        self._load_state()[agent_id] = self.clock()
        self._save_state()
        return reply

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "running": self._running,
            "agents": len(self.configs),
            "poll_interval_s": self.poll_interval_s,
        }

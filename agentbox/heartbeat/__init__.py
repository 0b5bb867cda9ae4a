"""
心跳服务模块 - 定期唤醒 Agent 按检查清单自检。

本模块提供 HeartbeatService：按每个 Agent 的间隔和免打扰时段判断是否到期，
到期时把检查清单交给 Agent 跑一轮对话。Agent 回复 HEARTBEAT_OK 表示无事可报。
"""

from agentbox.heartbeat.service import (
    HEARTBEAT_OK_TOKEN,
    HeartbeatService,
    build_heartbeat_prompt,
    is_due,
    is_heartbeat_ok,
    is_in_quiet_hours,
)

__all__ = [
    "HEARTBEAT_OK_TOKEN",
    "HeartbeatService",
    "build_heartbeat_prompt",
    "is_due",
    "is_heartbeat_ok",
    "is_in_quiet_hours",
]

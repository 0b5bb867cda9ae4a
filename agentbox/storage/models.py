"""
持久化数据模型 (storage/models.py)

运行时读写的全部记录类型，均为普通 dataclass：
- AgentRecord    : Agent 档案（指令、模型、启用的能力、特性覆盖）
- Conversation   : 会话（一个渠道身份上持续进行的对话）
- Message        : 会话中的一条消息，按插入顺序全序排列
- ChannelConfig  : Agent 绑定的渠道实例
- TaskRun        : 后台任务 / 定时任务的一次执行记录

时间字段统一使用带时区的 UTC datetime，序列化为 ISO 8601 字符串。
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from agentbox.utils.helpers import utc_now

DEFAULT_CHANNEL_TYPE = "widget"


def _dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class AgentRecord:
    id: str
    name: str = ""
    instructions: str = ""
    model: str | None = None
    capabilities: list[str] = field(default_factory=list)
    features: dict[str, bool] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentRecord":
        return cls(**{**data, "created_at": _dt(data.get("created_at")) or utc_now()})


@dataclass
class Conversation:
    """
    一个会话。

    活跃判定：last_message_at 落在活跃窗口内。
    last_message_at 为 None 表示刚创建、尚未收到消息的会话。
    """
    id: int
    agent_id: str
    external_user_id: str | None = None
    title: str | None = None
    channel_type: str = DEFAULT_CHANNEL_TYPE
    channel_id: str | None = None
    message_count: int = 0
    last_message_at: datetime | None = None
    session_summary: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_message_at", "created_at", "updated_at"):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        return cls(**{
            **data,
            "last_message_at": _dt(data.get("last_message_at")),
            "created_at": _dt(data.get("created_at")) or utc_now(),
            "updated_at": _dt(data.get("updated_at")) or utc_now(),
        })


@dataclass
class Message:
    id: int
    conversation_id: int
    role: str  # user / assistant / system / tool
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(**{**data, "created_at": _dt(data.get("created_at")) or utc_now()})


@dataclass
class ChannelConfig:
    id: int
    agent_id: str
    channel_type: str
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChannelConfig":
        return cls(**data)


@dataclass
class TaskRun:
    id: int
    agent_id: str
    run_type: str  # background / cron / heartbeat
    task_text: str
    status: str = "running"  # running / completed / failed
    result: str | None = None
    error: str | None = None
    conversation_id: int | None = None
    source_id: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = _iso(self.started_at)
        data["completed_at"] = _iso(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskRun":
        return cls(**{
            **data,
            "started_at": _dt(data.get("started_at")) or utc_now(),
            "completed_at": _dt(data.get("completed_at")),
        })

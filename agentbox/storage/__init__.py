"""
持久化模块 - 会话、消息、Agent 档案、渠道实例与任务记录的存储。

- models.py    : 数据模型（dataclass）
- base.py      : Storage 抽象接口与 NotFoundError
- memory.py    : InMemoryStorage，进程内实现
- json_store.py: JsonStorage，JSON/JSONL 文件写穿实现
"""

from agentbox.storage.base import NotFoundError, Storage
from agentbox.storage.json_store import JsonStorage
from agentbox.storage.memory import InMemoryStorage
from agentbox.storage.models import AgentRecord, ChannelConfig, Conversation, Message, TaskRun

__all__ = [
    "AgentRecord",
    "ChannelConfig",
    "Conversation",
    "InMemoryStorage",
    "JsonStorage",
    "Message",
    "NotFoundError",
    "Storage",
    "TaskRun",
]

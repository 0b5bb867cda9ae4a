"""
JSON 文件存储实现 (storage/json_store.py)

在 InMemoryStorage 之上做"写穿"持久化：内存里始终是完整数据，
每次写操作后把受影响的文件整体重写。

【存储格式】
data_dir/
├── conversations/
│   └── 12.jsonl      第一行：元数据行（_type="metadata"，会话字段）
│                     后续行：每行一条消息
├── agents.json
├── channels.json
└── task_runs.json

JSONL 格式的优点：逐行解析、人类可读，方便调试。
损坏的文件会被跳过并记录警告，不会阻止启动。
"""

import itertools
import json
from pathlib import Path

from loguru import logger

from agentbox.storage.memory import InMemoryStorage
from agentbox.storage.models import AgentRecord, ChannelConfig, Conversation, Message, TaskRun
from agentbox.utils.helpers import ensure_dir


class JsonStorage(InMemoryStorage):
    """以 JSON/JSONL 文件持久化的存储。"""

    def __init__(self, data_dir: Path):
        super().__init__()
        self.data_dir = ensure_dir(data_dir)
        self.conversations_dir = ensure_dir(data_dir / "conversations")
        self._load()

    # ---- 加载 ----

    def _load(self) -> None:
        for path in sorted(self.conversations_dir.glob("*.jsonl")):
            self._load_conversation(path)

        for item in self._read_json("agents.json"):
            agent = AgentRecord.from_dict(item)
            self._agents[agent.id] = agent
        for item in self._read_json("channels.json"):
            channel = ChannelConfig.from_dict(item)
            self._channels[channel.id] = channel
        for item in self._read_json("task_runs.json"):
            run = TaskRun.from_dict(item)
            self._task_runs[run.id] = run

        # ID 计数器从已有最大值之后继续
        max_message = max((m.id for msgs in self._messages.values() for m in msgs), default=0)
        self._conversation_ids = itertools.count(max(self._conversations, default=0) + 1)
        self._message_ids = itertools.count(max_message + 1)
        self._task_run_ids = itertools.count(max(self._task_runs, default=0) + 1)

        logger.debug(
            f"Loaded {len(self._conversations)} conversations, {len(self._agents)} agents, "
            f"{len(self._channels)} channels from {self.data_dir}"
        )

    def _load_conversation(self, path: Path) -> None:
        try:
            conv: Conversation | None = None
            messages: list[Message] = []
            with open(path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    if data.pop("_type", None) == "metadata":
                        conv = Conversation.from_dict(data)
                    else:
                        messages.append(Message.from_dict(data))
            if conv is None:
                logger.warning(f"Conversation file without metadata line: {path}")
                return
            self._conversations[conv.id] = conv
            self._messages[conv.id] = messages
        except Exception as e:
            logger.warning(f"Failed to load conversation {path.name}: {e}")

    def _read_json(self, name: str) -> list[dict]:
        path = self.data_dir / name
        if not path.exists():
            return []
        try:
            return json.loads(path.read_text())
        except Exception as e:
            logger.warning(f"Failed to load {name}: {e}")
            return []

    # ---- 写回 ----

    def _write_json(self, name: str, items: list[dict]) -> None:
        (self.data_dir / name).write_text(json.dumps(items, indent=2, ensure_ascii=False))

    def _on_conversation_changed(self, conversation_id: int) -> None:
        conv = self._conversations[conversation_id]
        path = self.conversations_dir / f"{conversation_id}.jsonl"
        with open(path, "w") as f:
            f.write(json.dumps({"_type": "metadata", **conv.to_dict()}, ensure_ascii=False) + "\n")
            for msg in self._messages.get(conversation_id, []):
                f.write(json.dumps(msg.to_dict(), ensure_ascii=False) + "\n")

    def _on_agents_changed(self) -> None:
        self._write_json("agents.json", [a.to_dict() for a in self._agents.values()])

    def _on_channels_changed(self) -> None:
        self._write_json("channels.json", [c.to_dict() for c in self._channels.values()])

    def _on_task_runs_changed(self) -> None:
        self._write_json("task_runs.json", [r.to_dict() for r in self._task_runs.values()])

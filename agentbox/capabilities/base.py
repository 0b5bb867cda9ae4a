"""
能力提供者基类 (capabilities/base.py)

一个 CapabilityProvider 代表一组外部操作。子类声明:
  - name: 能力名（同时也是暴露给模型的工具名）
  - description: 能力描述
  - actions: {动作名: {"description": ..., "parameters": JSON Schema}}
  - execute(action, params, context): 执行一个动作，返回任意可 JSON 序列化的数据

执行失败时抛出 CapabilityError（或任何异常），由注册表统一转换为失败结果。

【Java 开发者类比】
CapabilityProvider 相当于一个带"命令表"的策略接口，
actions 类似于 Map<String, CommandSpec>，execute 类似于 Command.dispatch(name, args)。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class CapabilityError(Exception):
    """能力执行失败。"""


@dataclass
class CapabilityContext:
    """执行动作时携带的调用方信息。"""
    agent_id: str
    conversation_id: int | None = None


@dataclass
class CapabilityResult:
    success: bool
    data: Any = None
    error: str | None = None


class CapabilityProvider(ABC):
    """外部能力提供者的抽象基类。"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def actions(self) -> dict[str, dict[str, Any]]:
        """动作表：动作名 -> {"description": str, "parameters": JSON Schema}。"""
        pass

    @abstractmethod
    async def execute(self, action: str, params: dict[str, Any], context: CapabilityContext) -> Any:
        """
        执行一个动作。

        异常:
            CapabilityError: 动作执行失败（错误信息会展示给模型）
        """
        pass

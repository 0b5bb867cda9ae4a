"""
能力注册表模块 - 外部集成（能力）的统一入口。

【架构定位】
能力 (Capability) 是一组相关的外部操作，例如 "web" 能力提供 search / fetch 两个动作。
- 每个能力向模型只暴露一个工具：工具名即能力名，参数为 action 枚举 + params 对象，
  无论能力下有多少动作，工具数量都保持有界
- 工具循环通过 CapabilityRegistry.execute(能力名, 动作, 参数, 上下文) 调用能力，
  结果统一为 CapabilityResult(success, data | error)，注册表从不抛异常
"""

from agentbox.capabilities.base import (
    CapabilityContext,
    CapabilityError,
    CapabilityProvider,
    CapabilityResult,
)
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.capabilities.web import WebCapability

__all__ = [
    "CapabilityContext",
    "CapabilityError",
    "CapabilityProvider",
    "CapabilityRegistry",
    "CapabilityResult",
    "WebCapability",
]

"""
工具调用路由 (agent/tools/routing.py)

模型发出的每个工具调用，都先经过 resolve_tool_call() 解析成下面几种路由之一：

    BuiltinMemory / BuiltinCron / BuiltinAgentSpawn / BuiltinBrowser / BuiltinFilesystem
        内置工具分组，按名称前缀（memory__ / cron__ / agent__ / browser__ / fs__）识别
    ProviderRouted
        "一个能力一个工具"的调用：工具名就是能力名，参数里带 action 和 params
    LegacyNamespaced
        旧格式 "能力__方法"，整个参数对象即方法参数
    Unknown
        以上都不匹配

resolve_tool_call() 是全函数：对任意输入都返回一个路由，从不抛异常。
分发器再按路由类型（isinstance）把调用交给对应的处理者。

【Java 开发者类比】
相当于一个 sealed interface ToolRoute 加上若干 record 实现，
resolve_tool_call() 是返回 ToolRoute 的静态工厂方法。
"""

from dataclasses import dataclass, field
from typing import Any, Collection


@dataclass(frozen=True)
class BuiltinRoute:
    """内置工具分组的公共基类，tool 为完整工具名。"""
    tool: str


@dataclass(frozen=True)
class BuiltinMemory(BuiltinRoute):
    pass


@dataclass(frozen=True)
class BuiltinCron(BuiltinRoute):
    pass


@dataclass(frozen=True)
class BuiltinAgentSpawn(BuiltinRoute):
    pass


@dataclass(frozen=True)
class BuiltinBrowser(BuiltinRoute):
    pass


@dataclass(frozen=True)
class BuiltinFilesystem(BuiltinRoute):
    pass


@dataclass(frozen=True)
class ProviderRouted:
    provider: str
    action: str | None
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LegacyNamespaced:
    provider: str
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Unknown:
    name: str


ToolRoute = (
    BuiltinMemory | BuiltinCron | BuiltinAgentSpawn | BuiltinBrowser | BuiltinFilesystem
    | ProviderRouted | LegacyNamespaced | Unknown
)

# 分组前缀 -> 路由类型
BUILTIN_GROUPS: dict[str, type[BuiltinRoute]] = {
    "memory": BuiltinMemory,
    "cron": BuiltinCron,
    "agent": BuiltinAgentSpawn,
    "browser": BuiltinBrowser,
    "fs": BuiltinFilesystem,
}


def resolve_tool_call(name: str, arguments: dict[str, Any] | None, providers: Collection[str]) -> ToolRoute:
    """
    把一个工具调用解析成路由。

    参数:
        name: 模型给出的工具名
        arguments: 模型给出的参数（可能为 None 或非 dict）
        providers: 当前已注册的能力名集合

    匹配顺序：内置分组前缀 -> 能力名（action + params）-> 旧格式 "能力__方法" -> Unknown
    """
    args = arguments if isinstance(arguments, dict) else {}

    prefix, sep, rest = (name or "").partition("__")
    if sep and rest and prefix in BUILTIN_GROUPS:
        return BUILTIN_GROUPS[prefix](name)

    if name in providers:
        action = args.get("action")
        params = args.get("params")
        return ProviderRouted(
            provider=name,
            action=action if isinstance(action, str) and action else None,
            params=params if isinstance(params, dict) else {},
        )

    parts = (name or "").split("__")
    if len(parts) == 2 and all(parts) and parts[0] in providers:
        return LegacyNamespaced(provider=parts[0], method=parts[1], params=dict(args))

    return Unknown(name)

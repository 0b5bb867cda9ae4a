"""
内置工具注册表 (agent/tools/registry.py)

模块职责：
    按名称管理内置工具实例（memory__* / cron__* / agent__* / fs__* / browser__*），
    提供注册、查找、按分组导出定义、执行的能力。

在架构中的位置：
    ToolDispatcher 持有一个 ToolRegistry：
    1. 组装工具清单时，按特性开关选出启用的分组，调用 definitions(groups)
    2. 路由结果是内置分组时，调用 execute(name, params)

设计模式对比（Java 视角）：
    类似于 Spring 的 ServiceLocator：register() 注册 Bean，get() 取 Bean，
    execute() 查找并调用。运行时动态注册，而非编译期注入。
"""

from typing import Any, Iterable

from loguru import logger

from agentbox.agent.tools.base import Tool, ToolError


def tool_group(name: str) -> str:
    """工具名的分组前缀，如 "fs__read_file" -> "fs"。"""
    return name.split("__", 1)[0]


class ToolRegistry:
    """内置工具注册表，以工具名为键。"""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """注册工具，同名工具会被覆盖。"""
        self._tools[tool.name] = tool

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def definitions(self, groups: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """
        导出 OpenAI Function Calling 格式的工具定义。

        参数:
            groups: 只导出这些分组的工具；为 None 时导出全部。
        """
        wanted = set(groups) if groups is not None else None
        return [
            tool.to_schema()
            for tool in self._tools.values()
            if wanted is None or tool_group(tool.name) in wanted
        ]

    async def execute(self, name: str, params: dict[str, Any]) -> tuple[str, bool]:
        """
        执行一个内置工具，返回 (输出文本, 是否成功)。

        任何异常都会被转换成失败结果，不会向上抛出。
        """
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Tool '{name}' not found", False

        try:
            errors = tool.validate_params(params)
            if errors:
                return f"Error: Invalid parameters for tool '{name}': " + "; ".join(errors), False
            return await tool.execute(**params), True
        except ToolError as e:
            return str(e), False
        except Exception as e:
            logger.warning(f"Tool {name} raised: {e}")
            return f"Error executing {name}: {str(e)}", False

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

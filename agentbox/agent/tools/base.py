"""
工具基类模块 (agent/tools/base.py)

模块职责：
    定义内置工具的抽象基类 Tool，以及工具执行结果的数据结构。
    每个工具实现 name、description、parameters、execute 四个接口；
    基类提供参数校验（validate_params）和 OpenAI Function Calling 格式转换（to_schema）。

在架构中的位置：
    Tool 是内置工具组（memory / cron / agent / fs / browser）的最底层抽象。
    ToolDispatcher 把模型发出的工具调用解析成路由，再落到 Tool.execute() 或能力注册表上，
    最终统一产出一个 ToolResult。

失败模型：
    - 工具内部遇到"模型可以看懂并纠正"的错误（缺参数、越权路径）时抛 ToolError，
      分发器把 str(e) 原样作为失败输出
    - 其他异常由分发器包装成 "Error executing <name>: <e>"
    两种情况都不会中断工具循环。

设计模式对比（Java 视角）：
    - Tool 相当于 abstract class + 模板方法：validate_params() 是通用校验，execute() 由子类实现
    - ToolResult / ToolUsage 相当于不可变的 DTO
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Iterator

TRUNCATION_MARKER = "\n\n[OUTPUT TRUNCATED]"


class ToolError(Exception):
    """内置工具执行失败（错误信息会直接展示给模型）。"""


@dataclass(frozen=True)
class ToolContext:
    """当前工具调用所属的 Agent 和会话。"""
    agent_id: str
    conversation_id: int | None = None


# 每个 asyncio 任务各自持有，并发的多个回合互不干扰
_current_context: ContextVar[ToolContext | None] = ContextVar("agentbox_tool_context", default=None)


@contextmanager
def use_context(ctx: ToolContext) -> Iterator[ToolContext]:
    """在 with 块内把 ctx 设为当前工具上下文。"""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def current_context() -> ToolContext:
    ctx = _current_context.get()
    if ctx is None:
        raise ToolError("Error: no agent context for this tool call")
    return ctx


@dataclass
class ToolResult:
    """一次工具调用的结果，通过 tool_call_id 与原始调用配对。"""
    tool_call_id: str
    name: str
    output: str
    success: bool


@dataclass
class ToolUsage:
    """回合结束后返回给调用方的工具使用记录。"""
    name: str
    input: dict[str, Any]
    output: str
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "input": self.input, "output": self.output, "success": self.success}


def truncate_output(text: str, limit: int) -> str:
    """
    把工具输出裁剪到 limit 个字符，并追加截断标记。

    已经被截断过的文本（恰好 limit 个字符 + 标记）原样返回，重复调用不会叠加标记。
    """
    if len(text) <= limit:
        return text
    if text.endswith(TRUNCATION_MARKER) and len(text) - len(TRUNCATION_MARKER) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def require(params: dict[str, Any], *names: str) -> None:
    """检查必填参数，缺失时抛出 ToolError。"""
    for name in names:
        value = params.get(name)
        if value is None or value == "":
            raise ToolError(f"Missing required parameter: {name}")


class Tool(ABC):
    """
    内置工具的抽象基类。

    子类需要实现:
      - name: 带分组前缀的工具名（如 "memory__read"），模型用它发起调用
      - description: 工具功能描述
      - parameters: JSON Schema 格式的参数定义
      - execute(): 实际执行逻辑，返回文本结果
    """

    # JSON Schema 类型 -> Python 类型
    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

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
    def parameters(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """
        执行工具逻辑。

        返回:
            str: 结果文本，回传给模型作为下一轮推理的上下文。

        异常:
            ToolError: 模型可见的失败（缺参数、拒绝访问等）
        """
        pass

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """根据 JSON Schema 校验参数，返回错误列表（空列表表示通过）。"""
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        t, label = schema.get("type"), path or "parameter"
        # bool 是 int 的子类，integer/number 不能接受布尔值
        if t in ("integer", "number") and isinstance(val, bool):
            return [f"{label} should be {t}"]
        if t in self._TYPE_MAP and not isinstance(val, self._TYPE_MAP[t]):
            return [f"{label} should be {t}"]

        errors = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}")
        if t in ("integer", "number"):
            if "minimum" in schema and val < schema["minimum"]:
                errors.append(f"{label} must be >= {schema['minimum']}")
            if "maximum" in schema and val > schema["maximum"]:
                errors.append(f"{label} must be <= {schema['maximum']}")
        if t == "object":
            props = schema.get("properties", {})
            for k in schema.get("required", []):
                if k not in val:
                    errors.append(f"missing required {path + '.' + k if path else k}")
            for k, v in val.items():
                if k in props:
                    errors.extend(self._validate(v, props[k], path + '.' + k if path else k))
        if t == "array" and "items" in schema:
            for i, item in enumerate(val):
                errors.extend(self._validate(item, schema["items"], f"{path}[{i}]" if path else f"[{i}]"))
        return errors

    def to_schema(self) -> dict[str, Any]:
        """转换为 OpenAI Function Calling 格式。"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

"""
能力注册表 (capabilities/registry.py)

职责：
1. 管理 CapabilityProvider 实例（register / get / names）
2. 为每个能力生成一个 OpenAI 函数描述（action 枚举 + params 对象）
3. execute() 执行能力动作，把所有失败都转换成 CapabilityResult(success=False)
"""

from typing import Any, Iterable

from loguru import logger

from agentbox.capabilities.base import CapabilityContext, CapabilityProvider, CapabilityResult


class CapabilityRegistry:
    """能力注册表，以能力名为键。"""

    def __init__(self):
        self._providers: dict[str, CapabilityProvider] = {}

    def register(self, provider: CapabilityProvider) -> None:
        self._providers[provider.name] = provider
        logger.debug(f"Capability registered: {provider.name} ({len(provider.actions)} actions)")

    def get(self, name: str) -> CapabilityProvider | None:
        return self._providers.get(name)

    def names(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def descriptor(self, name: str) -> dict[str, Any] | None:
        """
        生成能力对应的单个工具描述。

        示例（web 能力）:
            {
                "type": "function",
                "function": {
                    "name": "web",
                    "description": "...\\n\\nActions:\\n- search: ...\\n- fetch: ...",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "action": {"type": "string", "enum": ["search", "fetch"]},
                            "params": {"type": "object", ...}
                        },
                        "required": ["action"]
                    }
                }
            }
        """
        provider = self._providers.get(name)
        if provider is None:
            return None

        actions = provider.actions
        action_lines = "\n".join(
            f"- {action}: {spec.get('description', '')}" for action, spec in actions.items()
        )
        params_hint = "; ".join(
            f"{action}({', '.join(spec.get('parameters', {}).get('properties', {}).keys())})"
            for action, spec in actions.items()
        )
        return {
            "type": "function",
            "function": {
                "name": provider.name,
                "description": f"{provider.description}\n\nActions:\n{action_lines}",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "action": {
                            "type": "string",
                            "enum": list(actions.keys()),
                            "description": "The action to perform",
                        },
                        "params": {
                            "type": "object",
                            "description": f"Parameters for the action: {params_hint}",
                        },
                    },
                    "required": ["action"],
                },
            },
        }

    def descriptors(self, names: Iterable[str]) -> list[dict[str, Any]]:
        """按给定顺序生成描述，跳过未注册的能力名。"""
        result = []
        for name in names:
            descriptor = self.descriptor(name)
            if descriptor is None:
                logger.warning(f"Capability '{name}' is enabled but not registered")
                continue
            result.append(descriptor)
        return result

    async def execute(
        self,
        provider_name: str,
        action: str,
        params: dict[str, Any],
        context: CapabilityContext,
    ) -> CapabilityResult:
        """执行能力动作。从不抛异常：未知能力、未知动作和执行异常都返回失败结果。"""
        provider = self._providers.get(provider_name)
        if provider is None:
            return CapabilityResult(success=False, error=f"Capability '{provider_name}' not found")
        if action not in provider.actions:
            return CapabilityResult(
                success=False,
                error=f"Unknown action '{action}' for {provider_name}. "
                      f"Available: {', '.join(provider.actions)}",
            )

        try:
            data = await provider.execute(action, params, context)
            return CapabilityResult(success=True, data=data)
        except Exception as e:
            logger.warning(f"Capability {provider_name}.{action} failed: {e}")
            return CapabilityResult(success=False, error=str(e) or type(e).__name__)

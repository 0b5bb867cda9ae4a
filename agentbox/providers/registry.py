"""
LLM 提供者注册表 - 所有 LLM 服务商元数据的唯一真相来源。

本模块采用"数据驱动"的设计思想：各服务商的差异（API Key 环境变量名、
模型前缀、默认端点）都集中在 PROVIDERS 元组中声明，代码逻辑完全通用。

模型名到服务商的识别规则：
  - "ollama:llama3" / "ollama/llama3" → 本地 Ollama
  - 包含 "claude"                      → Anthropic
  - 包含 "grok"                        → xAI
  - 包含 "gemini"                      → Google Gemini
  - 包含 "gpt" / "o1" / "o3"           → OpenAI

PROVIDERS 中的顺序很重要 - 它决定了匹配优先级和回退顺序。网关排在最前面。
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderSpec:
    """
    单个 LLM 服务商的元数据规格定义。

    属性:
        name: 配置字段名（如 "anthropic"），对应 config.json 中 providers 下的 key
        keywords: 模型名关键词元组，用于根据模型名匹配服务商（全小写）
        env_key: LiteLLM 需要的环境变量名
        display_name: 在 `agentbox status` 命令中显示的名称
        litellm_prefix: LiteLLM 路由前缀（"gemini" → 模型变为 "gemini/{model}"）
        skip_prefixes: 模型名已有这些前缀时跳过添加
        is_gateway: 是否是 API 网关（可路由任意模型）
        is_local: 是否是本地部署（无需 API Key）
        detect_by_key_prefix: 通过 API Key 前缀自动检测网关（如 "sk-or-"）
        default_api_base: 默认的 API 基础 URL
    """

    name: str
    keywords: tuple[str, ...]
    env_key: str
    display_name: str = ""
    litellm_prefix: str = ""
    skip_prefixes: tuple[str, ...] = ()
    is_gateway: bool = False
    is_local: bool = False
    detect_by_key_prefix: str = ""
    default_api_base: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name.title()

    def matches(self, model_lower: str) -> bool:
        """模型名（小写）是否命中本服务商的关键词。"""
        return any(kw in model_lower for kw in self.keywords)


PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        name="openrouter",
        keywords=("openrouter",),
        env_key="OPENROUTER_API_KEY",
        display_name="OpenRouter",
        litellm_prefix="openrouter",
        is_gateway=True,
        detect_by_key_prefix="sk-or-",
        default_api_base="https://openrouter.ai/api/v1",
    ),
    ProviderSpec(
        name="ollama",
        keywords=("ollama",),
        env_key="OLLAMA_API_KEY",
        display_name="Ollama",
        litellm_prefix="ollama_chat",
        skip_prefixes=("ollama_chat/", "ollama/"),
        is_local=True,
        default_api_base="http://localhost:11434",
    ),
    ProviderSpec(
        name="anthropic",
        keywords=("anthropic", "claude"),
        env_key="ANTHROPIC_API_KEY",
        display_name="Anthropic",
    ),
    ProviderSpec(
        name="xai",
        keywords=("xai", "grok"),
        env_key="XAI_API_KEY",
        display_name="xAI",
        litellm_prefix="xai",
        skip_prefixes=("xai/",),
    ),
    ProviderSpec(
        name="gemini",
        keywords=("gemini",),
        env_key="GEMINI_API_KEY",
        display_name="Gemini",
        litellm_prefix="gemini",
        skip_prefixes=("gemini/",),
    ),
    ProviderSpec(
        name="openai",
        keywords=("openai", "gpt", "o1", "o3"),
        env_key="OPENAI_API_KEY",
        display_name="OpenAI",
    ),
)


def normalize_model(model: str) -> str:
    """把 "ollama:llama3" 这种冒号写法规范成 LiteLLM 的斜杠写法。"""
    if model.startswith("ollama:"):
        return "ollama/" + model[len("ollama:"):]
    return model


def find_by_model(model: str) -> ProviderSpec | None:
    """根据模型名匹配标准（非网关）服务商。"""
    model_lower = normalize_model(model).lower()
    for spec in PROVIDERS:
        if spec.is_gateway:
            continue
        if spec.matches(model_lower):
            return spec
    return None


def find_gateway(provider_name: str | None = None, api_key: str | None = None) -> ProviderSpec | None:
    """
    检测当前配置是否指向网关。

    优先级：配置 key 名直接映射到网关 spec > API Key 前缀检测。
    """
    if provider_name:
        spec = find_by_name(provider_name)
        if spec and spec.is_gateway:
            return spec

    for spec in PROVIDERS:
        if spec.detect_by_key_prefix and api_key and api_key.startswith(spec.detect_by_key_prefix):
            return spec

    return None


def find_by_name(name: str) -> ProviderSpec | None:
    """根据配置字段名查找 ProviderSpec。"""
    for spec in PROVIDERS:
        if spec.name == name:
            return spec
    return None

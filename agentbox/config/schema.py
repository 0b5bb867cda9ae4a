"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 agentbox 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── agents        - 默认模型参数 + Agent 档案（指令、能力、特性覆盖、渠道绑定）
├── providers     - LLM 提供商配置（API Key、API Base URL 等）
├── features      - 全局特性开关（soul 记忆、深度工具、主动任务、后台 Agent、多渠道）
├── session       - 会话策略（活跃窗口、摘要阈值）
├── context       - 上下文组装参数（历史条数、记忆召回、缓存 TTL）
├── tools         - 工具循环与内置工具配置
└── channels      - 渠道适配器公共参数

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


# ==============================================================================
# Agent 配置
# ==============================================================================


class AgentDefaults(BaseModel):
    """所有 Agent 共享的默认参数。"""
    workspace: str = "~/.agentbox/workspace"  # 工作区：记忆文档、会话、任务数据都放在这里
    model: str = "anthropic/claude-sonnet-4-20250514"  # 默认模型
    max_tokens: int = 2048  # 单次生成的最大 token 数
    temperature: float = 0.7


class ChannelBinding(BaseModel):
    """Agent 绑定的一个渠道实例（启动时写入存储层的 ChannelConfig）。"""
    id: int  # 渠道实例 ID，入站请求通过它定位所属 Agent
    type: str  # slack / teams / webhook
    name: str = ""
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)  # 适配器私有配置（bot_token、callback_url 等）


class HeartbeatBinding(BaseModel):
    """
    Agent 的心跳配置：定期按检查清单自检一次。

    免打扰时段支持跨午夜（如 23:00 到 08:00），时间按 timezone 换算。
    """
    enabled: bool = False
    interval_minutes: int = 30
    checklist: str = ""  # Markdown 检查清单，为空时使用通用提示
    quiet_hours_start: str | None = None  # "23:00" 或 "23:00:00"
    quiet_hours_end: str | None = None
    timezone: str = "UTC"


class AgentProfile(BaseModel):
    """单个 Agent 的档案。"""
    id: str
    name: str = ""
    instructions: str = ""  # 静态指令（未启用 soul 记忆时使用）
    model: str | None = None  # 为空时使用 defaults.model
    capabilities: list[str] = Field(default_factory=list)  # 启用的能力提供者名称
    features: dict[str, bool] = Field(default_factory=dict)  # 特性覆盖，如 {"deep_tools": false}
    channels: list[ChannelBinding] = Field(default_factory=list)
    heartbeat: HeartbeatBinding | None = None


class AgentsConfig(BaseModel):
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)
    profiles: list[AgentProfile] = Field(default_factory=list)


# ==============================================================================
# LLM 提供商配置
# ==============================================================================


class ProviderConfig(BaseModel):
    """单个 LLM 提供商的连接配置。"""
    api_key: str = ""
    api_base: str | None = None  # 自定义 API 基础 URL（用于私有部署或代理）
    extra_headers: dict[str, str] | None = None


class ProvidersConfig(BaseModel):
    """
    所有 LLM 提供商的聚合配置（用户只需配置使用的那个）。

    - anthropic: Claude 系列
    - openai: GPT 系列
    - openrouter: OpenRouter 聚合网关
    - gemini: Google Gemini
    - xai: Grok
    - ollama: 本地 Ollama 部署
    """
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    xai: ProviderConfig = Field(default_factory=ProviderConfig)
    ollama: ProviderConfig = Field(default_factory=ProviderConfig)


# ==============================================================================
# 运行时策略配置
# ==============================================================================


class FeaturesConfig(BaseModel):
    """
    全局特性开关。

    每个 Agent 的有效值 = 全局开关 AND (Agent 覆盖值 != False)，
    即 Agent 只能关闭全局已开启的特性，不能打开全局关闭的特性。
    """
    soul_memory: bool = True  # soul.md/context.md 人设 + 记忆工具 + 记忆召回
    deep_tools: bool = True  # 文件系统 / 浏览器工具
    proactive: bool = True  # 定时任务工具 + 心跳
    background_agents: bool = True  # agent__spawn_task
    multi_channel: bool = True  # 定时任务结果广播到所有渠道


class SessionConfig(BaseModel):
    """会话亲和性与摘要策略。"""
    active_window_minutes: int = 30  # 最后一条消息在此窗口内的会话视为"活跃"
    summarize_threshold: int = 20  # 消息数超过该值且尚无摘要时触发摘要
    summary_message_window: int = 30  # 生成摘要时读取的最近消息条数
    summary_max_tokens: int = 300


class ContextConfig(BaseModel):
    """上下文组装参数。"""
    max_history_with_tools: int = 4  # 启用工具时的历史条数（工具结果本身已携带上下文）
    max_history_without_tools: int = 20
    message_char_cap: int = 1500  # 单条历史消息的最大字符数
    memory_top_k: int = 5
    memory_min_similarity: float = 0.3
    summary_fetch_limit: int = 6
    summary_limit: int = 3
    agent_cache_ttl: float = 60.0  # 秒
    feature_cache_ttl: float = 30.0  # 秒


class FilesystemToolConfig(BaseModel):
    """文件系统工具配置。allowed_directories 为空时所有 fs__ 工具都会拒绝访问。"""
    allowed_directories: list[str] = Field(default_factory=list)
    max_read_bytes: int = 10 * 1024 * 1024
    max_write_bytes: int = 10 * 1024 * 1024


class BrowserToolConfig(BaseModel):
    """浏览器工具配置（Playwright）。"""
    browser_type: str = "chromium"
    headless: bool = True
    timeout_ms: int = 30000


class SpawnToolConfig(BaseModel):
    """后台任务工具的超时配置（秒）。"""
    default_timeout: int = 120
    min_timeout: int = 10
    max_timeout: int = 600


class WebSearchConfig(BaseModel):
    """Web 搜索能力配置。使用 Brave Search API 提供搜索能力。"""
    api_key: str = ""
    max_results: int = 5


class ToolsConfig(BaseModel):
    """工具循环与内置工具配置。"""
    max_iterations: int = 10  # 工具循环的硬上限
    max_output_chars: int = 20000  # 单个工具结果回传给模型前的最大字符数
    filesystem: FilesystemToolConfig = Field(default_factory=FilesystemToolConfig)
    browser: BrowserToolConfig = Field(default_factory=BrowserToolConfig)
    spawn: SpawnToolConfig = Field(default_factory=SpawnToolConfig)
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)


class ChannelsConfig(BaseModel):
    """渠道适配器公共参数。"""
    webhook_timeout: float = 10.0  # 出站 webhook 超时（秒）
    slack_timestamp_tolerance: int = 300  # Slack 签名时间戳允许的偏差（秒）


class HeartbeatConfig(BaseModel):
    """心跳轮询参数（每个 Agent 的心跳配置在 AgentProfile.heartbeat 中）。"""
    poll_interval_seconds: int = 60  # 多久检查一次哪些 Agent 到期


# ==============================================================================
# 根配置类
# ==============================================================================


class Config(BaseSettings):
    """
    agentbox 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: AGENTBOX_
    - 嵌套分隔符: __ (双下划线)
    - 示例: AGENTBOX_AGENTS__DEFAULTS__MODEL=openai/gpt-4o 可覆盖 agents.defaults.model
    """
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)

    @property
    def workspace_path(self) -> Path:
        """获取展开后的工作区绝对路径（将 ~ 展开为用户主目录）。"""
        return Path(self.agents.defaults.workspace).expanduser()

    @property
    def data_path(self) -> Path:
        """会话、渠道、任务记录的持久化目录。"""
        return self.workspace_path / "data"

    def _match_provider(self, model: str | None = None) -> tuple["ProviderConfig | None", str | None]:
        """
        根据模型名称匹配对应的 LLM 提供商配置。

        匹配策略（两阶段）：
        1. 关键词匹配：根据模型名中的关键词（如 "claude" → anthropic）
           找到对应的提供商，且该提供商必须已配置 api_key（本地部署除外）
        2. 兜底匹配：返回第一个已配置 api_key 的提供商
        """
        from agentbox.providers.registry import PROVIDERS
        model_lower = (model or self.agents.defaults.model).lower()

        for spec in PROVIDERS:
            p = getattr(self.providers, spec.name, None)
            if p and spec.matches(model_lower) and (p.api_key or spec.is_local):
                return p, spec.name

        for spec in PROVIDERS:
            p = getattr(self.providers, spec.name, None)
            if p and p.api_key:
                return p, spec.name
        return None, None

    def get_provider(self, model: str | None = None) -> ProviderConfig | None:
        """获取匹配的提供商配置（包含 api_key、api_base、extra_headers）。"""
        p, _ = self._match_provider(model)
        return p

    def get_provider_name(self, model: str | None = None) -> str | None:
        """获取匹配的提供商注册名称（如 "anthropic"、"openrouter"）。"""
        _, name = self._match_provider(model)
        return name

    def get_api_key(self, model: str | None = None) -> str | None:
        p = self.get_provider(model)
        return p.api_key if p else None

    def get_api_base(self, model: str | None = None) -> str | None:
        """
        获取指定模型对应的 API Base URL。

        优先级：用户显式配置的 api_base > 网关/本地部署的默认 api_base。
        """
        from agentbox.providers.registry import find_by_name
        p, name = self._match_provider(model)
        if p and p.api_base:
            return p.api_base
        if name:
            spec = find_by_name(name)
            if spec and (spec.is_gateway or spec.is_local) and spec.default_api_base:
                return spec.default_api_base
        return None

    def get_profile(self, agent_id: str) -> AgentProfile | None:
        """按 ID 查找 Agent 档案。"""
        for profile in self.agents.profiles:
            if profile.id == agent_id:
                return profile
        return None

    # Pydantic Settings 配置：支持 AGENTBOX_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = ConfigDict(
        env_prefix="AGENTBOX_",
        env_nested_delimiter="__"
    )

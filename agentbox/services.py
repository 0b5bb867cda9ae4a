"""
服务编排模块 - 把配置变成一套可运行的对象图。

gateway 和 agent 两个 CLI 命令都通过 build_services() 组装同一套组件：

  存储 → Agent 档案缓存 / 特性解析 → 记忆文档 → 能力注册表（web）
  → 工具注册表（memory / cron / fs / browser / agent）→ 工具分发器 → 工具循环
  → 会话管理 → 上下文构建 → AgentRuntime → 后台任务执行器 → 渠道路由器
  → 定时任务 / 心跳的执行回调（隔离会话 + 执行记录 + 按需广播）

所有组件都是显式构造、显式传递的实例，进程里没有全局单例。

【Java 开发者类比】
相当于 Spring 的 @Configuration 类：每个组件是一个 @Bean，依赖通过构造器注入。
"""

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger

from agentbox.agent.cache import AgentCache
from agentbox.agent.context import ContextBuilder
from agentbox.agent.features import FeatureResolver
from agentbox.agent.loop import ToolLoopExecutor
from agentbox.agent.memory import MemoryStore
from agentbox.agent.runtime import AgentRuntime
from agentbox.agent.subagent import BackgroundAgentRunner
from agentbox.agent.tools.browser import BrowserManager, browser_tools
from agentbox.agent.tools.cron import cron_tools
from agentbox.agent.tools.dispatcher import ToolDispatcher
from agentbox.agent.tools.filesystem import FsSandbox, filesystem_tools
from agentbox.agent.tools.memory import memory_tools
from agentbox.agent.tools.registry import ToolRegistry
from agentbox.agent.tools.spawn import SpawnTaskTool
from agentbox.capabilities.registry import CapabilityRegistry
from agentbox.capabilities.web import WebCapability
from agentbox.channels.router import ChannelRouter
from agentbox.channels.slack import SlackAdapter
from agentbox.channels.teams import TeamsAdapter
from agentbox.channels.webhook import WebhookAdapter
from agentbox.config.schema import Config
from agentbox.cron.service import CronService
from agentbox.cron.types import CronJob
from agentbox.heartbeat.service import HeartbeatService, is_heartbeat_ok
from agentbox.providers.base import LLMProvider
from agentbox.session.manager import SessionManager
from agentbox.storage.base import Storage
from agentbox.storage.json_store import JsonStorage
from agentbox.storage.models import AgentRecord, ChannelConfig

DEFAULT_AGENT_ID = "default"
CRON_USER_ID = "__cron__"
HEARTBEAT_USER_ID = "__heartbeat__"


@dataclass
class Services:
    config: Config
    storage: Storage
    agents: AgentCache
    features: FeatureResolver
    memory: MemoryStore
    tools: ToolRegistry
    capabilities: CapabilityRegistry
    runtime: AgentRuntime
    runner: BackgroundAgentRunner
    cron: CronService
    heartbeat: HeartbeatService
    browser: BrowserManager
    router: ChannelRouter

    async def shutdown(self) -> None:
        self.cron.stop()
        self.heartbeat.stop()
        await self.runner.cancel_all()
        await self.router.shutdown()
        await self.browser.shutdown()


async def sync_profiles(storage: Storage, config: Config) -> int:
    """
    把配置文件中的 Agent 档案和渠道绑定写入存储层。

    已存在的 Agent 保留 created_at；没有任何档案时确保存在一个默认 Agent。
    返回写入的 Agent 数量。
    """
    profiles = list(config.agents.profiles)
    for profile in profiles:
        existing = await storage.get_agent(profile.id)
        record = AgentRecord(
            id=profile.id,
            name=profile.name or profile.id,
            instructions=profile.instructions,
            model=profile.model,
            capabilities=list(profile.capabilities),
            features=dict(profile.features),
        )
        if existing is not None:
            record.created_at = existing.created_at
        await storage.save_agent(record)

        for binding in profile.channels:
            await storage.save_channel(ChannelConfig(
                id=binding.id,
                agent_id=profile.id,
                channel_type=binding.type,
                name=binding.name,
                config=dict(binding.config),
                enabled=binding.enabled,
            ))

    if not profiles and await storage.get_agent(DEFAULT_AGENT_ID) is None:
        await storage.save_agent(AgentRecord(
            id=DEFAULT_AGENT_ID,
            name="Default",
            instructions="You are a helpful AI assistant. Be concise, accurate, and friendly.",
        ))
        return 1
    return len(profiles)


def build_services(config: Config, provider: LLMProvider, storage: Storage | None = None) -> Services:
    """按配置组装完整的运行时对象图。storage 为空时使用工作区下的 JsonStorage。"""
    storage = storage or JsonStorage(config.data_path)

    agents = AgentCache(storage, ttl=config.context.agent_cache_ttl)
    features = FeatureResolver(config.features, agents, ttl=config.context.feature_cache_ttl)
    memory = MemoryStore(config.workspace_path)

    capabilities = CapabilityRegistry()
    capabilities.register(WebCapability(
        api_key=config.tools.web_search.api_key or None,
        max_results=config.tools.web_search.max_results,
    ))

    cron = CronService(config.data_path / "cron" / "jobs.json")
    heartbeat = HeartbeatService(
        config.data_path / "heartbeat" / "state.json",
        configs={p.id: p.heartbeat for p in config.agents.profiles if p.heartbeat is not None},
        poll_interval_s=config.heartbeat.poll_interval_seconds,
        enabled=config.features.proactive,
    )
    browser = BrowserManager(config.tools.browser)
    fs = config.tools.filesystem

    tools = ToolRegistry()
    tools.register_all(memory_tools(memory))
    tools.register_all(cron_tools(cron))
    tools.register_all(filesystem_tools(FsSandbox(fs.allowed_directories, fs.max_read_bytes, fs.max_write_bytes)))
    tools.register_all(browser_tools(browser))

    dispatcher = ToolDispatcher(tools, capabilities, max_output_chars=config.tools.max_output_chars)
    defaults = config.agents.defaults
    executor = ToolLoopExecutor(
        provider,
        dispatcher,
        max_iterations=config.tools.max_iterations,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
    )
    sessions = SessionManager(
        storage,
        provider,
        active_window=timedelta(minutes=config.session.active_window_minutes),
        summarize_threshold=config.session.summarize_threshold,
        summary_message_window=config.session.summary_message_window,
        summary_max_tokens=config.session.summary_max_tokens,
        summary_model=defaults.model,
    )
    context = ContextBuilder(storage, agents, features, memory, config=config.context, default_model=defaults.model)
    runtime = AgentRuntime(storage, sessions, context, executor, agents, features)

    spawn = config.tools.spawn
    runner = BackgroundAgentRunner(runtime, storage, features, default_timeout=spawn.default_timeout)
    tools.register(SpawnTaskTool(runner, spawn.default_timeout, spawn.min_timeout, spawn.max_timeout))

    router = ChannelRouter(storage, runtime)
    router.register_adapter(WebhookAdapter(timeout=config.channels.webhook_timeout))
    router.register_adapter(SlackAdapter(timestamp_tolerance=config.channels.slack_timestamp_tolerance))
    router.register_adapter(TeamsAdapter(timeout=config.channels.webhook_timeout))

    services = Services(
        config=config,
        storage=storage,
        agents=agents,
        features=features,
        memory=memory,
        tools=tools,
        capabilities=capabilities,
        runtime=runtime,
        runner=runner,
        cron=cron,
        heartbeat=heartbeat,
        browser=browser,
        router=router,
    )

    async def on_cron_job(job: CronJob) -> str | None:
        return await run_cron_job(services, job)

    async def on_heartbeat(agent_id: str, prompt: str) -> str | None:
        return await run_heartbeat(services, agent_id, prompt)

    cron.on_job = on_cron_job
    heartbeat.on_heartbeat = on_heartbeat
    return services


async def _run_isolated_turn(
    services: Services,
    agent_id: str,
    text: str,
    *,
    run_type: str,
    user_id: str,
    title: str,
    source_id: str | None = None,
    model: str | None = None,
) -> str:
    """
    在全新会话里跑一轮对话，记录执行结果；multi_channel 开启且回复不是 HEARTBEAT_OK 时广播。

    异常:
        对话失败时记录失败的执行记录后原样抛出
    """
    storage = services.storage
    run = await storage.create_task_run(agent_id, run_type, text, source_id=source_id)
    conversation_id: int | None = None
    try:
        conv = await services.runtime.start_conversation(agent_id, user_id, title)
        conversation_id = conv.id
        result = await services.runtime.handle_turn(agent_id, conv.id, text, model=model)
    except Exception as e:
        await storage.finish_task_run(run.id, status="failed", error=str(e), conversation_id=conversation_id)
        raise

    await storage.finish_task_run(run.id, status="completed", result=result.reply, conversation_id=conversation_id)

    features = await services.features.for_agent(agent_id)
    if features.multi_channel and not is_heartbeat_ok(result.reply):
        delivered = await services.router.send_to_all(agent_id, result.reply)
        logger.info(f"{title} reply broadcast to {delivered} channel(s)")
    return result.reply


async def run_cron_job(services: Services, job: CronJob) -> str:
    """执行一个定时任务（CronService 会根据是否抛异常记下 last_status / last_error）。"""
    return await _run_isolated_turn(
        services,
        job.agent_id,
        job.task_text,
        run_type="cron",
        user_id=CRON_USER_ID,
        title=f"Cron Job #{job.id}",
        source_id=str(job.id),
        model=job.model,
    )


async def run_heartbeat(services: Services, agent_id: str, prompt: str) -> str | None:
    """
    执行一次心跳。Agent 的 proactive 特性被关闭时跳过并返回 None。

    异常:
        对话失败时记录失败的执行记录后原样抛出（HeartbeatService 负责记录日志）
    """
    features = await services.features.for_agent(agent_id)
    if not features.proactive:
        logger.info(f"Heartbeat skipped for agent {agent_id}: proactive disabled")
        return None
    return await _run_isolated_turn(
        services,
        agent_id,
        prompt,
        run_type="heartbeat",
        user_id=HEARTBEAT_USER_ID,
        title="Heartbeat",
    )

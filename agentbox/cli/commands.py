"""
CLI 命令模块 - agentbox 的所有命令行命令定义。

本模块使用 Typer 框架定义 agentbox 的完整 CLI 命令体系：
- onboard：初始化配置和工作空间
- gateway：启动网关服务（渠道适配器 + 定时任务 + 心跳），直到 Ctrl+C
- agent：直接与 Agent 交互（单条消息或交互式对话）
- channels status：查看存储层中的渠道配置
- cron：定时任务管理（list / add / remove / enable）
- sessions list：查看某个 Agent 的最近会话
- status：查看系统状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（Markdown 渲染、表格等）
- prompt_toolkit：交互式输入（历史记录、多行粘贴）

HTTP 层不在本进程内：网关只初始化渠道适配器和调度器，入站 webhook 由外部
HTTP 服务调用 ChannelRouter.handle_inbound / process_inbound 接入。
"""

import asyncio
import os
import select
import signal
import sys
from pathlib import Path

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from agentbox import __logo__, __version__

app = typer.Typer(
    name="agentbox",
    help=f"{__logo__} agentbox - Multi-tenant conversational agent runtime",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

# ---------------------------------------------------------------------------
# CLI 输入：使用 prompt_toolkit 实现编辑、粘贴、历史记录和显示
# ---------------------------------------------------------------------------

_PROMPT_SESSION: PromptSession | None = None
_SAVED_TERM_ATTRS = None  # 保存的终端原始属性（用于退出时恢复）


def _flush_pending_tty_input() -> None:
    """清除 Agent 处理期间用户多按的键，避免干扰下一次读取。"""
    try:
        fd = sys.stdin.fileno()
        if not os.isatty(fd):
            return
    except Exception:
        return

    try:
        import termios
        termios.tcflush(fd, termios.TCIFLUSH)
        return
    except Exception:
        pass

    try:
        while True:
            ready, _, _ = select.select([fd], [], [], 0)
            if not ready:
                break
            if not os.read(fd, 4096):
                break
    except Exception:
        return


def _restore_terminal() -> None:
    """恢复终端到原始状态（回显、行缓冲等）。"""
    if _SAVED_TERM_ATTRS is None:
        return
    try:
        import termios
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, _SAVED_TERM_ATTRS)
    except Exception:
        pass


def _init_prompt_session() -> None:
    """创建 prompt_toolkit 会话，历史记录保存在 ~/.agentbox/history/cli_history。"""
    global _PROMPT_SESSION, _SAVED_TERM_ATTRS

    try:
        import termios
        _SAVED_TERM_ATTRS = termios.tcgetattr(sys.stdin.fileno())
    except Exception:
        pass

    history_file = Path.home() / ".agentbox" / "history" / "cli_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)

    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


def _print_agent_response(response: str, render_markdown: bool, tools_used: list[str] | None = None) -> None:
    content = response or ""
    body = Markdown(content) if render_markdown else Text(content)
    console.print()
    console.print(f"[cyan]{__logo__} agentbox[/cyan]")
    if tools_used:
        console.print(f"[dim]tools: {', '.join(tools_used)}[/dim]")
    console.print(body)
    console.print()


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


async def _read_interactive_input_async() -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(
                HTML("<b fg='ansiblue'>You:</b> "),
            )
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} agentbox v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """agentbox CLI 根命令回调。"""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 agentbox 配置和工作空间。

    1. 在 ~/.agentbox/ 下创建默认配置文件 config.json
    2. 创建工作空间目录和默认 Agent 的人设文档（soul.md、context.md）
    3. 打印后续操作指引
    """
    from agentbox.config.loader import get_config_path, save_config
    from agentbox.config.schema import Config
    from agentbox.services import DEFAULT_AGENT_ID

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    workspace = config.workspace_path
    workspace.mkdir(parents=True, exist_ok=True)
    console.print(f"[green]✓[/green] Created workspace at {workspace}")

    _create_agent_templates(workspace, DEFAULT_AGENT_ID)

    console.print(f"\n{__logo__} agentbox is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.agentbox/config.json[/cyan]")
    console.print("  2. Chat: [cyan]agentbox agent -m \"Hello!\"[/cyan]")


def _create_agent_templates(workspace: Path, agent_id: str) -> None:
    """为 Agent 创建默认人设文档（已存在的文件不覆盖）。"""
    from agentbox.agent.memory import MemoryStore

    store = MemoryStore(workspace)
    templates = {
        "soul.md": """# Soul

You are a helpful AI assistant. Be concise, accurate, and friendly.

## Guidelines

- Explain what you are doing before taking actions
- Ask for clarification when the request is ambiguous
- Use tools to help accomplish tasks
""",
        "context.md": """# Context

Facts about the people and systems this agent works with go here.
""",
    }
    for key, content in templates.items():
        if store.read(agent_id, key) is None:
            store.write(agent_id, key, content)
            console.print(f"  [dim]Created agents/{agent_id}/{key}[/dim]")


def _make_provider(config):
    """根据配置创建 LiteLLM 提供者；未配置 API Key（且不是本地模型）时退出。"""
    from agentbox.providers.litellm_provider import LiteLLMProvider
    from agentbox.providers.registry import find_by_name

    model = config.agents.defaults.model
    p = config.get_provider(model)
    spec = find_by_name(config.get_provider_name(model) or "")
    is_local = bool(spec and spec.is_local)
    if not (p and p.api_key) and not is_local and not model.startswith("bedrock/"):
        console.print("[red]Error: No API key configured.[/red]")
        console.print("Set one in ~/.agentbox/config.json under providers section")
        raise typer.Exit(1)
    return LiteLLMProvider(
        api_key=p.api_key if p else None,
        api_base=config.get_api_base(model),
        default_model=model,
        extra_headers=p.extra_headers if p else None,
        provider_name=config.get_provider_name(model),
    )


def _cron_service(config):
    from agentbox.cron.service import CronService
    return CronService(config.data_path / "cron" / "jobs.json")


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 agentbox 网关服务。

    1. 加载配置，创建 LLM 提供者
    2. 组装运行时（存储、工具、会话、上下文、工具循环）
    3. 把配置中的 Agent 档案和渠道绑定同步到存储层
    4. 初始化所有启用的渠道适配器
    5. 启动定时任务调度器和心跳服务（全局 proactive 关闭时心跳不启动），等待直到 Ctrl+C
    """
    from loguru import logger

    from agentbox.config.loader import load_config
    from agentbox.services import build_services, sync_profiles

    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")

    console.print(f"{__logo__} Starting agentbox gateway...")

    config = load_config()
    provider = _make_provider(config)
    services = build_services(config, provider)

    async def run():
        agents = await sync_profiles(services.storage, config)
        console.print(f"[green]✓[/green] Agents: {agents}")

        initialized = await services.router.initialize_all()
        if initialized:
            console.print(f"[green]✓[/green] Channels initialized: {initialized}")
        else:
            console.print("[yellow]Warning: No channels initialized[/yellow]")

        await services.cron.start()
        cron_status = services.cron.status()
        if cron_status["jobs"] > 0:
            console.print(f"[green]✓[/green] Cron: {cron_status['jobs']} scheduled jobs")

        await services.heartbeat.start()
        heartbeat_status = services.heartbeat.status()
        if heartbeat_status["running"] and heartbeat_status["agents"] > 0:
            console.print(
                f"[green]✓[/green] Heartbeat: {heartbeat_status['agents']} agent(s), "
                f"polling every {heartbeat_status['poll_interval_s']}s"
            )

        try:
            await asyncio.Event().wait()
        finally:
            await services.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Agent Commands
# ============================================================================


@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    agent_id: str = typer.Option(None, "--agent", "-a", help="Agent ID (defaults to the first profile)"),
    session_id: str = typer.Option("direct", "--session", "-s", help="CLI session key"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render assistant output as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show agentbox runtime logs during chat"),
):
    """
    直接与 Agent 交互（CLI 模式）。

    1. 单条消息模式：agentbox agent -m "你好" → 直接返回回复
    2. 交互模式：agentbox agent → 进入交互式对话循环，输入 exit 或 Ctrl+C 退出

    CLI 会话按 (Agent, "cli", session) 做亲和，30 分钟内的多次调用会接着同一个会话。
    """
    from loguru import logger

    from agentbox.config.loader import load_config
    from agentbox.services import DEFAULT_AGENT_ID, build_services, sync_profiles

    config = load_config()
    provider = _make_provider(config)

    if logs:
        logger.enable("agentbox")
    else:
        logger.disable("agentbox")

    services = build_services(config, provider)
    target_agent = agent_id or (config.agents.profiles[0].id if config.agents.profiles else DEFAULT_AGENT_ID)

    def _thinking_ctx():
        if logs:
            from contextlib import nullcontext
            return nullcontext()
        return console.status("[dim]agentbox is thinking...[/dim]", spinner="dots")

    async def ask(text: str) -> None:
        conv = await services.runtime.resolve_or_create_session(
            target_agent, channel_type="cli", channel_id=session_id, external_user_id="cli:local",
        )
        with _thinking_ctx():
            result = await services.runtime.handle_turn(target_agent, conv.id, text)
        _print_agent_response(result.reply, markdown, [u.name for u in result.tools_used])

    async def prepare() -> None:
        await sync_profiles(services.storage, config)
        if await services.storage.get_agent(target_agent) is None:
            console.print(f"[red]Agent '{target_agent}' not found[/red]")
            raise typer.Exit(1)

    if message:
        async def run_once():
            try:
                await prepare()
                await ask(message)
            finally:
                await services.shutdown()

        asyncio.run(run_once())
        return

    _init_prompt_session()
    console.print(
        f"{__logo__} Interactive mode with agent [bold]{target_agent}[/bold] "
        "(type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n"
    )

    def _exit_on_sigint(signum, frame):
        _restore_terminal()
        console.print("\nGoodbye!")
        os._exit(0)

    signal.signal(signal.SIGINT, _exit_on_sigint)

    async def run_interactive():
        await prepare()
        try:
            while True:
                try:
                    _flush_pending_tty_input()
                    user_input = await _read_interactive_input_async()
                    command = user_input.strip()
                    if not command:
                        continue
                    if _is_exit_command(command):
                        _restore_terminal()
                        console.print("\nGoodbye!")
                        break
                    await ask(user_input)
                except (KeyboardInterrupt, EOFError):
                    _restore_terminal()
                    console.print("\nGoodbye!")
                    break
        finally:
            await services.shutdown()

    asyncio.run(run_interactive())


# ============================================================================
# Channel Commands
# ============================================================================


channels_app = typer.Typer(help="Manage channels")
app.add_typer(channels_app, name="channels")


@channels_app.command("status")
def channels_status():
    """列出配置文件中每个 Agent 的渠道绑定（类型、是否启用、默认目标）。"""
    from agentbox.channels.router import default_target_id
    from agentbox.config.loader import load_config
    from agentbox.storage.models import ChannelConfig

    config = load_config()

    table = Table(title="Channel Status")
    table.add_column("ID", style="cyan")
    table.add_column("Agent")
    table.add_column("Type")
    table.add_column("Enabled", style="green")
    table.add_column("Default target", style="yellow")

    rows = 0
    for profile in config.agents.profiles:
        for binding in profile.channels:
            channel = ChannelConfig(
                id=binding.id, agent_id=profile.id, channel_type=binding.type,
                name=binding.name, config=binding.config, enabled=binding.enabled,
            )
            target = default_target_id(channel) or "[dim]not configured[/dim]"
            table.add_row(str(binding.id), profile.id, binding.type, "✓" if binding.enabled else "✗", target)
            rows += 1

    if not rows:
        console.print("No channels configured.")
        return
    console.print(table)


# ============================================================================
# Cron Commands
# ============================================================================

cron_app = typer.Typer(help="Manage scheduled tasks")
app.add_typer(cron_app, name="cron")


@cron_app.command("list")
def cron_list(
    agent_id: str = typer.Option(None, "--agent", "-a", help="Only jobs of this agent"),
    all: bool = typer.Option(False, "--all", help="Include disabled jobs"),
):
    """列出定时任务。默认只显示启用的任务，使用 --all 显示全部。"""
    import time

    from agentbox.config.loader import load_config

    service = _cron_service(load_config())
    jobs = service.list_jobs(agent_id, include_disabled=all)

    if not jobs:
        console.print("No scheduled jobs.")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Agent")
    table.add_column("Schedule")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Next Run")

    for job in jobs:
        next_run = ""
        if job.state.next_run_at_ms:
            next_run = time.strftime("%Y-%m-%d %H:%M", time.localtime(job.state.next_run_at_ms / 1000))
        status = "[green]enabled[/green]" if job.enabled else "[dim]disabled[/dim]"
        if job.state.last_status == "error":
            status += " [red](last run failed)[/red]"
        table.add_row(str(job.id), job.agent_id, job.schedule, job.task_text[:40], status, next_run)

    console.print(table)


@cron_app.command("add")
def cron_add(
    agent_id: str = typer.Option(..., "--agent", "-a", help="Agent ID"),
    schedule: str = typer.Option(..., "--schedule", "-s", help="'every 30m|1h|1d' or a 5-field cron expression"),
    task: str = typer.Option(..., "--task", "-t", help="Instruction sent to the agent when the job fires"),
    disabled: bool = typer.Option(False, "--disabled", help="Create the job disabled"),
):
    """添加一个新的定时任务。"""
    from agentbox.config.loader import load_config

    service = _cron_service(load_config())
    try:
        job = service.add_job(agent_id, schedule, task, enabled=not disabled)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Added job #{job.id} ({job.schedule}) for agent {agent_id}")


@cron_app.command("remove")
def cron_remove(
    job_id: int = typer.Argument(..., help="Job ID to remove"),
):
    """删除指定 ID 的定时任务。"""
    from agentbox.config.loader import load_config

    service = _cron_service(load_config())
    if service.remove_job(job_id):
        console.print(f"[green]✓[/green] Removed job {job_id}")
    else:
        console.print(f"[red]Job {job_id} not found[/red]")


@cron_app.command("enable")
def cron_enable(
    job_id: int = typer.Argument(..., help="Job ID"),
    disable: bool = typer.Option(False, "--disable", help="Disable instead of enable"),
):
    """启用或禁用指定的定时任务。"""
    from agentbox.config.loader import load_config

    service = _cron_service(load_config())
    job = service.enable_job(job_id, enabled=not disable)
    if job:
        status = "disabled" if disable else "enabled"
        console.print(f"[green]✓[/green] Job #{job.id} {status}")
    else:
        console.print(f"[red]Job {job_id} not found[/red]")


# ============================================================================
# Session Commands
# ============================================================================

sessions_app = typer.Typer(help="Inspect conversations")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list(
    agent_id: str = typer.Argument(..., help="Agent ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of sessions"),
):
    """列出某个 Agent 最近的会话。"""
    from agentbox.config.loader import load_config
    from agentbox.storage.json_store import JsonStorage
    from agentbox.utils.helpers import format_date

    storage = JsonStorage(load_config().data_path)
    conversations = asyncio.run(storage.list_conversations(agent_id, limit=limit))

    if not conversations:
        console.print(f"No sessions for agent {agent_id}.")
        return

    table = Table(title=f"Sessions of {agent_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Channel")
    table.add_column("Title")
    table.add_column("Messages")
    table.add_column("Last message")
    table.add_column("Summary")

    for conv in conversations:
        channel = conv.channel_type + (f":{conv.channel_id}" if conv.channel_id else "")
        table.add_row(
            str(conv.id),
            channel,
            conv.title or "",
            str(conv.message_count),
            format_date(conv.last_message_at, "never"),
            "✓" if conv.session_summary else "",
        )
    console.print(table)


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """显示配置路径、工作空间、模型、提供者 API Key 和全局特性开关。"""
    from agentbox.config.loader import get_config_path, load_config
    from agentbox.agent.features import FEATURE_KEYS

    config_path = get_config_path()
    config = load_config()
    workspace = config.workspace_path

    console.print(f"{__logo__} agentbox Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Workspace: {workspace} {'[green]✓[/green]' if workspace.exists() else '[red]✗[/red]'}")

    if not config_path.exists():
        return

    from agentbox.providers.registry import PROVIDERS

    console.print(f"Model: {config.agents.defaults.model}")
    console.print(f"Agents: {', '.join(p.id for p in config.agents.profiles) or '[dim]default only[/dim]'}")

    for spec in PROVIDERS:
        p = getattr(config.providers, spec.name, None)
        if p is None:
            continue
        if spec.is_local:
            if p.api_base:
                console.print(f"{spec.label}: [green]✓ {p.api_base}[/green]")
            else:
                console.print(f"{spec.label}: [dim]not set[/dim]")
        else:
            console.print(f"{spec.label}: {'[green]✓[/green]' if p.api_key else '[dim]not set[/dim]'}")

    flags = ", ".join(
        f"{key}={'on' if getattr(config.features, key) else 'off'}" for key in FEATURE_KEYS
    )
    console.print(f"Features: {flags}")


if __name__ == "__main__":
    app()

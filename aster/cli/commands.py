"""
CLI 命令模块 - aster 的命令行入口。

本模块使用 Typer 框架定义 aster 的命令：
- onboard：生成默认配置文件 ~/.aster/config.json
- chat：创建（或恢复）一个 Agent，订阅 Progress / Monitor 事件并对话
- sessions：列出存储中的会话

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
- prompt_toolkit：交互式输入（历史记录、行编辑）
"""

import asyncio
import sys
from contextlib import suppress
from pathlib import Path

import typer
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.table import Table

from aster import __logo__, __version__
from aster.agent import Agent, AgentTemplate, Dependencies, TemplateRegistry, create_agent
from aster.agent.tools import ToolRegistry, register_builtin
from aster.bus import (
    Channel,
    MonitorBreakpointChangedEvent,
    MonitorErrorEvent,
    MonitorStateChangedEvent,
    MonitorTokenUsageEvent,
    ProgressDoneEvent,
    ProgressTextChunkEvent,
    ProgressTextChunkStartEvent,
    ProgressToolEndEvent,
    ProgressToolErrorEvent,
    ProgressToolStartEvent,
    Subscription,
)
from aster.config.schema import Config
from aster.errors import AsterError
from aster.providers import LiteLLMProviderFactory
from aster.sandbox import SandboxFactory
from aster.store import JSONStore
from aster.utils.helpers import get_data_path

app = typer.Typer(
    name="aster",
    help=f"{__logo__} aster - Agent orchestration core",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

SIMPLE_ASSISTANT = AgentTemplate(
    id="simple-assistant",
    model="anthropic/claude-sonnet-4.5",
    system_prompt=(
        "You are a helpful assistant that can read and write files. "
        "When users ask you to read or write files, use the available tools."
    ),
    tools=("Read", "Write", "Bash"),
)


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} aster v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """aster CLI 根命令回调。"""
    pass


# ============================================================================
# Onboard
# ============================================================================


@app.command()
def onboard():
    """生成默认配置文件 ~/.aster/config.json。"""
    from aster.config.loader import get_config_path, save_config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} aster is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.aster/config.json[/cyan]")
    console.print("     or export [cyan]ASTER_MODEL__API_KEY[/cyan]")
    console.print("  2. Chat: [cyan]aster chat -m \"Hello!\"[/cyan]")


# ============================================================================
# Chat
# ============================================================================


def build_dependencies(config: Config) -> Dependencies:
    """标准依赖集合：内置工具、本地沙箱、LiteLLM、JSONL 存储、simple-assistant 模板。"""
    templates = TemplateRegistry()
    templates.register(SIMPLE_ASSISTANT)
    return Dependencies(
        store=JSONStore(config.store_path),
        sandbox_factory=SandboxFactory(),
        tool_registry=register_builtin(ToolRegistry()),
        provider_factory=LiteLLMProviderFactory(),
        template_registry=templates,
    )


def _print_event(event: object) -> None:
    """按事件类型打印，Progress 与 Monitor 各自穷举。"""
    if isinstance(event, ProgressTextChunkStartEvent):
        console.print("\n[cyan][Assistant][/cyan] ", end="")
    elif isinstance(event, ProgressTextChunkEvent):
        console.print(event.delta, end="", markup=False, highlight=False)
    elif isinstance(event, ProgressToolStartEvent):
        console.print(f"\n[yellow][Tool Start][/yellow] {event.call.name} (ID: {event.call.id})")
    elif isinstance(event, ProgressToolEndEvent):
        console.print(f"[green][Tool End][/green] {event.call.name} - State: {event.call.state.value}")
    elif isinstance(event, ProgressToolErrorEvent):
        console.print(f"[red][Tool Error][/red] {event.call.name} - Error: {event.error}")
    elif isinstance(event, ProgressDoneEvent):
        console.print(f"\n[bold][Done][/bold] Step {event.step} - Reason: {event.reason.value}")
    elif isinstance(event, MonitorStateChangedEvent):
        console.print(f"[dim][State Changed] {event.state.value}[/dim]")
    elif isinstance(event, MonitorTokenUsageEvent):
        console.print(
            f"[dim][Token Usage] Input: {event.input_tokens}, "
            f"Output: {event.output_tokens}, Total: {event.total_tokens}[/dim]"
        )
    elif isinstance(event, MonitorErrorEvent):
        console.print(f"[red][Error] [{event.severity}] {event.phase}: {event.message}[/red]")
    elif isinstance(event, MonitorBreakpointChangedEvent):
        console.print(f"[dim][Breakpoint] {event.previous.value} -> {event.current.value}[/dim]")


async def _print_events(sub: Subscription) -> None:
    async for envelope in sub:
        _print_event(envelope.event)


def _print_status(agent: Agent) -> None:
    status = agent.status()
    console.print("\n[bold]Final Status:[/bold]")
    console.print(f"  Agent ID: {status.agent_id}")
    console.print(f"  State: {status.state.value}")
    console.print(f"  Steps: {status.step_count}")
    console.print(f"  Cursor: {status.cursor}")


def _configure_logging(enabled: bool, level: str) -> None:
    logger.remove()
    if enabled:
        logger.add(sys.stderr, level=level.upper())
        logger.enable("aster")
    else:
        logger.disable("aster")


async def _read_interactive_input(session: PromptSession) -> str:
    try:
        with patch_stdout():
            return await session.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


async def _run_chat(config: Config, message: str | None, agent_id: str | None) -> None:
    deps = build_dependencies(config)
    agent = await create_agent(config.to_agent_config(agent_id=agent_id), deps)
    console.print(f"{__logo__} Agent [cyan]{agent.id}[/cyan] ready")

    printer = asyncio.create_task(_print_events(agent.subscribe([Channel.PROGRESS, Channel.MONITOR])))
    try:
        if message is not None:
            result = await agent.chat(message)
            if not result.ok:
                console.print(f"[red]Chat failed: {result.error}[/red]")
        else:
            history_file = get_data_path() / "history" / "cli_history"
            history_file.parent.mkdir(parents=True, exist_ok=True)
            session = PromptSession(history=FileHistory(str(history_file)), multiline=False)
            console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n")
            while True:
                try:
                    user_input = (await _read_interactive_input(session)).strip()
                except KeyboardInterrupt:
                    break
                if not user_input:
                    continue
                if user_input.lower() in EXIT_COMMANDS:
                    break
                await agent.chat(user_input)
                # 让事件打印任务跟上，再显示下一个提示符
                await asyncio.sleep(0)
    finally:
        await agent.close()
        with suppress(asyncio.CancelledError):
            await printer

    _print_status(agent)
    console.print("\nGoodbye!")


@app.command()
def chat(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    agent_id: str = typer.Option(None, "--agent-id", "-a", help="Resume a stored agent by id"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show aster runtime logs during chat"),
    config_file: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """
    与 Agent 对话。

    1. 单条消息模式：aster chat -m "你好"
    2. 交互模式：aster chat → 进入交互式对话循环
    """
    from aster.config.loader import load_config

    config = load_config(config_file)
    _configure_logging(logs, config.logging.level)

    try:
        asyncio.run(_run_chat(config, message, agent_id))
    except AsterError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


# ============================================================================
# Sessions
# ============================================================================


@app.command()
def sessions(
    config_file: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """列出存储中的会话。"""
    from aster.config.loader import load_config

    config = load_config(config_file)
    store = JSONStore(config.store_path)
    rows = asyncio.run(store.list())

    if not rows:
        console.print("No stored sessions.")
        return

    table = Table(title="Sessions")
    table.add_column("Agent ID", style="cyan")
    table.add_column("Template")
    table.add_column("Steps", justify="right")
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="dim")
    for row in rows:
        table.add_row(
            row["agent_id"],
            row.get("template_id") or "-",
            str(row.get("step_count", 0)),
            str(row.get("cursor", 0)),
            row.get("updated_at") or "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()

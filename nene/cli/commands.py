"""命令行入口。

命令：
  onboard   初始化配置文件与工作区
  gateway   启动消息总线、Agent 主循环与已启用的渠道
  agent     直接与 Agent 对话（单次 -m 或交互模式）
  status    查看配置与运行环境
"""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from nene import __logo__, __version__
from nene.config.loader import get_config_path, load_config, save_config
from nene.config.schema import Config
from nene.errors import NeneError

console = Console()
app = typer.Typer(
    name="nene",
    help=f"{__logo__} nene - personal AI assistant",
    add_completion=False,
    no_args_is_help=True,
)

BOOTSTRAP_TEMPLATES = {
    "AGENTS.md": """# Agent Instructions

You are a helpful AI assistant. Be concise, accurate, and friendly.

## Guidelines

- Explain what you're doing before running tools
- Ask for clarification when the request is ambiguous
- Use memory_store to remember important facts about the user
""",
    "USER.md": """# User

Information about the user goes here.
""",
}


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} nene v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
) -> None:
    """nene - personal AI assistant."""


# ---------------------------------------------------------------------------
# onboard
# ---------------------------------------------------------------------------

@app.command()
def onboard() -> None:
    """初始化配置文件与工作区。"""
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
    _create_workspace_templates(workspace)

    console.print(f"\n{__logo__} nene is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.nene/config.json[/cyan]")
    console.print("  2. Chat: [cyan]nene agent -m \"Hello!\"[/cyan]")
    console.print("  3. Enable Telegram and run: [cyan]nene gateway[/cyan]")


def _create_workspace_templates(workspace: Path) -> None:
    for filename, content in BOOTSTRAP_TEMPLATES.items():
        file_path = workspace / filename
        if not file_path.exists():
            file_path.write_text(content, encoding="utf-8")
            console.print(f"  [dim]Created {filename}[/dim]")


# ---------------------------------------------------------------------------
# 公共装配
# ---------------------------------------------------------------------------

def _make_provider(config: Config):
    from nene.providers.registry import ProviderRegistry

    model = config.agents.defaults.model
    name, provider_config = config.get_provider(model)
    if not provider_config.api_key and not model.startswith("bedrock/"):
        console.print("[red]Error: No API key configured.[/red]")
        console.print("Set one in ~/.nene/config.json under providers section")
        raise typer.Exit(1)

    registry = ProviderRegistry()
    return registry.create(name, provider_config, model)


def _make_agent(config: Config, bus, memory=None):
    from nene.agent.loop import AgentLoop

    defaults = config.agents.defaults
    return AgentLoop(
        bus=bus,
        provider=_make_provider(config),
        workspace=config.workspace_path,
        model=defaults.model,
        max_iterations=defaults.max_tool_iterations,
        system_prompt=defaults.system_prompt,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
        exec_config=config.tools.exec,
        web_config=config.tools.web,
        restrict_to_workspace=config.tools.restrict_to_workspace,
        memory=memory,
        subagent_max_iterations=defaults.subagent_max_iterations,
        subagent_timeout=defaults.subagent_timeout,
    )


# ---------------------------------------------------------------------------
# gateway
# ---------------------------------------------------------------------------

@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """启动 nene 网关。"""
    from nene.agent.memory import MemoryStore
    from nene.bus.queue import MessageBus
    from nene.channels.manager import ChannelManager
    from nene.utils.helpers import get_memory_db_path

    _setup_logging(verbose)
    console.print(f"{__logo__} Starting nene gateway...")

    config = load_config()
    bus = MessageBus(capacity=config.bus.capacity)
    memory = MemoryStore(get_memory_db_path())
    agent = _make_agent(config, bus, memory)
    channels = ChannelManager(config, bus)

    if channels.enabled_channels:
        console.print(f"[green]✓[/green] Channels enabled: {', '.join(channels.enabled_channels)}")
    else:
        console.print("[yellow]Warning: No channels enabled[/yellow]")

    async def run() -> None:
        try:
            await asyncio.gather(agent.run(), channels.start_all())
        except (KeyboardInterrupt, asyncio.CancelledError):
            console.print("\nShutting down...")
        finally:
            agent.stop()
            await channels.stop_all()
            bus.close()
            await memory.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("Stopped.")


# ---------------------------------------------------------------------------
# agent
# ---------------------------------------------------------------------------

@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    session_id: str = typer.Option("cli:default", "--session", "-s", help="Session ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """直接与 Agent 对话。"""
    from nene.agent.memory import MemoryStore
    from nene.bus.queue import MessageBus
    from nene.utils.helpers import get_memory_db_path

    _setup_logging(verbose)
    config = load_config()
    bus = MessageBus(capacity=config.bus.capacity)
    memory = MemoryStore(get_memory_db_path())
    agent_loop = _make_agent(config, bus, memory)

    async def ask(content: str) -> None:
        try:
            response = await agent_loop.process_direct(content, session_key=session_id)
        except NeneError as e:
            console.print(f"[red]Error: {e}[/red]")
            return
        console.print(f"\n{__logo__} ", end="")
        console.print(Markdown(response))

    async def run() -> None:
        try:
            if message:
                await ask(message)
                return
            console.print(f"{__logo__} Interactive mode (Ctrl+C to exit)\n")
            while True:
                user_input = await asyncio.to_thread(console.input, "[bold blue]You:[/bold blue] ")
                if not user_input.strip():
                    continue
                await ask(user_input)
        finally:
            await memory.close()

    try:
        asyncio.run(run())
    except (KeyboardInterrupt, EOFError):
        console.print("\nGoodbye!")


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

@app.command()
def status() -> None:
    """查看配置与运行环境。"""
    config_path = get_config_path()
    config = load_config()
    workspace = config.workspace_path

    console.print(f"{__logo__} nene Status\n")

    table = Table(show_header=False, box=None)
    table.add_row("Config", f"{config_path} " + ("[green]✓[/green]" if config_path.exists() else "[red]✗[/red]"))
    table.add_row("Workspace", f"{workspace} " + ("[green]✓[/green]" if workspace.exists() else "[red]✗[/red]"))
    table.add_row("Model", config.agents.defaults.model)
    table.add_row("Max iterations", str(config.agents.defaults.max_tool_iterations))

    for name, provider in config.providers:
        if provider.api_key:
            table.add_row(name, "[green]✓[/green]")

    telegram = config.channels.telegram
    tg_status = "[green]enabled[/green]" if telegram.enabled else "[dim]disabled[/dim]"
    if telegram.enabled:
        tg_status += " (streaming)" if telegram.stream_mode else " (plain)"
    table.add_row("Telegram", tg_status)

    console.print(table)


if __name__ == "__main__":
    app()

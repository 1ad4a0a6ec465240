"""CLI entry point for LegisMCP."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from legismcp.client import McpClient, McpClientError
from legismcp.config import Config, create_default_config, get_user_config_path, load_config

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", config: Config | None = None) -> None:
    """Setup logging configuration with file output support.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        config: Optional Config object for file logging configuration
    """
    log_format = config.logging.format if config else "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
    )
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(getattr(logging, level.upper()))
    # Quiet HTTP client logs unless verbose
    new_level = logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    logging.getLogger("httpx").setLevel(new_level)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config and config.logging.file:
        log_file_path = Path(config.logging.file).expanduser()
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setLevel(getattr(logging, level.upper()))
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)
        logger.debug(f"Logging to file: {log_file_path}")


def parse_arguments(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are decoded as JSON when possible."""
    arguments: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}")
        try:
            arguments[key] = json.loads(raw)
        except json.JSONDecodeError:
            arguments[key] = raw
    return arguments


def _get_config(ctx: click.Context) -> Config:
    """Load configuration on first use and cache it on the context."""
    if "config" not in ctx.obj:
        config_path = ctx.obj.get("config_path")
        try:
            cfg, metadata = load_config(config_path)
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]Error loading configuration: {e}[/red]")
            console.print("[yellow]Run 'legismcp config init' to create a configuration file.[/yellow]")
            ctx.exit(1)
        setup_logging("DEBUG" if ctx.obj.get("verbose") else cfg.logging.level, cfg)
        if ctx.obj.get("verbose"):
            console.print(f"[dim]Using configuration from: {metadata['primary_source'][1]}[/dim]")
        ctx.obj["config"] = cfg
    return ctx.obj["config"]


def _run(ctx: click.Context, action: Callable[[McpClient], Awaitable[Any]]) -> Any:
    """Connect, run ``action`` against the client, and disconnect."""
    config = _get_config(ctx)

    async def runner() -> Any:
        async with McpClient.from_config(config) as client:
            return await action(client)

    try:
        return asyncio.run(runner())
    except McpClientError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


@click.group()
@click.option("--config", type=click.Path(), help="Path to configuration file")
@click.option("--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """LegisMCP - client for the legislative-data tool server."""
    log_level = "DEBUG" if verbose else "INFO"
    setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj.update({"config_path": config, "verbose": verbose})


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Connect and show session and usage information."""

    async def action(client: McpClient):
        return client.get_state(), client.get_usage_info()

    state, usage = _run(ctx, action)

    lines = [
        f"[bold]Session:[/bold] {state.session_id or '-'}",
        f"[bold]Tier:[/bold] {state.subscription_tier or '-'}",
    ]
    if usage:
        lines.append(f"[bold]Usage:[/bold] {usage.used}/{usage.limit} ({usage.remaining} remaining)")
    console.print(Panel("\n".join(lines), title="MCP Server", border_style="cyan"))


@main.command("tools")
@click.pass_context
def list_tools(ctx: click.Context) -> None:
    """List available tools."""
    tools = _run(ctx, lambda client: client.list_tools())

    table = Table(title="Tools", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Description")
    for tool in tools:
        table.add_row(tool.name, tool.description or "")
    console.print(table)


@main.command("call")
@click.argument("name")
@click.option("-a", "--arg", "args", multiple=True, help="Tool argument as key=value")
@click.pass_context
def call_tool(ctx: click.Context, name: str, args: tuple[str, ...]) -> None:
    """Call a tool by NAME."""
    arguments = parse_arguments(args)
    result = _run(ctx, lambda client: client.call_tool(name, arguments))

    if result.is_error:
        console.print("[red]Tool reported an error[/red]")
    if result.text:
        console.print(result.text)
    else:
        _print_json(result.model_dump(by_alias=True))


@main.command("resources")
@click.pass_context
def list_resources(ctx: click.Context) -> None:
    """List available resources."""
    resources = _run(ctx, lambda client: client.list_resources())

    table = Table(title="Resources", show_header=True, header_style="bold cyan")
    table.add_column("URI")
    table.add_column("Name")
    table.add_column("Type")
    for resource in resources:
        table.add_row(resource.uri, resource.name, resource.mime_type or "")
    console.print(table)


@main.command("read")
@click.argument("uri")
@click.pass_context
def read_resource(ctx: click.Context, uri: str) -> None:
    """Read the resource at URI."""
    content = _run(ctx, lambda client: client.read_resource(uri))
    if content.text is not None:
        console.print(content.text)
    else:
        _print_json(content.model_dump(by_alias=True, exclude_none=True))


@main.command("prompts")
@click.pass_context
def list_prompts(ctx: click.Context) -> None:
    """List available prompts."""
    prompts = _run(ctx, lambda client: client.list_prompts())

    table = Table(title="Prompts", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Description")
    for prompt in prompts:
        table.add_row(prompt.name, prompt.description or "")
    console.print(table)


@main.command("prompt")
@click.argument("name")
@click.option("-a", "--arg", "args", multiple=True, help="Prompt argument as key=value")
@click.pass_context
def get_prompt(ctx: click.Context, name: str, args: tuple[str, ...]) -> None:
    """Render the prompt NAME."""
    arguments = parse_arguments(args)
    result = _run(ctx, lambda client: client.get_prompt(name, arguments))

    if result.description:
        console.print(f"[dim]{result.description}[/dim]")
    for message in result.messages:
        content = message.get("content") or {}
        text = content.get("text", "") if isinstance(content, dict) else str(content)
        console.print(f"[bold]{message.get('role', '?')}:[/bold] {text}")


@main.group("config")
def config_cmd() -> None:
    """Manage configuration."""


@config_cmd.command("init")
@click.argument("path", required=False, type=click.Path())
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path: str | None, force: bool) -> None:
    """Write a starter configuration file."""
    target = Path(path) if path else get_user_config_path()
    if target.exists() and not force:
        console.print(f"[yellow]Configuration already exists: {target} (use --force)[/yellow]")
        raise SystemExit(1)
    create_default_config(target)
    console.print(f"[green]✓ Created configuration at {target}[/green]")


if __name__ == "__main__":
    main()

"""Proxy server CLI commands."""

import click

from .main import main


@main.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.json (default: ~/.claude-code-router/config.json)",
)
@click.option("--host", default=None, help="Host to bind to (default: from config, else 127.0.0.1)")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to (default: 3456)")
@click.option("--routes", "routes_path", default=None, help="Path to routes.json")
@click.option("--log-dir", default=None, help="Directory for audit and command logs")
@click.option("--no-agents", is_flag=True, help="Disable in-process agent tools")
@click.option(
    "--max-tool-rounds",
    type=int,
    default=None,
    help="Maximum agent tool continuations per response (default: 10)",
)
@click.option(
    "--block",
    "block_commands",
    multiple=True,
    help="Slash command to answer locally instead of forwarding (repeatable)",
)
def serve(
    config_path: str | None,
    host: str | None,
    port: int | None,
    routes_path: str | None,
    log_dir: str | None,
    no_agents: bool,
    max_tool_rounds: int | None,
    block_commands: tuple[str, ...],
) -> None:
    """Start the routing proxy.

    \b
    Examples:
        detour serve                      Start proxy on port 3456
        detour serve --port 8080          Start proxy on port 8080
        detour serve --block /compact     Answer /compact locally

    \b
    Usage with Claude Code:
        ANTHROPIC_BASE_URL=http://localhost:3456 claude
    """
    from ..config import load_config
    from ..exceptions import ConfigurationError
    from ._utils import print_error

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print_error(str(e))
        raise SystemExit(1) from None

    # Flags override the file
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if routes_path is not None:
        config.routes_path = routes_path
    if log_dir is not None:
        config.logs_dir = log_dir
    if no_agents:
        config.agents_enabled = False
    if max_tool_rounds is not None:
        config.max_tool_rounds = max_tool_rounds
    if block_commands:
        config.block_commands = list(block_commands)

    # Import here to avoid slow startup
    from ..proxy.server import run_server

    providers = ", ".join(p.name for p in config.providers) or "anthropic (default upstream)"
    click.echo(f"""
Detour - routing proxy for Claude Code

Starting proxy server...

  URL:          http://{config.host}:{config.port}
  Providers:    {providers}
  Routes file:  {config.routes_path or "auto"}
  Agents:       {"ENABLED" if config.agents_enabled else "DISABLED"} (max {config.max_tool_rounds} rounds)
  Blocked:      {", ".join(config.block_commands) or "none"}

Usage with Claude Code:
  ANTHROPIC_BASE_URL=http://{config.host}:{config.port} claude

Endpoints:
  GET  /health                Health check
  GET  /stats                 Routing and pipeline statistics
  POST /v1/messages           Anthropic API
  GET  /api/routes            Route administration
  GET  /api/preprocessors     Pre-processor status

Press Ctrl+C to stop.
""")

    try:
        run_server(config)
    except KeyboardInterrupt:
        click.echo("\nShutting down...")

"""Main CLI entry point for Detour."""

import click


def get_version() -> str:
    """Get the current version."""
    from detour import __version__

    return __version__


@click.group()
@click.version_option(version=get_version(), prog_name="detour")
@click.pass_context
def main(ctx: click.Context) -> None:
    """Detour - routing proxy for Claude Code.

    Routes each request to a provider and model by rule, rewrites slash
    commands, and runs in-process agent tools mid-stream.

    \b
    Examples:
        detour serve                Start the proxy
        detour routes list          Show the active routes
        detour routes migrate       Convert config.Router into routes.json
    """
    ctx.ensure_object(dict)


# Import subcommands - these register themselves with the main group
def _register_commands() -> None:
    """Register all subcommand groups."""
    from . import (
        routes,  # noqa: F401
        serve,  # noqa: F401
    )


_register_commands()

if __name__ == "__main__":
    main()

"""Route configuration CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ..config import load_config
from ..exceptions import ConfigurationError, RouteConfigError
from ..routing import (
    Route,
    RouteManager,
    build_routes,
    create_default_routes,
    load_routes_config,
    migrate_from_legacy_config,
    save_routes_config,
)
from ..routing.loader import DEFAULT_ROUTES_PATH
from ._utils.formatting import (
    console,
    print_error,
    print_routes,
    print_success,
    print_warning,
)
from .main import main


def config_option(fn):
    """Shared --config option for route commands."""
    return click.option(
        "--config",
        "config_path",
        type=click.Path(dir_okay=False),
        default=None,
        help="Path to config.json (default: ~/.claude-code-router/config.json)",
    )(fn)


def _effective_routes(
    manager: RouteManager, routes_path: str | None, config_path: str | None
) -> tuple[list[Route], str]:
    """Routes the proxy would start with, plus a label for where they came from."""
    config = load_config(config_path)
    try:
        routes_config = load_routes_config(routes_path or config.routes_path)
        return build_routes(manager, routes_config), "routes file"
    except RouteConfigError as e:
        print_warning(e.message)

    if config.router.default:
        return build_routes(manager, migrate_from_legacy_config(config.router)), "config.Router"
    return create_default_routes(config.router, manager), "built-in defaults"


@main.group()
@click.pass_context
def routes(ctx: click.Context) -> None:
    """Inspect and manage routing rules.

    \b
    Examples:
        detour routes list                  Show routes in priority order
        detour routes migrate               Write routes.json from config.Router
        detour routes validate routes.json  Check a routes file
    """
    ctx.ensure_object(dict)


@routes.command("list")
@click.option("--routes", "routes_path", default=None, help="Path to routes.json")
@config_option
def list_routes(routes_path: str | None, config_path: str | None) -> None:
    """List routes in evaluation order.

    Falls back to the routes the proxy would derive from config.json when
    no routes file is found.
    """
    manager = RouteManager()
    try:
        found, source = _effective_routes(manager, routes_path, config_path)
    except (ConfigurationError, RouteConfigError) as e:
        print_error(str(e))
        sys.exit(1)

    manager.register_routes(found)
    ordered = manager.get_all_routes()
    if not ordered:
        click.echo("No routes configured.")
        return

    print_routes(ordered, title=f"Routes from {source} ({len(ordered)})")


@routes.command("migrate")
@config_option
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    default=str(DEFAULT_ROUTES_PATH),
    show_default=True,
    help="Where to write the routes file.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing routes file.")
def migrate(config_path: str | None, output: str, force: bool) -> None:
    """Convert the legacy config.Router table into a routes file."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(1)

    migrated = migrate_from_legacy_config(config.router)
    if not migrated.routes:
        print_error("config.Router has no destinations to migrate.")
        sys.exit(1)

    target = Path(output).expanduser()
    if target.exists() and not force:
        print_error(f"{target} already exists. Use --force to overwrite.")
        sys.exit(1)

    try:
        path = save_routes_config(migrated, target)
    except RouteConfigError as e:
        print_error(str(e))
        sys.exit(1)

    for data in migrated.routes:
        console.print(f"  [cyan]{data['id']}[/cyan] -> {data['provider']},{data['model']}")
    print_success(f"Wrote {len(migrated.routes)} routes to {path}")


@routes.command("validate")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
def validate(path: str | None) -> None:
    """Check that every route in a routes file can be built.

    Unknown matcher or transformation types are reported as warnings;
    routes missing required fields are errors.
    """
    try:
        routes_config = load_routes_config(path)
    except RouteConfigError as e:
        print_error(str(e))
        sys.exit(1)

    manager = RouteManager()
    errors = 0
    for index, data in enumerate(routes_config.routes):
        label = data.get("id") if isinstance(data, dict) else None
        try:
            manager.create_route_from_config(data)
        except RouteConfigError as e:
            errors += 1
            print_error(f"Route #{index} ({label or 'no id'}): {e}")

    stats = manager.stats()
    for kind in ("unknown_matcher_types", "unknown_transformation_types"):
        for name, count in stats[kind].items():
            print_warning(f"{kind.replace('_', ' ')}: {name} ({count}x)")

    if errors:
        print_error(f"{errors} of {len(routes_config.routes)} routes are invalid")
        sys.exit(1)
    print_success(f"{len(routes_config.routes)} routes are valid")

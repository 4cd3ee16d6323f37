"""Rich output helpers shared by the CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from ...routing import Route

console = Console()

ROUTE_COLUMNS = ("PRIORITY", "ID", "DESTINATION", "MATCHERS", "ENABLED", "TAGS")


def print_routes(routes: list[Route], title: str | None = None) -> None:
    """Render routes as a table, one row per route in the given order."""
    table = Table(title=title)
    for column in ROUTE_COLUMNS:
        table.add_column(column, no_wrap=column == "ID")

    for route in routes:
        table.add_row(
            str(route.priority),
            route.id,
            route.provider_model,
            truncate(format_matchers([m.to_config() for m in route.matchers]), 40),
            "[green]yes[/green]" if route.enabled else "[dim]no[/dim]",
            ", ".join(route.tags),
        )

    console.print(table)


def print_error(msg: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {msg}")


def print_success(msg: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {msg}")


def print_warning(msg: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {msg}")


def truncate(text: str, max_len: int = 50) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def format_matchers(matchers: list[dict[str, Any]]) -> str:
    """Compact one-line summary of a route's matcher configs.

    Returns:
        A string like "token_count(gt 60000), command" or "-" when empty.
    """
    if not matchers:
        return "-"
    parts = []
    for matcher in matchers:
        condition = matcher.get("condition") or {}
        kind = matcher.get("type", "?")
        if kind == "token_count":
            parts.append(f"{kind}({condition.get('operator', 'gt')} {condition.get('threshold')})")
        elif kind == "command" and condition.get("commands"):
            parts.append(f"{kind}({' '.join(condition['commands'])})")
        else:
            parts.append(kind)
    return ", ".join(parts)

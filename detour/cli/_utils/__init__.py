"""CLI utilities for formatting."""

from .formatting import (
    console,
    format_matchers,
    print_error,
    print_routes,
    print_success,
    print_warning,
    truncate,
)

__all__ = [
    "console",
    "format_matchers",
    "print_error",
    "print_routes",
    "print_success",
    "print_warning",
    "truncate",
]

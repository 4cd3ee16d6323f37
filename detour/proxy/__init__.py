"""HTTP proxy surface."""

from .server import DetourProxy, create_app, messages_url, run_server

__all__ = ["DetourProxy", "create_app", "messages_url", "run_server"]

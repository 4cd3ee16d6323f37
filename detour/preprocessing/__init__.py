"""Request pre-processing pipeline.

Built-in processors, highest priority first:

    command-detector   1000  slash command detection
    command-blocker     950  optional local interception of commands
    context-enricher    900  token count, session id, last usage
    compact-command     800  /compact rewrite and reroute
    think-command       750  think keyword reroute
"""

from __future__ import annotations

from ..config import ProxyConfig
from ..session_cache import SessionUsageCache
from ..tokens import TokenCounter
from .audit import write_audit_record, write_command_log
from .base import (
    PreProcessingResult,
    PreProcessor,
    ProcessorError,
    ProcessorOutcome,
    ProcessResult,
)
from .block import BlockCommandProcessor, build_blocked_response
from .command_detector import CommandDetector
from .compact import CompactCommandProcessor
from .context_enricher import ContextEnricher, extract_session_id
from .manager import PreProcessorManager
from .think import ThinkCommandProcessor


def register_builtin_preprocessors(
    manager: PreProcessorManager,
    config: ProxyConfig,
    session_cache: SessionUsageCache | None = None,
    token_counter: TokenCounter | None = None,
) -> list[str]:
    """Register the built-in processors that apply to ``config``.

    The detector and enricher are always registered. The compact and think
    handlers are registered only when their destination is configured, and
    the blocker only when there are commands to block.

    Returns:
        Names of the registered processors.
    """
    processors: list[PreProcessor] = [
        CommandDetector(),
        ContextEnricher(session_cache=session_cache, token_counter=token_counter),
    ]
    if config.block_commands:
        processors.append(BlockCommandProcessor(config.block_commands, logs_dir=config.logs_dir))
    if config.router.compact:
        processors.append(CompactCommandProcessor(config.router, logs_dir=config.logs_dir))
    if config.router.ultrathink:
        processors.append(ThinkCommandProcessor(config.router, logs_dir=config.logs_dir))

    for processor in processors:
        manager.register(processor)
    return [p.name for p in processors]


__all__ = [
    "BlockCommandProcessor",
    "CommandDetector",
    "CompactCommandProcessor",
    "ContextEnricher",
    "PreProcessingResult",
    "PreProcessor",
    "PreProcessorManager",
    "ProcessResult",
    "ProcessorError",
    "ProcessorOutcome",
    "ThinkCommandProcessor",
    "build_blocked_response",
    "extract_session_id",
    "register_builtin_preprocessors",
    "write_audit_record",
    "write_command_log",
]

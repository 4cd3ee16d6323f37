"""Base types for request pre-processors.

A pre-processor runs before route selection. It can enrich the
RouteContext, rewrite the request body, override the destination, or
block the request outright with a canned response.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from ..routing.types import ProxyRequest, RouteContext

Phase = Literal["should_process", "process", "cleanup"]


@dataclass
class ProcessResult:
    """Outcome of a single processor's ``process`` call."""

    modified: bool = False
    route_override: str | None = None
    provider_model_override: str | None = None
    metadata: dict[str, Any] | None = None
    block: bool = False
    block_response: Any = None
    message: str | None = None
    error: Exception | None = None


@dataclass
class ProcessorError:
    processor: str
    error: Exception
    phase: Phase

    def to_dict(self) -> dict[str, str]:
        return {"processor": self.processor, "phase": self.phase, "error": str(self.error)}


@dataclass
class ProcessorOutcome:
    processor: str
    result: ProcessResult
    time_ms: float = 0.0


@dataclass
class PreProcessingResult:
    """Aggregated outcome of one pre-processing run."""

    modified: bool = False
    blocked: bool = False
    block_response: Any = None
    block_message: str | None = None
    block_processor: str | None = None
    route_override: str | None = None
    provider_model_override: str | None = None
    results: list[ProcessorOutcome] = field(default_factory=list)
    errors: list[ProcessorError] = field(default_factory=list)
    total_time_ms: float = 0.0


class PreProcessor(ABC):
    """Base class for pre-processors.

    Higher ``priority`` runs first. Subclasses implement ``process`` and
    usually ``should_process``; ``cleanup`` is optional and receives the
    exception raised by ``process``, if any.
    """

    name: str = ""
    priority: int = 0
    description: str | None = None

    def __init__(self, priority: int | None = None, enabled: bool = True):
        if priority is not None:
            self.priority = priority
        self.enabled = enabled

    async def should_process(self, request: ProxyRequest, context: RouteContext) -> bool:
        return True

    @abstractmethod
    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        pass

    async def cleanup(
        self, request: ProxyRequest, context: RouteContext, error: Exception | None = None
    ) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"

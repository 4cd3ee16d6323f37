"""Pre-processor pipeline.

Runs every registered pre-processor for one request in priority order
(highest first, ties in registration order) and aggregates the results.
Processors run one at a time because later ones read metadata written by
earlier ones.

Contract:
- A disabled processor is never invoked.
- An exception in ``should_process`` is recorded and the processor skipped.
- An exception in ``process`` is recorded and the loop continues.
- ``block=True`` stops the loop after the blocking processor.
- ``cleanup`` runs afterwards, always, in reverse execution order, for every
  processor whose ``process`` was invoked. Cleanup failures are recorded
  and never stop the remaining cleanups.
"""

from __future__ import annotations

import asyncio
import logging
import time

from ..routing.types import ProxyRequest, RouteContext
from .base import PreProcessingResult, PreProcessor, ProcessorError, ProcessorOutcome


class PreProcessorManager:
    """Ordered, failure-isolated pre-processor runner.

    Usage:
        manager = PreProcessorManager()
        manager.register(CommandDetector())
        manager.register(ContextEnricher(cache))
        result = await manager.process(request, context)
        if result.blocked:
            return result.block_response
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Args:
            timeout_seconds: Optional deadline for each ``process`` call. A
                processor that exceeds it is recorded as a process-phase error.
            logger: Logger for pipeline events. Defaults to the module logger.
        """
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._processors: list[PreProcessor] = []
        self._sorted: list[PreProcessor] = []
        self._needs_sort = False

    def register(self, processor: PreProcessor) -> None:
        self._processors.append(processor)
        self._needs_sort = True

    def unregister(self, name: str) -> bool:
        for index, processor in enumerate(self._processors):
            if processor.name == name:
                del self._processors[index]
                self._needs_sort = True
                return True
        return False

    def get(self, name: str) -> PreProcessor | None:
        for processor in self._processors:
            if processor.name == name:
                return processor
        return None

    def get_all(self) -> list[PreProcessor]:
        """Processors in registration order."""
        return list(self._processors)

    def enable(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        processor = self.get(name)
        if processor is None:
            return False
        processor.enabled = enabled
        return True

    def clear(self) -> None:
        self._processors = []
        self._sorted = []
        self._needs_sort = False

    def ordered(self) -> list[PreProcessor]:
        """Processors in execution order."""
        if self._needs_sort:
            # list.sort is stable, so equal priorities keep registration order
            self._sorted = sorted(self._processors, key=lambda p: p.priority, reverse=True)
            self._needs_sort = False
        return list(self._sorted)

    async def _run_process(self, processor: PreProcessor, request, context):
        if self.timeout_seconds is None:
            return await processor.process(request, context)
        return await asyncio.wait_for(processor.process(request, context), self.timeout_seconds)

    def _record_error(
        self, result: PreProcessingResult, processor: PreProcessor, error: Exception, phase
    ) -> None:
        result.errors.append(ProcessorError(processor.name, error, phase))
        self.logger.warning(
            "Pre-processor %s failed during %s: %s",
            processor.name,
            phase,
            error,
            extra={"event": "preprocessor.error", "processor": processor.name, "phase": phase},
        )

    async def process(self, request: ProxyRequest, context: RouteContext) -> PreProcessingResult:
        """Run the pipeline for one request. Never raises for processor failures."""
        start = time.perf_counter()
        result = PreProcessingResult()
        executed: list[tuple[PreProcessor, Exception | None]] = []

        try:
            for processor in self.ordered():
                if not processor.enabled:
                    continue

                try:
                    if not await processor.should_process(request, context):
                        continue
                except Exception as e:
                    self._record_error(result, processor, e, "should_process")
                    continue

                step_start = time.perf_counter()
                try:
                    outcome = await self._run_process(processor, request, context)
                except Exception as e:
                    executed.append((processor, e))
                    self._record_error(result, processor, e, "process")
                    continue

                executed.append((processor, None))
                result.results.append(
                    ProcessorOutcome(
                        processor=processor.name,
                        result=outcome,
                        time_ms=(time.perf_counter() - step_start) * 1000,
                    )
                )

                if outcome.modified:
                    result.modified = True
                if outcome.metadata:
                    # Last write wins on key collisions
                    context.metadata.update(outcome.metadata)
                if outcome.route_override:
                    result.route_override = outcome.route_override
                if outcome.provider_model_override:
                    result.provider_model_override = outcome.provider_model_override

                if outcome.block:
                    result.blocked = True
                    result.block_response = outcome.block_response
                    result.block_message = outcome.message
                    result.block_processor = processor.name
                    self.logger.info(
                        "Request blocked by %s: %s",
                        processor.name,
                        outcome.message,
                        extra={"event": "preprocessor.blocked", "processor": processor.name},
                    )
                    break

                if outcome.error is not None:
                    self._record_error(result, processor, outcome.error, "process")
        finally:
            for processor, error in reversed(executed):
                try:
                    await processor.cleanup(request, context, error)
                except Exception as e:
                    self._record_error(result, processor, e, "cleanup")
            result.total_time_ms = (time.perf_counter() - start) * 1000

        return result

    def stats(self) -> dict:
        return {
            "total": len(self._processors),
            "enabled": sum(1 for p in self._processors if p.enabled),
            "disabled": sum(1 for p in self._processors if not p.enabled),
            "processors": [
                {
                    "name": p.name,
                    "priority": p.priority,
                    "enabled": p.enabled,
                    "description": p.description,
                }
                for p in self.ordered()
            ],
        }

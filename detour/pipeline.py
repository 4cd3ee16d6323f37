"""Per-request orchestration: pre-processing, agents, route selection.

The pipeline only decides; forwarding and response handling live in the
proxy server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .agents.base import Agent, AgentRegistry
from .config import ProxyConfig
from .preprocessing.base import PreProcessingResult
from .preprocessing.block import build_blocked_response
from .preprocessing.manager import PreProcessorManager
from .routing.manager import RouteManager
from .routing.types import ProxyRequest, RouteContext, RouteSelectionResult
from .streaming.rewriter import CONTINUATION_HEADER

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    request: ProxyRequest
    context: RouteContext
    preprocessing: PreProcessingResult
    provider_model: str | None = None
    selection: RouteSelectionResult | None = None
    agents: list[Agent] = field(default_factory=list)
    continuation: bool = False

    @property
    def blocked(self) -> bool:
        return self.preprocessing.blocked

    @property
    def block_response(self) -> dict[str, Any] | None:
        return self.preprocessing.block_response

    def summary(self) -> dict[str, Any]:
        return {
            "provider_model": self.provider_model,
            "blocked": self.blocked,
            "route": self.selection.route.id if self.selection and self.selection.route else None,
            "used_fallback": self.selection.used_fallback if self.selection else False,
            "agents": [a.name for a in self.agents],
            "token_count": self.context.token_count,
            "session_id": self.context.session_id,
        }


class RequestPipeline:
    """Runs pre-processors, activates agents and picks the destination.

    Destination precedence: a processor's ``provider_model_override``, then a
    processor's ``route_override`` (that route's transformations are applied
    without evaluating its matchers), then normal route selection.
    """

    def __init__(
        self,
        preprocessors: PreProcessorManager,
        routes: RouteManager,
        agents: AgentRegistry | None = None,
        config: ProxyConfig | None = None,
    ):
        self.preprocessors = preprocessors
        self.routes = routes
        self.agents = agents
        self.config = config or ProxyConfig()

    @staticmethod
    def is_continuation(request: ProxyRequest) -> bool:
        return request.headers.get(CONTINUATION_HEADER) == "1"

    async def process(self, request: ProxyRequest) -> PipelineResult:
        context = RouteContext(config=self.config)
        pre = await self.preprocessors.process(request, context)
        result = PipelineResult(
            request=request,
            context=context,
            preprocessing=pre,
            continuation=self.is_continuation(request),
        )

        if pre.blocked:
            if pre.block_response is None:
                pre.block_response = build_blocked_response(pre.block_message or "Request blocked.")
            return result

        if self.agents is not None and self.config.agents_enabled and not result.continuation:
            result.agents = self.agents.activate(request, self.config)

        self._resolve_destination(request, context, result)
        return result

    def _resolve_destination(
        self, request: ProxyRequest, context: RouteContext, result: PipelineResult
    ) -> None:
        pre = result.preprocessing
        requested_model = request.body.get("model")

        if pre.provider_model_override:
            request.body["model"] = pre.provider_model_override
            result.provider_model = pre.provider_model_override
            return

        provider_model: str | None = None
        if pre.route_override:
            route = self.routes.get_route(pre.route_override)
            if route is None:
                logger.warning("Route override %s not found; selecting normally", pre.route_override)
            else:
                self.routes.apply_route(route, request, context)
                provider_model = route.provider_model

        if provider_model is None:
            result.selection = self.routes.select_route(request, context)
            provider_model = result.selection.provider_model

        # A model_override transformation has already chosen the model
        if request.body.get("model") == requested_model:
            request.body["model"] = provider_model
        result.provider_model = request.body.get("model")

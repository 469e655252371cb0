"""
Prometheus metrics for the qualification API.

Exposes /metrics with request counters and latency histograms, plus
conversation metrics: turns by plan source, degraded pipeline steps,
lead score distribution and completion latency.
"""

import logging
import time
from typing import Dict, List, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from llm.orchestrator import TurnResult
from llm.providers.base import CompletionService
from llm.support_engine import SupportTurnResult

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "leadqual_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "leadqual_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
ACTIVE_REQUESTS = Gauge(
    "leadqual_http_active_requests",
    "Currently active HTTP requests",
)

# Conversation metrics
TURN_COUNT = Counter(
    "leadqual_turns_total",
    "Conversation turns processed",
    ["engine", "source"],
)
DEGRADED_STEPS = Counter(
    "leadqual_degraded_steps_total",
    "Pipeline steps answered by a deterministic fallback",
    ["engine", "step"],
)
LEAD_SCORE_HIST = Histogram(
    "leadqual_lead_score",
    "Lead score after each turn",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)
HANDOFF_COUNT = Counter(
    "leadqual_handoffs_total",
    "Conversations that became ready for handoff",
)
LLM_LATENCY = Histogram(
    "leadqual_llm_duration_seconds",
    "Completion call latency",
    ["mode", "outcome"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)


def record_turn(result: TurnResult):
    """Record one consultative turn."""
    TURN_COUNT.labels(engine="consultative", source=result.plan_source).inc()
    for step in result.degraded_steps:
        DEGRADED_STEPS.labels(engine="consultative", step=step).inc()
    LEAD_SCORE_HIST.observe(result.score)
    if result.handoff_triggered:
        HANDOFF_COUNT.inc()


def record_support_turn(result: SupportTurnResult):
    """Record one support turn."""
    TURN_COUNT.labels(engine="support", source=result.analysis_source).inc()
    for step in result.degraded_steps:
        DEGRADED_STEPS.labels(engine="support", step=step).inc()


def record_llm_latency(seconds: float, mode: str, outcome: str):
    LLM_LATENCY.labels(mode=mode, outcome=outcome).observe(seconds)


class InstrumentedCompletionService:
    """Completion service wrapper that times every call."""

    def __init__(self, inner: CompletionService):
        self.inner = inner

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> str:
        mode = "json" if json_mode else "text"
        start = time.perf_counter()
        outcome = "error"
        try:
            text = await self.inner.complete(
                messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
            )
            outcome = "ok"
            return text
        finally:
            # Cancelled calls (timeouts) are recorded as errors too
            record_llm_latency(time.perf_counter() - start, mode, outcome)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        except Exception:
            ACTIVE_REQUESTS.dec()
            raise

        duration = time.time() - start
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)
        ACTIVE_REQUESTS.dec()

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )

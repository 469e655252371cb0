"""
API Middleware.
"""

from .metrics import InstrumentedCompletionService, MetricsMiddleware, metrics_endpoint

__all__ = ["InstrumentedCompletionService", "MetricsMiddleware", "metrics_endpoint"]

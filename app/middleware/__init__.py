"""
Middleware modules for the shop API.

Provides request processing middleware for:
- Correlation ID tracking so service logs can be tied to one request
"""

from .correlation import CorrelationIdMiddleware, CorrelationLogFilter, correlation_id_ctx, request_id_ctx

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationLogFilter",
    "correlation_id_ctx",
    "request_id_ctx",
]

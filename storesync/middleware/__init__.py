"""
Middleware Module
ASGI middleware for request processing
"""

from storesync.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id, new_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "new_correlation_id"]

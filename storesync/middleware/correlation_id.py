"""
Correlation ID Middleware
Request tracing for the HTTP surface; CLI runs and bridge sessions set their own id
"""

from uuid import uuid4

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "new_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from context.

    Returns:
        str: The correlation ID or 'none' if not available
    """
    return correlation_id.get() or 'none'


def new_correlation_id(prefix: str = "") -> str:
    """
    Start a correlation ID for work that does not arrive over HTTP
    (a backfill run, a reconciliation run, a bridge session).

    Context variables do not follow work onto Firestore watch threads,
    so the bridge also binds its session id onto its logger.
    """
    value = f"{prefix}{uuid4().hex}"
    correlation_id.set(value)
    return value

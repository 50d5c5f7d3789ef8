"""Shared FastAPI dependency functions."""

from fastapi import Request, status

from smartdb.core.errors import APIException, ErrorCategory, ErrorCode
from smartdb.db.manager import ConnectionManager


async def get_connection_manager(request: Request) -> ConnectionManager:
    """Return the :class:`ConnectionManager` created by the application lifespan.

    Raises a 503 :class:`APIException` when the application has not started it.
    """
    manager = getattr(request.app.state, "connection_manager", None)
    if manager is None:
        raise APIException(
            code=ErrorCode.DB_CONNECT_FAILED,
            message="Connection manager not initialized",
            category=ErrorCategory.UPSTREAM,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            retryable=True,
        )
    return manager

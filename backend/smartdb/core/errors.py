"""Error handling and structured error responses."""

import asyncio
import errno
import logging
import re
import socket
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymysql import err as mysql_errors

from smartdb.core.config import settings
from smartdb.core.metrics import metrics

logger = logging.getLogger(__name__)


class ErrorCode:
    """Stable error codes for API responses."""

    # Connection/Database
    DB_UNSUPPORTED_TYPE = "DB_UNSUPPORTED_TYPE"
    DB_CONNECT_FAILED = "DB_CONNECT_FAILED"
    DB_NOT_FOUND = "DB_NOT_FOUND"
    DB_PROTECTED = "DB_PROTECTED"
    DB_ALREADY_EXISTS = "DB_ALREADY_EXISTS"

    # Query Execution
    QUERY_VALIDATION_ERROR = "QUERY_VALIDATION_ERROR"
    QUERY_EXECUTION_ERROR = "QUERY_EXECUTION_ERROR"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorCategory:
    """Error categories for classification."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"
    UPSTREAM = "upstream"


class APIError(BaseModel):
    """Structured error response model."""

    code: str
    category: str
    message: str
    details: Optional[Dict[str, Any]] = None
    request_id: str
    timestamp: str
    retryable: bool = False


class APIException(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        category: str = ErrorCategory.INTERNAL,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        self.code = code
        self.message = message
        self.category = category
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)


class ConfigurationError(APIException):
    """Raised when a pool cannot be built for the requested engine type."""

    def __init__(self, db_type: Any):
        super().__init__(
            code=ErrorCode.DB_UNSUPPORTED_TYPE,
            message=f"Unsupported database type: {db_type}",
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"type": str(db_type)},
        )


class DatabaseConnectionError(APIException):
    """Raised when a connection cannot be established or acquired from a pool."""

    def __init__(self, connection_id: str, reason: str):
        super().__init__(
            code=ErrorCode.DB_CONNECT_FAILED,
            message=f"Failed to connect to database '{connection_id}': {reason}",
            category=ErrorCategory.UPSTREAM,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"connection_id": connection_id},
            retryable=True,
        )
        self.connection_id = connection_id


class ConnectionNotFoundError(APIException):
    """Raised when no pool is registered under a connection id."""

    def __init__(self, connection_id: str, known_ids: List[str]):
        available = ", ".join(known_ids) if known_ids else "(none)"
        super().__init__(
            code=ErrorCode.DB_NOT_FOUND,
            message=(
                f"Database connection '{connection_id}' not found. "
                f"Available connections: {available}"
            ),
            category=ErrorCategory.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"connection_id": connection_id, "available": list(known_ids)},
        )
        self.connection_id = connection_id
        self.known_ids = list(known_ids)


class ProtectedResourceError(APIException):
    """Raised on an attempt to remove or replace the reserved local connection."""

    def __init__(
        self, connection_id: str, message: str = "Cannot remove local database connection"
    ):
        super().__init__(
            code=ErrorCode.DB_PROTECTED,
            message=message,
            category=ErrorCategory.CONFLICT,
            status_code=status.HTTP_409_CONFLICT,
            details={"connection_id": connection_id},
        )
        self.connection_id = connection_id


class QueryExecutionError(APIException):
    """Raised when a statement fails; the message is the driver's own text."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = ErrorCode.QUERY_EXECUTION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )

    @classmethod
    def from_driver_error(
        cls, exc: BaseException, connection_id: str
    ) -> "QueryExecutionError":
        """Wrap a driver exception, keeping its SQLSTATE or MySQL errno."""
        details: Dict[str, Any] = {"connection_id": connection_id}
        sqlstate = getattr(exc, "sqlstate", None)
        if sqlstate:
            details["sqlstate"] = sqlstate
        message = str(exc).strip() or type(exc).__name__
        mysql_errno = _mysql_errno(exc)
        if mysql_errno is not None:
            details["errno"] = mysql_errno
            # pymysql errors are (errno, message) tuples
            if len(exc.args) > 1:
                message = str(exc.args[1])
        return cls(message, details=details)


# Connection error kinds, in the order the user-facing table lists them.
AUTH_FAILED = "auth_failed"
DATABASE_NOT_FOUND = "database_not_found"
HOST_NOT_FOUND = "host_not_found"
CONNECTION_REFUSED = "connection_refused"
CONNECTION_RESET = "connection_reset"
CONNECTION_TIMEOUT = "timeout"

CONNECTION_ERROR_MESSAGES: Dict[str, str] = {
    AUTH_FAILED: "Authentication failed. Please check your username and password.",
    DATABASE_NOT_FOUND: "Database not found. Please check the database name.",
    HOST_NOT_FOUND: "Host not found. Please check the host address.",
    CONNECTION_REFUSED: "Connection refused. Please check the host and port.",
    CONNECTION_RESET: "Connection reset. The database server may be unavailable.",
    CONNECTION_TIMEOUT: "Connection timeout. Please check your network connection.",
}

_SQLSTATE_KINDS = {
    "28P01": AUTH_FAILED,
    "28000": AUTH_FAILED,
    "3D000": DATABASE_NOT_FOUND,
}

_MYSQL_ERRNO_KINDS = {
    1044: AUTH_FAILED,
    1045: AUTH_FAILED,
    1049: DATABASE_NOT_FOUND,
    2005: HOST_NOT_FOUND,
}

_OS_ERRNO_KINDS = {
    errno.ECONNREFUSED: CONNECTION_REFUSED,
    errno.ECONNRESET: CONNECTION_RESET,
    errno.ETIMEDOUT: CONNECTION_TIMEOUT,
}

# libpq and pymysql report most connect failures as text only.
_MESSAGE_KINDS = [
    (r"password authentication failed|access denied", AUTH_FAILED),
    (r"database \S+ does not exist|unknown database", DATABASE_NOT_FOUND),
    (
        r"could not translate host name|name or service not known"
        r"|nodename nor servname|unknown mysql server host|getaddrinfo failed",
        HOST_NOT_FOUND,
    ),
    (r"connection refused", CONNECTION_REFUSED),
    (r"connection reset", CONNECTION_RESET),
    (r"timeout expired|timed out|couldn.t get a connection", CONNECTION_TIMEOUT),
]


def _mysql_errno(exc: BaseException) -> Optional[int]:
    if isinstance(exc, mysql_errors.MySQLError) and exc.args:
        if isinstance(exc.args[0], int):
            return exc.args[0]
    return None


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_connection_error(exc: BaseException) -> Optional[str]:
    """
    Map a connection failure to one of the known error kinds.

    Codes (SQLSTATE, MySQL errno, OS errno) are checked along the whole
    ``__cause__``/``__context__`` chain before falling back to message text.

    Returns:
        One of the kind constants, or None when the error is not recognised
    """
    chain = list(_error_chain(exc))
    for err in chain:
        kind = _SQLSTATE_KINDS.get(getattr(err, "sqlstate", None) or "")
        if kind:
            return kind
        mysql_errno = _mysql_errno(err)
        if mysql_errno in _MYSQL_ERRNO_KINDS:
            return _MYSQL_ERRNO_KINDS[mysql_errno]
        if isinstance(err, socket.gaierror):
            return HOST_NOT_FOUND
        if isinstance(err, (TimeoutError, asyncio.TimeoutError)):
            return CONNECTION_TIMEOUT
        if isinstance(err, OSError) and err.errno in _OS_ERRNO_KINDS:
            return _OS_ERRNO_KINDS[err.errno]
    for err in chain:
        text = str(err)
        for pattern, kind in _MESSAGE_KINDS:
            if re.search(pattern, text, flags=re.IGNORECASE):
                return kind
    return None


def describe_connection_error(exc: BaseException) -> str:
    """
    Convert a connection failure to a short user-facing message.

    Unrecognised errors fall back to the raw message text.
    """
    kind = classify_connection_error(exc)
    if kind:
        return CONNECTION_ERROR_MESSAGES[kind]
    return str(exc).strip() or "Unknown connection error occurred."


def create_error_response(
    request: Request,
    code: str,
    message: str,
    category: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    retryable: bool = False,
) -> JSONResponse:
    """Create a structured error response."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    error = APIError(
        code=code,
        category=category,
        message=message,
        details=details,
        request_id=request_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
        retryable=retryable,
    )

    logger.error(
        f"API Error: {code} - {message}",
        extra={
            "error_code": code,
            "error_category": category,
            "request_id": request_id,
            "status_code": status_code,
            "details": details,
        },
    )

    metrics.record_error(code, category)

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error.model_dump()},
    )


async def error_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException instances."""
    return create_error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        category=exc.category,
        status_code=exc.status_code,
        details=exc.details,
        retryable=exc.retryable,
    )


async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception", exc_info=exc)
    message = "An internal error occurred"
    details: Optional[Dict[str, Any]] = None
    if settings.environment == "development":
        message = str(exc) or message
        details = {"exception_type": type(exc).__name__, "detail": str(exc)}
    return create_error_response(
        request=request,
        code=ErrorCode.INTERNAL_ERROR,
        message=message,
        category=ErrorCategory.INTERNAL,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        retryable=False,
        details=details,
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register error handlers with FastAPI app."""
    app.add_exception_handler(APIException, error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

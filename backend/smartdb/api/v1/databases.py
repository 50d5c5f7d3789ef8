"""Database connection management endpoints."""

import logging

from fastapi import APIRouter, Depends, Query, status

from smartdb.core.deps import get_connection_manager
from smartdb.core.errors import APIException, ErrorCategory, ErrorCode
from smartdb.db.manager import ConnectionManager
from smartdb.models.database import (
    AddDatabaseRequest,
    ConnectionResultResponse,
    DatabaseCredentialsRequest,
    DatabaseListResponse,
    DatabaseSummary,
    MessageResponse,
    SchemaResponse,
    TableData,
    TableDataResponse,
    TableSchema,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=DatabaseListResponse)
async def list_databases(
    manager: ConnectionManager = Depends(get_connection_manager),
) -> DatabaseListResponse:
    """List registered connections. Credentials are never included."""
    sessions = manager.get_available_databases()
    return DatabaseListResponse(
        databases=[DatabaseSummary(**session.to_public()) for session in sessions]
    )


@router.post("/test", response_model=ConnectionResultResponse)
async def test_database(
    request: DatabaseCredentialsRequest,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> ConnectionResultResponse:
    """
    Test connection parameters without registering them.

    Returns 400 with the human-readable failure message when the test fails.
    """
    result = await manager.test_connection(request.to_credentials())
    if not result.success:
        raise APIException(
            code=ErrorCode.DB_CONNECT_FAILED,
            message=result.message,
            category=ErrorCategory.UPSTREAM,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return ConnectionResultResponse(
        success=True, message=result.message, connection_id=result.connection_id
    )


@router.post("", response_model=ConnectionResultResponse, status_code=status.HTTP_201_CREATED)
async def add_database(
    request: AddDatabaseRequest,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> ConnectionResultResponse:
    """Test and register a new connection under a caller-chosen id."""
    if any(session.id == request.id for session in manager.get_available_databases()):
        raise APIException(
            code=ErrorCode.DB_ALREADY_EXISTS,
            message=f"Database with ID '{request.id}' already exists",
            category=ErrorCategory.CONFLICT,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"connection_id": request.id},
        )

    result = await manager.add_connection(request.to_credentials())
    if not result.success:
        raise APIException(
            code=ErrorCode.DB_CONNECT_FAILED,
            message=result.message,
            category=ErrorCategory.UPSTREAM,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"connection_id": request.id},
        )

    logger.info(
        f"Database '{request.id}' added",
        extra={"event": "database_added", "connection_id": request.id},
    )
    return ConnectionResultResponse(
        success=True, message=result.message, connection_id=result.connection_id
    )


@router.delete("/{connection_id}", response_model=MessageResponse)
async def remove_database(
    connection_id: str,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> MessageResponse:
    """Close and unregister a connection. The local database cannot be removed."""
    removed = await manager.remove_connection(connection_id)
    if not removed:
        raise APIException(
            code=ErrorCode.DB_NOT_FOUND,
            message=f"Database connection '{connection_id}' not found or could not be closed",
            category=ErrorCategory.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"connection_id": connection_id},
        )
    return MessageResponse(message=f"Database connection '{connection_id}' removed")


@router.get("/{connection_id}/schema", response_model=SchemaResponse)
async def get_schema(
    connection_id: str,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> SchemaResponse:
    """Describe every table on a connection."""
    schema = await manager.get_database_schema(connection_id)
    return SchemaResponse(
        tables=[TableSchema(**table) for table in schema],
    )


@router.get("/{connection_id}/tables/{table_name}/data", response_model=TableDataResponse)
async def get_table_data(
    connection_id: str,
    table_name: str,
    limit: int = Query(100, ge=1, description="Maximum rows to return"),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> TableDataResponse:
    """Browse the first rows of a table."""
    result = await manager.get_table_data(connection_id, table_name, limit)
    return TableDataResponse(
        data=TableData(
            table_name=table_name,
            columns=result.columns,
            rows=result.rows,
            row_count=result.row_count,
        )
    )

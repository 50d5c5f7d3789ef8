"""Query execution endpoint."""

import logging
import time

from fastapi import APIRouter, Depends

from smartdb.core.deps import get_connection_manager
from smartdb.db.manager import ConnectionManager
from smartdb.models.query import QueryRequest, QueryResponse, QueryResultPayload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/query", response_model=QueryResponse)
async def execute_query(
    request: QueryRequest,
    manager: ConnectionManager = Depends(get_connection_manager),
) -> QueryResponse:
    """
    Execute one SQL statement on a registered connection.

    Statement failures return 400 with the database's own error message.
    """
    start_time = time.time()
    result = await manager.query(request.query, request.params, request.database_id)
    execution_ms = int((time.time() - start_time) * 1000)

    logger.info(
        f"Query on '{request.database_id}' returned {result.row_count} row(s) in {execution_ms}ms",
        extra={"event": "query_executed", "connection_id": request.database_id},
    )
    return QueryResponse(
        result=QueryResultPayload(
            columns=result.columns,
            rows=result.rows,
            row_count=result.row_count,
            execution_time=f"{execution_ms}ms",
        )
    )

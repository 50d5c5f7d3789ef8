"""Query execution models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smartdb.db.models import LOCAL_DB_ID


class QueryRequest(BaseModel):
    """Request to execute a SQL statement."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., description="SQL statement with $1-style placeholders")
    database_id: str = Field(
        default=LOCAL_DB_ID, alias="databaseId", description="Target connection id", min_length=1
    )
    params: Optional[List[Any]] = Field(default=None, description="Positional parameters")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query is required")
        return value


class QueryResultPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    columns: List[str] = Field(..., description="Column names")
    rows: List[Dict[str, Any]] = Field(..., description="Result rows")
    row_count: int = Field(..., alias="rowCount", description="Rows returned or affected")
    execution_time: str = Field(..., alias="executionTime", description="Wall time, e.g. '12ms'")


class QueryResponse(BaseModel):
    """Response from query execution."""

    success: bool = True
    result: QueryResultPayload

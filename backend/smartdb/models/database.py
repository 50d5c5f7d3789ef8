"""Models for registered database connections."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from smartdb.db.models import DatabaseCredentials, DatabaseType


class DatabaseCredentialsRequest(BaseModel):
    """Connection parameters submitted for a connection test."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Connection id", min_length=1, max_length=100)
    name: Optional[str] = Field(None, description="Display name", max_length=100)
    type: DatabaseType = Field(..., description="Database engine")
    host: Optional[str] = Field(None, description="Database host")
    port: Optional[int] = Field(None, description="Database port", ge=1, le=65535)
    database: str = Field(..., description="Database name, or file path for SQLite", min_length=1)
    username: Optional[str] = Field(None, description="Database username")
    password: Optional[str] = Field(None, description="Database password")

    @model_validator(mode="after")
    def check_network_fields(self) -> "DatabaseCredentialsRequest":
        if self.type == DatabaseType.SQLITE:
            return self
        missing = [
            name
            for name in ("host", "port", "username", "password")
            if getattr(self, name) in (None, "")
        ]
        if missing:
            raise ValueError(
                f"Missing required connection parameters for {self.type.value}: "
                f"{', '.join(missing)}"
            )
        return self

    def to_credentials(self) -> DatabaseCredentials:
        connection_id = self.id or "connection-test"
        return DatabaseCredentials(
            id=connection_id,
            name=self.name or connection_id,
            type=self.type,
            host=self.host,
            port=self.port,
            database=self.database,
            username=self.username,
            password=self.password,
        )


class AddDatabaseRequest(DatabaseCredentialsRequest):
    """Connection parameters for a connection to register."""

    id: str = Field(..., description="Connection id", min_length=1, max_length=100)
    name: str = Field(..., description="Display name", min_length=1, max_length=100)


class DatabaseSummary(BaseModel):
    """Registered connection as listed to clients (no credentials)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: str
    is_local: bool = Field(False, alias="isLocal")
    last_used: datetime = Field(..., alias="lastUsed")


class DatabaseListResponse(BaseModel):
    success: bool = True
    databases: List[DatabaseSummary]


class ConnectionResultResponse(BaseModel):
    """Outcome of a connection test or add."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    connection_id: Optional[str] = Field(None, alias="connectionId")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ColumnInfo(BaseModel):
    column_name: str
    data_type: Optional[str] = None
    is_nullable: Optional[str] = None
    column_default: Optional[Any] = None


class TableSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(..., alias="tableName")
    columns: List[ColumnInfo]


class SchemaResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    tables: List[TableSchema] = Field(..., alias="schema")


class TableData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(..., alias="tableName")
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int = Field(..., alias="rowCount")


class TableDataResponse(BaseModel):
    success: bool = True
    data: TableData

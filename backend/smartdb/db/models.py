"""Credential, session and result types shared by the connection manager."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cached_property
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from smartdb.db.engines import Engine

LOCAL_DB_ID = "pg-db"
LOCAL_DB_NAME = "pg-db (Local)"


class DatabaseType(str, enum.Enum):
    """Supported database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DatabaseCredentials:
    """
    Immutable description of one database target.

    For SQLite ``database`` holds the file path and the network fields are
    ignored. An unknown ``type`` string is kept as-is so that pool
    construction can reject it with a ConfigurationError.
    """

    id: str
    name: str
    type: Union[DatabaseType, str]
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    is_local: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.type, DatabaseType):
            try:
                object.__setattr__(self, "type", DatabaseType(str(self.type).lower()))
            except ValueError:
                pass

    @cached_property
    def engine(self) -> "Engine":
        """The engine variant for this credential set, resolved once."""
        from smartdb.db.engines import get_engine

        return get_engine(self.type)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, DatabaseType) else str(self.type)

    def describe_target(self) -> str:
        """Human-readable target without secrets, for log lines."""
        if self.type == DatabaseType.SQLITE:
            return f"sqlite:{self.database}"
        return f"{self.type_name}://{self.host}:{self.port}/{self.database}"


@dataclass
class DatabaseSession:
    """Registry metadata for one registered connection id."""

    id: str
    credentials: DatabaseCredentials
    created_at: datetime = field(default_factory=utcnow)
    last_used: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        """Advance ``last_used``; never moves it backwards."""
        now = utcnow()
        if now > self.last_used:
            self.last_used = now

    def to_public(self) -> Dict[str, Any]:
        """Serializable view; username and password are never included."""
        creds = self.credentials
        return {
            "id": self.id,
            "name": creds.name,
            "type": creds.type_name,
            "host": creds.host,
            "port": creds.port,
            "database": creds.database,
            "is_local": creds.is_local,
            "last_used": self.last_used,
        }


@dataclass(frozen=True)
class ConnectionResult:
    """Outcome of a connection test or add."""

    success: bool
    message: str
    connection_id: Optional[str] = None

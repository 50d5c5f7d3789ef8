"""Per-engine behaviour.

An ``Engine`` bundles everything that differs between database types: the
pool adapter, the native placeholder style, identifier quoting and the
catalogue queries used for table lookup and schema introspection. Catalogue
queries are written with ``$1`` placeholders like any other statement.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Union

from smartdb.core.errors import ConfigurationError
from smartdb.db import placeholders
from smartdb.db.models import DatabaseCredentials, DatabaseType
from smartdb.db.pools import MySQLPool, Pool, PoolProfile, PostgresPool, SQLitePool

logger = logging.getLogger(__name__)

PoolFactory = Callable[[DatabaseCredentials, PoolProfile], Pool]


@dataclass(frozen=True)
class Engine:
    type: DatabaseType
    pool_factory: PoolFactory
    placeholder_style: str
    identifier_quote: str
    table_exists_sql: str
    list_tables_sql: str
    columns_sql: str
    backslash_escapes: bool = False

    def quote_identifier(self, name: str) -> str:
        q = self.identifier_quote
        return f"{q}{name.replace(q, q + q)}{q}"


POSTGRESQL = Engine(
    type=DatabaseType.POSTGRESQL,
    pool_factory=PostgresPool,
    placeholder_style=placeholders.FORMAT,
    identifier_quote='"',
    table_exists_sql=(
        "SELECT EXISTS ("
        "SELECT FROM information_schema.tables "
        "WHERE table_schema = 'public' AND table_name = $1"
        ') AS "exists"'
    ),
    list_tables_sql=(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = 'public' AND table_type = 'BASE TABLE' "
        "ORDER BY table_name"
    ),
    columns_sql=(
        "SELECT column_name, data_type, is_nullable, column_default "
        "FROM information_schema.columns "
        "WHERE table_schema = 'public' AND table_name = $1 "
        "ORDER BY ordinal_position"
    ),
)

MYSQL = Engine(
    type=DatabaseType.MYSQL,
    pool_factory=MySQLPool,
    placeholder_style=placeholders.FORMAT,
    identifier_quote="`",
    # MySQL 8 reports information_schema columns in upper case
    table_exists_sql=(
        "SELECT COUNT(*) > 0 AS `exists` FROM information_schema.tables "
        "WHERE table_schema = DATABASE() AND table_name = $1"
    ),
    list_tables_sql=(
        "SELECT table_name AS table_name FROM information_schema.tables "
        "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' "
        "ORDER BY table_name"
    ),
    columns_sql=(
        "SELECT column_name AS column_name, data_type AS data_type, "
        "is_nullable AS is_nullable, column_default AS column_default "
        "FROM information_schema.columns "
        "WHERE table_schema = DATABASE() AND table_name = $1 "
        "ORDER BY ordinal_position"
    ),
    backslash_escapes=True,
)

SQLITE = Engine(
    type=DatabaseType.SQLITE,
    pool_factory=SQLitePool,
    placeholder_style=placeholders.NUMBERED,
    identifier_quote='"',
    table_exists_sql=(
        "SELECT EXISTS ("
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND lower(name) = $1"
        ') AS "exists"'
    ),
    list_tables_sql=(
        "SELECT name AS table_name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
        "ORDER BY name"
    ),
    columns_sql=(
        "SELECT name AS column_name, type AS data_type, "
        "CASE WHEN \"notnull\" = 1 THEN 'NO' ELSE 'YES' END AS is_nullable, "
        "dflt_value AS column_default "
        "FROM pragma_table_info($1) ORDER BY cid"
    ),
)

ENGINES: Dict[DatabaseType, Engine] = {
    engine.type: engine for engine in (POSTGRESQL, MYSQL, SQLITE)
}


def get_engine(db_type: Union[DatabaseType, str, Any]) -> Engine:
    """
    Look up the engine for a database type.

    Raises:
        ConfigurationError: If the type is not one of the supported engines
    """
    try:
        return ENGINES[DatabaseType(db_type)]
    except (ValueError, KeyError):
        raise ConfigurationError(db_type) from None


def create_pool(credentials: DatabaseCredentials, profile: PoolProfile) -> Pool:
    """
    Build an unopened pool for the credentials' engine.

    Construction is pure: no connection is attempted until the first acquire.

    Raises:
        ConfigurationError: If the credentials name an unsupported type
    """
    pool = credentials.engine.pool_factory(credentials, profile)
    logger.debug(
        f"Created {profile.name} pool for '{credentials.id}' ({credentials.describe_target()})"
    )
    return pool

"""Multi-database connection manager."""

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Set

from smartdb.core.config import Settings, settings
from smartdb.core.errors import (
    APIException,
    ConfigurationError,
    ConnectionNotFoundError,
    DatabaseConnectionError,
    ErrorCode,
    ProtectedResourceError,
    QueryExecutionError,
    describe_connection_error,
)
from smartdb.core.metrics import metrics
from smartdb.db.engines import Engine, create_pool
from smartdb.db.models import (
    LOCAL_DB_ID,
    LOCAL_DB_NAME,
    ConnectionResult,
    DatabaseCredentials,
    DatabaseSession,
    DatabaseType,
)
from smartdb.db.pools import (
    Handle,
    Pool,
    PoolClosedError,
    PoolProfile,
    long_lived_profile,
    probe_profile,
)
from smartdb.db.registry import SessionRegistry
from smartdb.db.results import QueryResult

logger = logging.getLogger(__name__)

PROBE_QUERY = "SELECT 1"
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

PoolBuilder = Callable[[DatabaseCredentials, PoolProfile], Pool]


class ConnectionManager:
    """
    Owns every registered database pool and its session metadata.

    One instance is created per process at startup and closed at shutdown.
    The pool map and session registry are mutated together under a lock, with
    no suspension point between the two updates, so concurrent readers never
    see an id in one but not the other. Readers do not take the lock; a
    missing pool is reported as ConnectionNotFoundError.
    """

    def __init__(
        self,
        config: Settings = settings,
        pool_builder: PoolBuilder = create_pool,
    ):
        self._config = config
        self._create_pool = pool_builder
        self._sessions = SessionRegistry()
        self._pools: Dict[str, Pool] = {}
        self._local_pool: Optional[Pool] = None
        self._closing: Set[str] = set()
        self._lock = asyncio.Lock()

    # Registration

    def local_credentials(self) -> DatabaseCredentials:
        return DatabaseCredentials(
            id=LOCAL_DB_ID,
            name=LOCAL_DB_NAME,
            type=DatabaseType.POSTGRESQL,
            host=self._config.db_host,
            port=self._config.db_port,
            database=self._config.db_name,
            username=self._config.db_user,
            password=self._config.db_password,
            is_local=True,
        )

    async def initialize_local_database(self) -> None:
        """Register the local database. Calling it again is a no-op."""
        if self._local_pool is not None:
            return
        async with self._lock:
            if self._local_pool is not None:
                return
            credentials = self.local_credentials()
            pool = self._create_pool(credentials, long_lived_profile(self._config))
            pool.set_error_handler(self._pool_error_handler(LOCAL_DB_ID))
            self._register(credentials, pool)
            self._local_pool = pool
        logger.info(
            f"Local database registered as '{LOCAL_DB_ID}' ({credentials.describe_target()})",
            extra={"event": "connection_registered", "connection_id": LOCAL_DB_ID},
        )

    async def test_connection(self, credentials: DatabaseCredentials) -> ConnectionResult:
        """
        Probe a database through a throwaway single-connection pool.

        The probe pool is always closed before returning, whatever the outcome.
        Failures are reported in the result, never raised.
        """
        try:
            pool = self._create_pool(credentials, probe_profile(self._config))
        except ConfigurationError as e:
            metrics.record_db_connection_attempt("failed")
            return ConnectionResult(success=False, message=e.message)

        try:
            handle = await pool.acquire()
            try:
                await handle.execute(PROBE_QUERY)
            finally:
                await handle.release()
        except Exception as e:
            metrics.record_db_connection_attempt("failed")
            logger.warning(
                f"Connection test failed for '{credentials.id}' "
                f"({credentials.describe_target()}): {e}",
                extra={"event": "connection_test_failed", "connection_id": credentials.id},
            )
            return ConnectionResult(success=False, message=describe_connection_error(e))
        finally:
            await self._close_quietly(credentials.id, pool)

        metrics.record_db_connection_attempt("success")
        return ConnectionResult(
            success=True,
            message=f"Successfully connected to {credentials.database}",
            connection_id=credentials.id,
        )

    async def add_connection(self, credentials: DatabaseCredentials) -> ConnectionResult:
        """
        Test and then register a connection.

        Callers must check the id is not already registered; an existing entry
        under the same id is replaced and its pool closed.

        Raises:
            ProtectedResourceError: For the local database id, which only
                initialize_local_database registers
        """
        if credentials.id == LOCAL_DB_ID:
            raise ProtectedResourceError(
                credentials.id,
                f"Connection id '{LOCAL_DB_ID}' is reserved for the local database",
            )
        result = await self.test_connection(credentials)
        if not result.success:
            return result

        try:
            pool = self._create_pool(credentials, long_lived_profile(self._config))
        except ConfigurationError as e:
            return ConnectionResult(success=False, message=e.message)
        pool.set_error_handler(self._pool_error_handler(credentials.id))

        async with self._lock:
            displaced = self._register(credentials, pool)
        if displaced is not None:
            logger.warning(
                f"Connection '{credentials.id}' was already registered; replacing it",
                extra={"event": "connection_replaced", "connection_id": credentials.id},
            )
            await self._close_quietly(credentials.id, displaced)

        logger.info(
            f"Added connection '{credentials.id}' ({credentials.describe_target()})",
            extra={"event": "connection_registered", "connection_id": credentials.id},
        )
        return ConnectionResult(
            success=True,
            message=f"Connected to {credentials.name}",
            connection_id=credentials.id,
        )

    async def remove_connection(self, connection_id: str) -> bool:
        """
        Close and unregister a connection.

        The pool is closed outside the registry lock, so a slow close (MySQL
        waits for checked-out connections) does not hold up other
        registrations. While it closes, the entry stays listed and callers
        waiting on the pool get ConnectionNotFoundError.

        Returns:
            True if a pool was closed and removed; False if none was registered,
            another removal of the same id is in progress, or closing failed,
            in which case the entry stays in place

        Raises:
            ProtectedResourceError: For the local database id
        """
        if connection_id == LOCAL_DB_ID:
            raise ProtectedResourceError(connection_id)

        async with self._lock:
            pool = self._pools.get(connection_id)
            if pool is None or connection_id in self._closing:
                return False
            self._closing.add(connection_id)

        try:
            await pool.close()
        except Exception:
            logger.error(
                f"Failed to close pool for '{connection_id}'; keeping it registered",
                exc_info=True,
                extra={"event": "connection_close_failed", "connection_id": connection_id},
            )
            return False
        finally:
            self._closing.discard(connection_id)

        async with self._lock:
            # A concurrent add may have registered a new pool under this id.
            if self._pools.get(connection_id) is pool:
                del self._pools[connection_id]
                self._sessions.remove(connection_id)
                metrics.set_registered_connections(len(self._pools))

        logger.info(
            f"Removed connection '{connection_id}'",
            extra={"event": "connection_removed", "connection_id": connection_id},
        )
        return True

    async def close_all_connections(self) -> None:
        """Close every pool concurrently and empty the registry."""
        async with self._lock:
            pools = list(self._pools.items())
            await asyncio.gather(
                *(self._close_quietly(connection_id, pool) for connection_id, pool in pools)
            )
            self._pools.clear()
            self._sessions.clear()
            self._local_pool = None
            metrics.set_registered_connections(0)
        logger.info(
            f"Closed {len(pools)} database connection(s)",
            extra={"event": "connections_closed"},
        )

    def _register(self, credentials: DatabaseCredentials, pool: Pool) -> Optional[Pool]:
        # Both maps change together, with nothing awaited in between.
        displaced = self._pools.get(credentials.id)
        self._pools[credentials.id] = pool
        self._sessions.add(DatabaseSession(id=credentials.id, credentials=credentials))
        metrics.set_registered_connections(len(self._pools))
        return displaced

    def _pool_error_handler(self, connection_id: str) -> Callable[[BaseException], None]:
        def on_error(exc: BaseException) -> None:
            logger.error(
                f"Unexpected error on idle connection in pool '{connection_id}': {exc}",
                extra={"event": "pool_error", "connection_id": connection_id},
            )

        return on_error

    async def _close_quietly(self, connection_id: str, pool: Pool) -> None:
        try:
            await pool.close()
        except Exception:
            logger.error(
                f"Failed to close pool for '{connection_id}'",
                exc_info=True,
                extra={"event": "connection_close_failed", "connection_id": connection_id},
            )

    # Lookup

    def get_available_databases(self) -> List[DatabaseSession]:
        """Snapshot of registered sessions, in registration order."""
        return self._sessions.snapshot()

    def get_session(self, connection_id: str) -> DatabaseSession:
        session = self._sessions.get(connection_id)
        if session is None:
            raise ConnectionNotFoundError(connection_id, self._sessions.ids())
        return session

    def _engine_for(self, connection_id: str) -> Engine:
        return self.get_session(connection_id).credentials.engine

    def pool_stats(self) -> Dict[str, Dict[str, Any]]:
        return {connection_id: pool.stats() for connection_id, pool in list(self._pools.items())}

    # Queries

    async def get_client(self, connection_id: str = LOCAL_DB_ID) -> Handle:
        """
        Check a handle out of the connection's pool.

        The caller must release the handle; prefer ``client()`` or ``query()``.

        Raises:
            ConnectionNotFoundError: If no pool is registered under the id, or
                the connection was removed while waiting for a handle
            DatabaseConnectionError: If a connection could not be acquired
        """
        pool = self._pools.get(connection_id)
        if pool is None:
            raise ConnectionNotFoundError(connection_id, list(self._pools))
        try:
            handle = await pool.acquire()
        except PoolClosedError as e:
            # Removed while this caller waited for a connection.
            raise ConnectionNotFoundError(connection_id, list(self._pools)) from e
        except Exception as e:
            metrics.record_pool_acquire_failure(pool.credentials.type_name)
            logger.error(
                f"Failed to acquire connection for '{connection_id}': {e}",
                extra={"event": "pool_acquire_failed", "connection_id": connection_id},
            )
            raise DatabaseConnectionError(connection_id, describe_connection_error(e)) from e
        self._sessions.touch(connection_id)
        return handle

    @asynccontextmanager
    async def client(self, connection_id: str = LOCAL_DB_ID) -> AsyncIterator[Handle]:
        handle = await self.get_client(connection_id)
        try:
            yield handle
        finally:
            await handle.release()

    async def query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        connection_id: str = LOCAL_DB_ID,
    ) -> QueryResult:
        """
        Execute one statement against a registered connection.

        Args:
            sql: Statement with ``$1``-style positional placeholders
            params: Values for the placeholders
            connection_id: Target connection; the local database by default

        Returns:
            Normalized QueryResult

        Raises:
            ConnectionNotFoundError: Unknown connection id
            DatabaseConnectionError: No connection could be acquired
            QueryExecutionError: The statement failed; message is the driver's
        """
        handle = await self.get_client(connection_id)
        logger.debug(f"Executing on '{connection_id}': {sql}")
        start_time = time.time()
        status = "error"
        try:
            result = await handle.execute(sql, params)
            status = "success"
            return result
        finally:
            await handle.release()
            metrics.record_query(handle.pool.credentials.type_name, status, time.time() - start_time)

    async def table_exists(self, table_name: str, connection_id: str = LOCAL_DB_ID) -> bool:
        """Whether a table exists; lookup failures are logged and reported as False."""
        try:
            engine = self._engine_for(connection_id)
            result = await self.query(
                engine.table_exists_sql, [table_name.lower()], connection_id
            )
        except APIException as e:
            logger.error(
                f"Error checking if table '{table_name}' exists on '{connection_id}': {e.message}",
                extra={"event": "table_exists_failed", "connection_id": connection_id},
            )
            return False
        if not result.rows:
            return False
        return bool(result.rows[0].get("exists"))

    async def list_tables(self, connection_id: str = LOCAL_DB_ID) -> List[str]:
        engine = self._engine_for(connection_id)
        result = await self.query(engine.list_tables_sql, connection_id=connection_id)
        return [row["table_name"] for row in result.rows]

    async def get_database_schema(self, connection_id: str = LOCAL_DB_ID) -> List[Dict[str, Any]]:
        """
        Describe every table on a connection.

        Returns:
            List of ``{"table_name", "columns"}`` dicts. A table whose columns
            cannot be read is left out.
        """
        engine = self._engine_for(connection_id)
        schema = []
        for table_name in await self.list_tables(connection_id):
            try:
                result = await self.query(engine.columns_sql, [table_name], connection_id)
            except QueryExecutionError as e:
                logger.warning(
                    f"Skipping table '{table_name}' on '{connection_id}': {e.message}",
                    extra={"event": "describe_table_failed", "connection_id": connection_id},
                )
                continue
            schema.append({"table_name": table_name, "columns": result.rows})
        return schema

    async def get_table_data(
        self,
        connection_id: str,
        table_name: str,
        limit: Optional[int] = None,
    ) -> QueryResult:
        """Fetch up to ``limit`` rows of a table (capped by ``table_data_max_rows``)."""
        if not TABLE_NAME_PATTERN.match(table_name):
            raise QueryExecutionError(
                f"Invalid table name: {table_name}",
                details={"table_name": table_name},
                code=ErrorCode.QUERY_VALIDATION_ERROR,
            )
        max_rows = self._config.table_data_max_rows
        limit = max_rows if limit is None else max(0, min(int(limit), max_rows))
        engine = self._engine_for(connection_id)
        sql = f"SELECT * FROM {engine.quote_identifier(table_name)} LIMIT {limit}"
        return await self.query(sql, connection_id=connection_id)

"""Connection pool adapters.

Each engine gets a ``Pool`` subclass wrapping its async driver behind one
interface: ``acquire`` returns a ``Handle``, ``release`` gives it back,
``close`` tears the pool down. Constructing a pool performs no I/O; the
driver pool (or SQLite file connection) is opened on first ``acquire``.
"""

import asyncio
import logging
import math
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type

import aiomysql
import aiosqlite
import psycopg
from psycopg_pool import AsyncConnectionPool, PoolClosed, PoolTimeout
from pymysql import err as mysql_errors

from smartdb.core.config import Settings, settings
from smartdb.core.errors import QueryExecutionError
from smartdb.db.models import DatabaseCredentials
from smartdb.db.placeholders import translate
from smartdb.db.results import QueryResult, read_cursor

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


class PoolClosedError(RuntimeError):
    """Raised when acquiring from a pool that is closed or being closed."""

    def __init__(self, connection_id: str):
        super().__init__(f"Pool for '{connection_id}' is closed")
        self.connection_id = connection_id


@dataclass(frozen=True)
class PoolProfile:
    """Sizing and timeout policy applied when a pool is built."""

    name: str
    max_size: int
    connect_timeout: float
    idle_timeout: float
    acquire_timeout: float
    statement_timeout: Optional[int] = None  # seconds; None leaves the server default


def long_lived_profile(config: Settings = settings) -> PoolProfile:
    """Policy for pools kept in the registry."""
    return PoolProfile(
        name="long_lived",
        max_size=config.pool_max_size,
        connect_timeout=config.pool_connect_timeout,
        idle_timeout=config.pool_idle_timeout,
        acquire_timeout=config.pool_acquire_timeout,
        statement_timeout=config.query_timeout,
    )


def probe_profile(config: Settings = settings) -> PoolProfile:
    """Policy for the throwaway pool used by a connection test."""
    return PoolProfile(
        name="probe",
        max_size=1,
        connect_timeout=config.probe_connect_timeout,
        idle_timeout=config.probe_connect_timeout,
        acquire_timeout=config.probe_connect_timeout,
        statement_timeout=None,
    )


class Handle:
    """
    One checked-out connection.

    ``execute`` accepts ``$1``-style placeholders on every engine. ``release``
    returns the connection to its pool and is safe to call more than once.
    """

    def __init__(self, pool: "Pool", raw: Any):
        self.pool = pool
        self.raw = raw
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        if self._released:
            raise RuntimeError("Cannot execute on a released handle")
        engine = self.pool.credentials.engine
        native_sql, native_params = translate(
            sql, params, engine.placeholder_style, engine.backslash_escapes
        )
        try:
            return await self.pool.run(self.raw, native_sql, native_params)
        except self.pool.driver_errors as e:
            raise QueryExecutionError.from_driver_error(e, self.pool.connection_id) from e

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self.pool.release(self)
        except Exception as e:
            logger.error(
                f"Failed to release connection back to pool '{self.pool.connection_id}'",
                exc_info=True,
            )
            self.pool.report_error(e)


class Pool(ABC):
    """Base class for engine pool adapters."""

    engine_name = ""
    driver_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, credentials: DatabaseCredentials, profile: PoolProfile):
        self.credentials = credentials
        self.profile = profile
        self._on_error: Optional[ErrorCallback] = None
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self.credentials.id

    @property
    def closed(self) -> bool:
        return self._closed

    def set_error_handler(self, callback: Optional[ErrorCallback]) -> None:
        """Register a callback for errors raised outside any caller's request."""
        self._on_error = callback

    def report_error(self, exc: BaseException) -> None:
        if self._on_error is None:
            logger.error(f"Unhandled error on pool '{self.connection_id}': {exc}")
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception(f"Pool error callback failed for '{self.connection_id}'")

    async def acquire(self) -> Handle:
        """
        Check a connection out of the pool.

        Raises:
            PoolClosedError: If the pool is closed, including when it was
                closed while this call was waiting for a free connection
        """
        if self._closed:
            raise PoolClosedError(self.connection_id)
        raw = await self._acquire_raw()
        if self._closed:
            await self._release_raw(raw)
            raise PoolClosedError(self.connection_id)
        return Handle(self, raw)

    async def release(self, handle: Handle) -> None:
        await self._release_raw(handle.raw)

    async def close(self) -> None:
        """Close the pool. If closing fails the pool reopens for use and close may be retried."""
        if self._closed:
            return
        # Waiters check this flag once they get a connection or the lock.
        self._closed = True
        try:
            await self._close()
        except BaseException:
            self._closed = False
            raise
        logger.debug(f"Closed {self.profile.name} pool for '{self.connection_id}'")

    @abstractmethod
    async def run(self, raw: Any, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
        """Execute native SQL on a raw driver connection."""

    @abstractmethod
    async def _acquire_raw(self) -> Any:
        ...

    @abstractmethod
    async def _release_raw(self, raw: Any) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    def stats(self) -> Dict[str, Any]:
        """Current occupancy, for diagnostics."""


def _pg_shape_error(exc: BaseException) -> bool:
    # Client-side ProgrammingErrors (no result to fetch) carry no SQLSTATE.
    return isinstance(exc, psycopg.ProgrammingError) and exc.sqlstate is None


class PostgresPool(Pool):
    """PostgreSQL pool on psycopg_pool's AsyncConnectionPool."""

    engine_name = "postgresql"
    driver_errors = (psycopg.Error,)

    def __init__(self, credentials: DatabaseCredentials, profile: PoolProfile):
        super().__init__(credentials, profile)
        self._opened = False
        self._open_lock = asyncio.Lock()
        self._pool = AsyncConnectionPool(
            kwargs=self._connect_kwargs(),
            min_size=0,
            max_size=profile.max_size,
            max_idle=profile.idle_timeout,
            timeout=profile.acquire_timeout,
            reconnect_failed=self._on_reconnect_failed,
            check=AsyncConnectionPool.check_connection,
            name=f"smartdb-{credentials.id}",
            open=False,
        )

    def _connect_kwargs(self) -> dict:
        """Build psycopg connection kwargs without embedding secrets in a DSN string."""
        creds = self.credentials
        kwargs = {
            "host": creds.host,
            "port": creds.port or 5432,
            "dbname": creds.database,
            "user": creds.username,
            "password": creds.password,
            # libpq only takes whole seconds
            "connect_timeout": max(1, math.ceil(self.profile.connect_timeout)),
            "autocommit": True,
        }
        if self.profile.statement_timeout:
            kwargs["options"] = f"-c statement_timeout={self.profile.statement_timeout * 1000}"
        return kwargs

    def _on_reconnect_failed(self, pool: AsyncConnectionPool) -> None:
        self.report_error(
            psycopg.OperationalError(f"Pool '{pool.name}' could not reconnect to the server")
        )

    async def _acquire_raw(self) -> psycopg.AsyncConnection:
        if not self._opened:
            async with self._open_lock:
                if self._closed:
                    raise PoolClosedError(self.connection_id)
                if not self._opened:
                    await self._pool.open(wait=False)
                    self._opened = True
        try:
            return await self._pool.getconn()
        except PoolClosed as e:
            raise PoolClosedError(self.connection_id) from e
        except PoolTimeout as e:
            await self._diagnose(e)
            raise

    async def _diagnose(self, timeout_error: PoolTimeout) -> None:
        """
        Surface the real connect failure behind a pool timeout.

        The pool retries failed connects in the background and only ever
        reports a timeout; one direct attempt recovers the driver's error.
        A pool that is merely saturated connects fine and keeps the timeout.
        """
        try:
            conn = await psycopg.AsyncConnection.connect(**self._connect_kwargs())
        except psycopg.Error as e:
            raise e from timeout_error
        await conn.close()

    async def _release_raw(self, raw: psycopg.AsyncConnection) -> None:
        await self._pool.putconn(raw)

    async def _close(self) -> None:
        async with self._open_lock:
            if self._opened:
                await self._pool.close()

    async def run(self, raw: psycopg.AsyncConnection, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
        async with raw.cursor() as cur:
            await cur.execute(sql, params)
            return await read_cursor(cur, _pg_shape_error)

    def stats(self) -> Dict[str, Any]:
        pool_stats = self._pool.get_stats() if self._opened else {}
        return {
            "engine": self.engine_name,
            "max_size": self.profile.max_size,
            "size": pool_stats.get("pool_size", 0),
            "in_use": pool_stats.get("pool_size", 0) - pool_stats.get("pool_available", 0),
        }


class MySQLPool(Pool):
    """MySQL pool on aiomysql."""

    engine_name = "mysql"
    driver_errors = (mysql_errors.MySQLError,)

    def __init__(self, credentials: DatabaseCredentials, profile: PoolProfile):
        super().__init__(credentials, profile)
        self._pool: Optional[aiomysql.Pool] = None
        self._open_lock = asyncio.Lock()

    def _connect_kwargs(self) -> dict:
        creds = self.credentials
        kwargs = {
            "host": creds.host,
            "port": creds.port or 3306,
            "user": creds.username,
            "password": creds.password or "",
            "db": creds.database,  # aiomysql expects "db"
            "connect_timeout": self.profile.connect_timeout,
            "autocommit": True,
            "charset": "utf8mb4",
        }
        if self.profile.statement_timeout:
            kwargs["init_command"] = (
                f"SET SESSION max_execution_time = {self.profile.statement_timeout * 1000}"
            )
        return kwargs

    async def _ensure_pool(self) -> aiomysql.Pool:
        if self._pool is None:
            async with self._open_lock:
                if self._closed:
                    raise PoolClosedError(self.connection_id)
                if self._pool is None:
                    self._pool = await aiomysql.create_pool(
                        minsize=0,
                        maxsize=self.profile.max_size,
                        # aiomysql recycles by time since last use
                        pool_recycle=int(self.profile.idle_timeout),
                        **self._connect_kwargs(),
                    )
        return self._pool

    async def _acquire_raw(self) -> Any:
        pool = await self._ensure_pool()
        timeout = self.profile.acquire_timeout
        try:
            # aiomysql doesn't directly support timeout in acquire
            return await asyncio.wait_for(pool.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Timed out waiting for MySQL connection after {timeout}s") from e
        except RuntimeError as e:
            # aiomysql refuses to hand out connections once closing has begun
            if self._closed:
                raise PoolClosedError(self.connection_id) from e
            raise

    async def _release_raw(self, raw: Any) -> None:
        if self._pool is not None:
            self._pool.release(raw)
        else:
            raw.close()

    async def _close(self) -> None:
        async with self._open_lock:
            if self._pool is not None:
                self._pool.close()
                await self._pool.wait_closed()
                self._pool = None

    async def run(self, raw: Any, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
        async with raw.cursor() as cur:
            await cur.execute(sql, params)
            return await read_cursor(cur)

    def stats(self) -> Dict[str, Any]:
        pool = self._pool
        return {
            "engine": self.engine_name,
            "max_size": self.profile.max_size,
            "size": pool.size if pool else 0,
            "in_use": pool.size - pool.freesize if pool else 0,
        }


class SQLitePool(Pool):
    """
    SQLite "pool" around a single aiosqlite connection.

    SQLite has no server to pool connections against, so one connection per
    file is shared and callers take turns through a lock.
    """

    engine_name = "sqlite"
    driver_errors = (sqlite3.Error,)

    def __init__(self, credentials: DatabaseCredentials, profile: PoolProfile):
        super().__init__(credentials, profile)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._in_use = False

    async def _acquire_raw(self) -> aiosqlite.Connection:
        timeout = self.profile.acquire_timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Timed out waiting for SQLite connection after {timeout}s") from e
        try:
            # The pool may have been closed while this caller waited its turn.
            if self._closed:
                raise PoolClosedError(self.connection_id)
            if self._conn is None:
                self._conn = await aiosqlite.connect(
                    self.credentials.database,
                    timeout=self.profile.connect_timeout,
                    isolation_level=None,
                )
        except BaseException:
            self._lock.release()
            raise
        self._in_use = True
        return self._conn

    async def _release_raw(self, raw: aiosqlite.Connection) -> None:
        if raw is not self._conn and self._conn is not None:
            raise ValueError("Released connection is not the same as the managed connection")
        self._in_use = False
        self._lock.release()

    async def _close(self) -> None:
        """Close the file connection once the current holder and earlier waiters are done."""
        timeout = self.profile.acquire_timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"SQLite connection for '{self.connection_id}' still in use after {timeout}s; "
                "closing it anyway"
            )
            locked = False
        else:
            locked = True
        try:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await conn.close()
        finally:
            if locked:
                self._lock.release()

    async def run(self, raw: aiosqlite.Connection, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
        async with raw.execute(sql, params or ()) as cur:
            return await read_cursor(cur)

    def stats(self) -> Dict[str, Any]:
        return {
            "engine": self.engine_name,
            "max_size": 1,
            "size": 1 if self._conn is not None else 0,
            "in_use": 1 if self._in_use else 0,
        }

"""End-to-end tests against a real SQLite file through ConnectionManager."""

import asyncio

import pytest
import pytest_asyncio

from fakes import make_credentials
from smartdb.core.errors import ConnectionNotFoundError, QueryExecutionError
from smartdb.db.manager import ConnectionManager


@pytest_asyncio.fixture
async def sqlite_manager(tmp_path):
    manager = ConnectionManager()
    credentials = make_credentials(
        "lite", type="sqlite", database=str(tmp_path / "app.db"), name="Lite"
    )
    result = await manager.add_connection(credentials)
    assert result.success, result.message
    yield manager
    await manager.close_all_connections()


@pytest_asyncio.fixture
async def users_table(sqlite_manager):
    await sqlite_manager.query(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL)",
        connection_id="lite",
    )
    for user_id, email in [(1, "a@example.com"), (2, "b@example.com")]:
        await sqlite_manager.query(
            "INSERT INTO users (id, email) VALUES ($1, $2)", [user_id, email], "lite"
        )
    return sqlite_manager


class TestSQLiteQueries:
    """Statement execution on SQLite."""

    @pytest.mark.asyncio
    async def test_insert_reports_affected_rows(self, users_table):
        result = await users_table.query(
            "INSERT INTO users (id, email) VALUES ($1, $2)", [3, "c@example.com"], "lite"
        )

        assert result.rows == []
        assert result.columns == []
        assert result.row_count == 1

    @pytest.mark.asyncio
    async def test_select_with_reordered_params(self, users_table):
        result = await users_table.query(
            "SELECT id, email FROM users WHERE email = $2 OR id = $1 ORDER BY id",
            [1, "b@example.com"],
            "lite",
        )

        assert result.columns == ["id", "email"]
        assert result.rows == [
            {"id": 1, "email": "a@example.com"},
            {"id": 2, "email": "b@example.com"},
        ]
        assert result.row_count == 2

    @pytest.mark.asyncio
    async def test_syntax_error_leaves_connection_usable(self, users_table):
        with pytest.raises(QueryExecutionError) as exc_info:
            await users_table.query("SELEC 1", connection_id="lite")
        assert "syntax error" in exc_info.value.message

        result = await users_table.query("SELECT 1 AS one", connection_id="lite")
        assert result.rows == [{"one": 1}]

    @pytest.mark.asyncio
    async def test_constraint_violation(self, users_table):
        with pytest.raises(QueryExecutionError) as exc_info:
            await users_table.query(
                "INSERT INTO users (id, email) VALUES ($1, $2)", [1, "dup@example.com"], "lite"
            )
        assert "UNIQUE constraint failed" in exc_info.value.message


class TestSQLiteIntrospection:
    """Table listing, existence checks and schema on SQLite."""

    @pytest.mark.asyncio
    async def test_table_exists_ignores_case(self, users_table):
        assert await users_table.table_exists("USERS", "lite") is True
        assert await users_table.table_exists("orders", "lite") is False

    @pytest.mark.asyncio
    async def test_list_tables(self, users_table):
        assert await users_table.list_tables("lite") == ["users"]

    @pytest.mark.asyncio
    async def test_schema(self, users_table):
        schema = await users_table.get_database_schema("lite")

        assert [table["table_name"] for table in schema] == ["users"]
        columns = {column["column_name"]: column for column in schema[0]["columns"]}
        assert columns["id"]["data_type"] == "INTEGER"
        assert columns["email"]["is_nullable"] == "NO"

    @pytest.mark.asyncio
    async def test_table_data_limit(self, users_table):
        result = await users_table.get_table_data("lite", "users", limit=1)

        assert result.row_count == 1
        assert result.rows[0]["email"] == "a@example.com"


class TestSQLiteLifecycle:
    """Registration and teardown with a real pool."""

    @pytest.mark.asyncio
    async def test_session_touched_by_queries(self, sqlite_manager):
        before = sqlite_manager.get_session("lite").last_used

        await sqlite_manager.query("SELECT 1", connection_id="lite")

        assert sqlite_manager.get_session("lite").last_used >= before

    @pytest.mark.asyncio
    async def test_remove_then_query(self, sqlite_manager):
        assert await sqlite_manager.remove_connection("lite") is True

        with pytest.raises(ConnectionNotFoundError):
            await sqlite_manager.query("SELECT 1", connection_id="lite")

    @pytest.mark.asyncio
    async def test_close_all(self, sqlite_manager):
        await sqlite_manager.close_all_connections()

        assert sqlite_manager.get_available_databases() == []
        assert sqlite_manager.pool_stats() == {}


class TestSQLiteConcurrency:
    """Callers sharing the single SQLite connection."""

    @pytest.mark.asyncio
    async def test_concurrent_queries_take_turns(self, sqlite_manager):
        results = await asyncio.gather(
            *(sqlite_manager.query("SELECT $1 AS n", [n], "lite") for n in range(20))
        )

        assert [r.rows for r in results] == [[{"n": n}] for n in range(20)]
        assert sqlite_manager.pool_stats()["lite"]["in_use"] == 0

    @pytest.mark.asyncio
    async def test_removed_while_waiting_for_connection(self, sqlite_manager):
        handle = await sqlite_manager.get_client("lite")
        pool = handle.pool
        waiter = asyncio.create_task(sqlite_manager.query("SELECT 1", connection_id="lite"))
        await asyncio.sleep(0.05)

        remover = asyncio.create_task(sqlite_manager.remove_connection("lite"))
        await asyncio.sleep(0.05)
        assert not remover.done()

        await handle.release()

        assert await remover is True
        with pytest.raises(ConnectionNotFoundError):
            await waiter
        assert pool.closed is True
        assert pool.stats()["size"] == 0
        assert sqlite_manager.pool_stats() == {}

"""Integration tests for the database management endpoints."""

import errno

import httpx
import pytest

from smartdb.core.errors import CONNECTION_ERROR_MESSAGES, CONNECTION_REFUSED, ErrorCode
from smartdb.db.engines import POSTGRESQL
from smartdb.db.models import LOCAL_DB_ID
from smartdb.db.results import QueryResult

POSTGRES_BODY = {
    "id": "test-db",
    "name": "Test DB",
    "type": "postgresql",
    "host": "localhost",
    "port": 5432,
    "database": "testdb",
    "username": "u",
    "password": "p",
}


def refuse_probes(pool):
    if pool.profile.name == "probe":
        pool.acquire_error = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")


class TestListDatabases:
    """Tests for GET /databases."""

    @pytest.mark.asyncio
    async def test_lists_local_database(self, async_client: httpx.AsyncClient):
        response = await async_client.get("/api/v1/databases")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert len(data["databases"]) == 1
        local = data["databases"][0]
        assert local["id"] == LOCAL_DB_ID
        assert local["name"] == "pg-db (Local)"
        assert local["isLocal"] is True
        assert "lastUsed" in local
        assert "username" not in local
        assert "password" not in local


class TestTestDatabase:
    """Tests for POST /databases/test."""

    @pytest.mark.asyncio
    async def test_success(self, async_client: httpx.AsyncClient):
        response = await async_client.post("/api/v1/databases/test", json=POSTGRES_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Successfully connected to testdb"
        assert data["connectionId"] == "test-db"

    @pytest.mark.asyncio
    async def test_failure_returns_400(self, async_client: httpx.AsyncClient, pool_recorder):
        pool_recorder.on_create = refuse_probes

        response = await async_client.post("/api/v1/databases/test", json=POSTGRES_BODY)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["message"] == CONNECTION_ERROR_MESSAGES[CONNECTION_REFUSED]

    @pytest.mark.asyncio
    async def test_missing_network_fields(self, async_client: httpx.AsyncClient):
        body = {"type": "mysql", "database": "app", "host": "localhost"}

        response = await async_client.post("/api/v1/databases/test", json=body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_sqlite_needs_only_a_path(self, async_client: httpx.AsyncClient):
        body = {"type": "sqlite", "database": "/tmp/app.db"}

        response = await async_client.post("/api/v1/databases/test", json=body)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_type(self, async_client: httpx.AsyncClient):
        response = await async_client.post(
            "/api/v1/databases/test", json={**POSTGRES_BODY, "type": "oracle"}
        )

        assert response.status_code == 422


class TestAddDatabase:
    """Tests for POST /databases."""

    @pytest.mark.asyncio
    async def test_add(self, async_client: httpx.AsyncClient):
        response = await async_client.post("/api/v1/databases", json=POSTGRES_BODY)

        assert response.status_code == 201
        assert response.json() == {
            "success": True,
            "message": "Connected to Test DB",
            "connectionId": "test-db",
        }
        listing = (await async_client.get("/api/v1/databases")).json()
        assert [db["id"] for db in listing["databases"]] == [LOCAL_DB_ID, "test-db"]

    @pytest.mark.asyncio
    async def test_duplicate_id(self, async_client: httpx.AsyncClient, pool_recorder):
        await async_client.post("/api/v1/databases", json=POSTGRES_BODY)
        pools_before = len(pool_recorder.pools)

        response = await async_client.post("/api/v1/databases", json=POSTGRES_BODY)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorCode.DB_ALREADY_EXISTS
        assert len(pool_recorder.pools) == pools_before

    @pytest.mark.asyncio
    async def test_local_id_is_taken(self, async_client: httpx.AsyncClient):
        response = await async_client.post(
            "/api/v1/databases", json={**POSTGRES_BODY, "id": LOCAL_DB_ID}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_failed_test_registers_nothing(self, async_client: httpx.AsyncClient, pool_recorder):
        pool_recorder.on_create = refuse_probes

        response = await async_client.post("/api/v1/databases", json=POSTGRES_BODY)

        assert response.status_code == 400
        assert response.json()["message"].startswith("Connection refused")
        listing = (await async_client.get("/api/v1/databases")).json()
        assert len(listing["databases"]) == 1

    @pytest.mark.asyncio
    async def test_id_and_name_required(self, async_client: httpx.AsyncClient):
        body = {k: v for k, v in POSTGRES_BODY.items() if k != "id"}

        response = await async_client.post("/api/v1/databases", json=body)

        assert response.status_code == 422


class TestRemoveDatabase:
    """Tests for DELETE /databases/{id}."""

    @pytest.mark.asyncio
    async def test_remove(self, async_client: httpx.AsyncClient):
        await async_client.post("/api/v1/databases", json=POSTGRES_BODY)

        response = await async_client.delete("/api/v1/databases/test-db")

        assert response.status_code == 200
        assert response.json()["success"] is True
        listing = (await async_client.get("/api/v1/databases")).json()
        assert len(listing["databases"]) == 1

    @pytest.mark.asyncio
    async def test_local_is_protected(self, async_client: httpx.AsyncClient):
        response = await async_client.delete(f"/api/v1/databases/{LOCAL_DB_ID}")

        assert response.status_code == 409
        assert response.json()["message"] == "Cannot remove local database connection"

    @pytest.mark.asyncio
    async def test_unknown(self, async_client: httpx.AsyncClient):
        response = await async_client.delete("/api/v1/databases/missing")

        assert response.status_code == 404


class TestSchemaAndData:
    """Tests for schema introspection and table browsing."""

    @pytest.mark.asyncio
    async def test_schema(self, async_client: httpx.AsyncClient, local_pool):
        def respond(sql, params):
            if sql == POSTGRESQL.list_tables_sql:
                return QueryResult(rows=[{"table_name": "users"}], columns=["table_name"], row_count=1)
            column = {
                "column_name": "email",
                "data_type": "text",
                "is_nullable": "YES",
                "column_default": None,
            }
            return QueryResult(rows=[column], columns=list(column), row_count=1)

        local_pool.responder = respond

        response = await async_client.get(f"/api/v1/databases/{LOCAL_DB_ID}/schema")

        assert response.status_code == 200
        schema = response.json()["schema"]
        assert schema[0]["tableName"] == "users"
        assert schema[0]["columns"][0]["column_name"] == "email"

    @pytest.mark.asyncio
    async def test_schema_unknown_connection(self, async_client: httpx.AsyncClient):
        response = await async_client.get("/api/v1/databases/missing/schema")

        assert response.status_code == 404
        assert "pg-db" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_table_data(self, async_client: httpx.AsyncClient, local_pool):
        local_pool.result = QueryResult(
            rows=[{"id": 1, "email": "a@b.c"}], columns=["id", "email"], row_count=1
        )

        response = await async_client.get(
            f"/api/v1/databases/{LOCAL_DB_ID}/tables/users/data", params={"limit": 10}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["tableName"] == "users"
        assert data["columns"] == ["id", "email"]
        assert data["rowCount"] == 1
        assert local_pool.executed[-1] == ('SELECT * FROM "users" LIMIT 10', None)

    @pytest.mark.asyncio
    async def test_table_data_invalid_name(self, async_client: httpx.AsyncClient):
        response = await async_client.get(
            f"/api/v1/databases/{LOCAL_DB_ID}/tables/users-1/data"
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorCode.QUERY_VALIDATION_ERROR

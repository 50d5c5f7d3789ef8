"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartdb.api.v1 import router as v1_router
from smartdb.core.config import settings
from smartdb.core.errors import setup_error_handlers
from smartdb.core.middleware import MetricsMiddleware, RequestIDMiddleware
from smartdb.db.manager import ConnectionManager

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("smartdb").setLevel(settings.log_level.upper())


def create_app(manager: Optional[ConnectionManager] = None) -> FastAPI:
    """Create and configure FastAPI application.

    A prebuilt manager may be passed in; the lifespan then uses it instead of
    constructing one.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting SmartDB backend...")
        settings.warn_if_insecure()
        connection_manager = manager or ConnectionManager()
        app.state.connection_manager = connection_manager
        await connection_manager.initialize_local_database()
        try:
            yield
        finally:
            logger.info("Shutting down SmartDB backend...")
            await connection_manager.close_all_connections()

    app = FastAPI(
        title="SmartDB API",
        description="""
Multi-database connection manager backend API.

## Features
- **Databases**: Register, test, list and remove PostgreSQL, MySQL and SQLite connections
- **Schema**: Table listing, column introspection and table browsing
- **Queries**: Execute SQL with `$1`-style parameters on any registered connection

## Error Codes
- `DB_UNSUPPORTED_TYPE`, `DB_CONNECT_FAILED`: Connection setup
- `DB_NOT_FOUND`, `DB_PROTECTED`, `DB_ALREADY_EXISTS`: Registry operations
- `QUERY_VALIDATION_ERROR`, `QUERY_EXECUTION_ERROR`: Query execution
        """.strip(),
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.environment == "development" else None,
        redoc_url="/api/redoc" if settings.environment == "development" else None,
        openapi_tags=[
            {"name": "health", "description": "Health checks and metrics"},
            {"name": "databases", "description": "Connection registry and schema introspection"},
            {"name": "queries", "description": "SQL execution"},
        ],
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Metrics middleware (collect metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Request ID middleware (added last so it runs first on requests)
    app.add_middleware(RequestIDMiddleware)

    # Error handlers
    setup_error_handlers(app)

    # API routes
    app.include_router(v1_router, prefix="/api/v1")

    return app


configure_logging()
app = create_app()

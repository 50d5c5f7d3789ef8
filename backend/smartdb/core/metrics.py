"""Prometheus metrics collection for observability."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    REGISTRY,
)

# HTTP Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Query Execution Metrics
query_executions_total = Counter(
    "query_executions_total",
    "Total number of query executions",
    ["engine", "status"],
)

db_query_duration_seconds = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    ["engine"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 30.0],
)

# Database Connection Metrics
db_connection_attempts_total = Counter(
    "db_connection_attempts_total",
    "Total number of database connection tests",
    ["status"],
)

registered_connections = Gauge(
    "registered_connections",
    "Number of database connections in the registry",
)

pool_acquire_failures_total = Counter(
    "pool_acquire_failures_total",
    "Total number of failed pool acquisitions",
    ["engine"],
)

# Error Metrics
errors_total = Counter(
    "errors_total",
    "Total number of errors",
    ["error_code", "error_category"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_query(engine: str, status: str, duration: float):
        """Record one statement executed through the connection manager, by engine type."""
        query_executions_total.labels(engine=engine, status=status).inc()
        db_query_duration_seconds.labels(engine=engine).observe(duration)

    @staticmethod
    def record_db_connection_attempt(status: str):
        """Record a connection test outcome."""
        db_connection_attempts_total.labels(status=status).inc()

    @staticmethod
    def set_registered_connections(count: int):
        """Record the current registry size."""
        registered_connections.set(count)

    @staticmethod
    def record_pool_acquire_failure(engine: str):
        """Record a failed handle acquisition."""
        pool_acquire_failures_total.labels(engine=engine).inc()

    @staticmethod
    def record_error(error_code: str, error_category: str):
        """Record error occurrence."""
        errors_total.labels(error_code=error_code, error_category=error_category).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest(REGISTRY)


# Global instance
metrics = MetricsCollector()

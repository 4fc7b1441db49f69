import logging
import time

from flask import Flask, Response, g, request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

CART_OPERATIONS = {
    ("POST", "/api/cart/items"): "add",
    ("PUT", "/api/cart/items/<int:product_id>"): "update",
    ("DELETE", "/api/cart/items/<int:product_id>"): "remove",
    ("DELETE", "/api/cart"): "clear",
}


class Metrics:
    """
    Prometheus metrics for the storefront.

    Each instance owns its registry so several apps (tests) can coexist in
    one process without duplicate-timeseries errors.
    """

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        # HTTP metrics
        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "status_code"],
            buckets=(0.1, 0.5, 1, 2, 5),
            registry=self.registry,
        )
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.active_connections = Gauge(
            "active_connections",
            "Number of requests currently being served",
            registry=self.registry,
        )
        self.db_connection_status = Gauge(
            "db_connection_status",
            "Database connection status (1 = connected, 0 = disconnected)",
            registry=self.registry,
        )

        # Business metrics
        self.user_registrations_total = Counter(
            "user_registrations_total",
            "Total number of user registrations",
            registry=self.registry,
        )
        self.product_views_total = Counter(
            "product_views_total",
            "Total number of product views",
            registry=self.registry,
        )
        self.orders_total = Counter(
            "orders_total",
            "Total number of orders",
            ["status"],  # Labels: 'pending', 'cancelled', ...
            registry=self.registry,
        )
        self.cart_operations_total = Counter(
            "cart_operations_total",
            "Total number of cart operations",
            ["operation"],  # Labels: 'add', 'update', 'remove', 'clear'
            registry=self.registry,
        )

        # Collection counts
        self.users_total = Gauge("users_total", "Total number of users in the database", registry=self.registry)
        self.products_total = Gauge("products_total", "Total number of products in the database", registry=self.registry)

        self.db_connection_status.set(0)

    def update_db_connection_status(self, connected: bool) -> None:
        self.db_connection_status.set(1 if connected else 0)

    def observe_request(self, method: str, route: str, status_code: int, duration: float) -> None:
        self.http_request_duration_seconds.labels(method, route, str(status_code)).observe(duration)
        self.http_requests_total.labels(method, route, str(status_code)).inc()

    def increment_user_registrations(self) -> None:
        self.user_registrations_total.inc()

    def increment_product_views(self) -> None:
        self.product_views_total.inc()

    def increment_orders(self, status: str = "pending") -> None:
        self.orders_total.labels(status).inc()

    def increment_cart_operations(self, operation: str) -> None:
        self.cart_operations_total.labels(operation).inc()

    def update_collection_counts(self, session) -> None:
        """Refresh user/product gauges; zeroes them when the query fails."""
        from storefront.models import Product, User

        try:
            self.users_total.set(session.scalar(select(func.count()).select_from(User)) or 0)
            self.products_total.set(session.scalar(select(func.count()).select_from(Product)) or 0)
        except Exception as exc:
            logger.error(f"Error updating collection counts: {exc}")
            self.users_total.set(0)
            self.products_total.set(0)
            raise

    def export(self) -> bytes:
        return generate_latest(self.registry)

    def init_app(self, app: Flask) -> None:
        """Install request instrumentation and the /metrics endpoint."""
        app.extensions["metrics"] = self

        @app.before_request
        def _start_timer():
            g._metrics_start = time.perf_counter()
            g._metrics_active = True
            self.active_connections.inc()

        @app.after_request
        def _record(response):
            start = g.pop("_metrics_start", None)
            if start is None:
                return response
            route = request.url_rule.rule if request.url_rule else request.path
            self.observe_request(request.method, route, response.status_code, time.perf_counter() - start)
            if 200 <= response.status_code < 300:
                operation = CART_OPERATIONS.get((request.method, route))
                if operation:
                    self.increment_cart_operations(operation)
            return response

        @app.teardown_request
        def _release(exc):
            # Runs even when the view raised and after_request was skipped
            if g.pop("_metrics_active", False):
                self.active_connections.dec()

        @app.get("/metrics")
        def metrics_endpoint():
            connector = app.extensions.get("db_connector")
            if connector is not None and connector.is_connected:
                try:
                    with connector.session() as session:
                        self.update_collection_counts(session)
                except SQLAlchemyError:
                    # gauges were zeroed; still export the rest
                    pass
            return Response(self.export(), content_type=CONTENT_TYPE_LATEST)

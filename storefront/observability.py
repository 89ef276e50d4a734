"""Logging, Prometheus metrics and health reporting for the storefront."""
import logging
import os
import socket
import time
from typing import Optional

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from .config import Settings

SERVICE_NAME = "storefront-api"
VERSION = "1.0.0"

STARTED_AT = time.monotonic()


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level, logging.INFO)

    if settings.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.bind_contextvars(
        service=SERVICE_NAME,
        environment=settings.environment,
        hostname=socket.gethostname(),
        version=VERSION,
    )


class Metrics:
    """Process-scoped collectors on a private registry.

    One instance is created at startup and handed to route handlers through a
    dependency, so tests can build an isolated instance.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        r = self.registry

        ProcessCollector(registry=r)
        PlatformCollector(registry=r)
        GCCollector(registry=r)

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "status_code"],
            buckets=(0.1, 0.5, 1, 2, 5),
            registry=r,
        )
        self.http_requests = Counter(
            "http_requests_total", "Total number of HTTP requests",
            ["method", "route", "status_code"], registry=r,
        )
        self.auth_login = Counter("auth_login_total", "Total login attempts", ["status"], registry=r)
        self.auth_signup = Counter("auth_signup_total", "Total signup attempts", ["status"], registry=r)
        self.auth_failure = Counter(
            "auth_failure_total", "Total authentication failures", ["reason"], registry=r
        )
        self.product_view = Counter(
            "product_view_total", "Total product views", ["product_id", "category"], registry=r
        )
        self.search_query = Counter("search_query_total", "Total search queries", registry=r)
        self.cart_add = Counter(
            "cart_add_total", "Total items added to cart", ["product_id"], registry=r
        )
        self.cart_remove = Counter(
            "cart_remove_total", "Total items removed from cart", ["product_id"], registry=r
        )
        self.checkout_attempt = Counter(
            "checkout_attempt_total", "Total checkout attempts", ["status"], registry=r
        )
        self.checkout_success = Counter(
            "checkout_success_total", "Total successful checkouts", registry=r
        )
        self.order_created = Counter(
            "order_created_total", "Total orders created", ["status"], registry=r
        )
        self.order_failed = Counter("order_failed_total", "Total failed orders", ["reason"], registry=r)
        self.admin_action = Counter(
            "admin_action_total", "Total admin actions", ["action", "resource"], registry=r
        )
        self.database_connection_status = Gauge(
            "database_connection_status",
            "Database connection status (1 = connected, 0 = disconnected)",
            registry=r,
        )
        self.cart_size = Histogram(
            "cart_size_distribution", "Distribution of cart sizes",
            buckets=(1, 5, 10, 20, 50), registry=r,
        )
        self.order_value = Histogram(
            "order_value_distribution", "Distribution of order values in dollars",
            buckets=(10, 50, 100, 500, 1000, 5000), registry=r,
        )

    def observe_request(self, method: str, route: str, status_code: int, seconds: float) -> None:
        labels = {"method": method, "route": route, "status_code": str(status_code)}
        self.http_requests.labels(**labels).inc()
        self.http_request_duration.labels(**labels).observe(seconds)

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def resident_memory_bytes(self) -> Optional[float]:
        """Current RSS from the process collector; None where it has no /proc to read."""
        return self.registry.get_sample_value("process_resident_memory_bytes")

    content_type = CONTENT_TYPE_LATEST


def health_report(settings: Settings, metrics: Metrics) -> dict:
    rss = metrics.resident_memory_bytes()
    try:
        load = list(os.getloadavg())
    except (AttributeError, OSError):
        # getloadavg is missing on Windows
        load = []
    return {
        "status": "OK",
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "timestamp": int(time.time() * 1000),
        "environment": settings.environment,
        "memory": {"rss": round(rss / (1024 * 1024), 1) if rss is not None else None},
        "cpu": {"cores": os.cpu_count(), "loadAverage": load},
    }

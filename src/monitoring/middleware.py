"""
Flask middleware for request logging and metrics.

Provides:
- Request ID tracking (X-Request-ID in and out)
- Request timing and http_* metrics
- Structured logging of every response
- The ``timed`` decorator used around ledger commits
"""

import time
import uuid
from collections.abc import Callable
from functools import wraps

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import metrics

logger = get_logger("passbook.request")


def setup_request_logging(app: Flask) -> None:
    """Attach request ID, timing and logging hooks to ``app``."""

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_request_context(request_id=g.request_id, method=request.method, path=request.path)
        metrics.increment_gauge("http_requests_active")

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request(response.status_code)
        response.headers["X-Request-ID"] = g.get("request_id", "unknown")
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        clear_request_context()
        metrics.decrement_gauge("http_requests_active")
        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={"request_id": g.get("request_id", "unknown"), "path": request.path},
            )


def _record_request(status_code: int) -> None:
    duration_ms = 0.0
    if "start_time" in g:
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "path": path, "status": str(status_code)},
    )
    metrics.timing(
        "http_request_duration_ms", duration_ms, labels={"method": request.method, "path": path}
    )

    if status_code >= 500:
        log = logger.error
    elif status_code >= 400:
        log = logger.warning
    else:
        log = logger.info
    log(
        f"{request.method} {request.path} -> {status_code}",
        extra={"status_code": status_code, "duration_ms": round(duration_ms, 2)},
    )


def normalize_path(path: str) -> str:
    """
    Replace record addresses and numeric IDs with placeholders so metric
    labels stay low-cardinality.
    """
    normalized = []
    for part in path.strip("/").split("/"):
        if part.isdigit():
            normalized.append(":id")
        elif len(part) == 64 and all(c in "0123456789abcdef" for c in part.lower()):
            normalized.append(":address")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


def timed(metric_name: str | None = None):
    """
    Decorator recording a function's execution time as a histogram.

    Usage:
        @timed("ledger_commit_ms")
        def commit(self):
            ...
    """

    def decorator(func: Callable) -> Callable:
        name = metric_name or f"function_{func.__name__}_ms"

        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(name):
                return func(*args, **kwargs)

        return wrapper

    return decorator

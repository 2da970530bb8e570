"""
Monitoring and metrics infrastructure for PassBook.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output and address shortening
- Request timing middleware
- The ``timed`` decorator

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("passes_sold_total", labels={"asset": "native"})
    logger = get_logger(__name__)
    logger.info("Pass sold", extra={"pass_book": address})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging, timed

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
    "timed",
]

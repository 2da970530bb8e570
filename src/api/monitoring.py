"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
- /health/live: Kubernetes liveness probe
- /health/ready: Kubernetes readiness probe
"""

import time

from flask import Blueprint, Response, jsonify

from api.state import get_processor
from ledger import RECORD_KINDS
from monitoring import metrics
from storage import StorageError

monitoring_bp = Blueprint("monitoring", __name__)

# Track startup time
_startup_time = time.time()


@monitoring_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    _update_dynamic_metrics()
    return Response(metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@monitoring_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route("/health", methods=["GET"])
def health():
    """Service status and storage check."""
    return jsonify({
        "status": "healthy",
        "service": "PassBook API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "storage": _check_storage(),
        },
    })


@monitoring_bp.route("/health/live", methods=["GET"])
def liveness():
    """Kubernetes liveness probe. Fails only if the process must restart."""
    return jsonify({"status": "alive"})


@monitoring_bp.route("/health/ready", methods=["GET"])
def readiness():
    """Kubernetes readiness probe. Storage must be reachable."""
    storage = _check_storage()
    if not storage["available"]:
        return jsonify({"status": "not_ready", "issues": [f"storage: {storage['status']}"]}), 503
    return jsonify({"status": "ready"})


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("passbook")
    except PackageNotFoundError:
        return "0.1.0"


def _check_storage() -> dict:
    try:
        storage = get_processor().ledger.storage
        available = storage.is_available()
        return {
            "status": "ok" if available else "degraded",
            "available": available,
            "backend": storage.__class__.__name__,
        }
    except StorageError as e:
        return {"status": "error", "available": False, "error": str(e)}


def _update_dynamic_metrics():
    """Refresh record-count gauges before export."""
    storage = get_processor().ledger.storage
    available = storage.is_available()
    metrics.set_gauge("storage_available", 1 if available else 0)
    if not available:
        return
    for kind in RECORD_KINDS.values():
        metrics.set_gauge("ledger_records", storage.count(kind), labels={"kind": kind})

"""
Shared utilities for the PassBook API.

Authentication, payload validation, signer extraction and the mapping of
engine errors to HTTP responses.
"""

import os
import secrets
from functools import wraps
from typing import Any

from flask import jsonify, request

from authorization import AuthContext
from errors import ErrorCategory, PassBookError
from monitoring import get_logger
from storage import StorageConflictError, StorageError
from token_transfer import TransferError

logger = get_logger(__name__)

# ============================================================
# Security Configuration
# ============================================================

API_KEY = os.getenv("PASSBOOK_API_KEY", None)
# SECURITY: Default to requiring authentication
API_KEY_REQUIRED = os.getenv("PASSBOOK_REQUIRE_AUTH", "true").lower() == "true"

# Header carrying identities verified by the upstream auth gateway
SIGNERS_HEADER = "X-Signers"

CATEGORY_STATUS = {
    ErrorCategory.PARAMETER: 400,
    ErrorCategory.VALIDATION: 403,
    ErrorCategory.STATE: 409,
    ErrorCategory.LIMIT: 409,
    ErrorCategory.ARITHMETIC: 422,
}


# ============================================================
# Validation Utilities
# ============================================================

def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple],
    optional_fields: dict[str, type | tuple] | None = None,
) -> tuple:
    """
    Validate a JSON payload against a simple schema.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data or data[field_name] is None:
            return False, f"Missing required field: {field_name}"
        if not _is_type(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, expected_type in (optional_fields or {}).items():
        value = data.get(field_name)
        if value is not None and not _is_type(value, expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    return True, None


def _is_type(value: Any, expected: type | tuple) -> bool:
    # JSON booleans must not pass as integers
    if isinstance(value, bool):
        expected_types = expected if isinstance(expected, tuple) else (expected,)
        return bool in expected_types
    return isinstance(value, expected)


def get_json_body() -> dict[str, Any]:
    """Request body as a dict; an empty or non-JSON body becomes {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def get_auth_context() -> AuthContext:
    return AuthContext.from_header(request.headers.get(SIGNERS_HEADER))


# ============================================================
# Error Responses
# ============================================================

def error_response(error: Exception):
    """Translate an engine, storage or transfer error into a JSON response."""
    if isinstance(error, PassBookError):
        return jsonify(error.to_dict()), CATEGORY_STATUS.get(error.category, 400)
    if isinstance(error, StorageConflictError):
        return jsonify({
            "error_type": "StorageConflictError",
            "message": str(error),
            "retryable": True,
        }), 409
    if isinstance(error, TransferError):
        return jsonify(error.to_dict()), 422
    if isinstance(error, StorageError):
        logger.error("Storage failure: %s", error)
        return jsonify({"error_type": "StorageError", "message": "Storage unavailable"}), 503
    if isinstance(error, TimeoutError):
        return jsonify({"error_type": "LockTimeout", "message": str(error), "retryable": True}), 503
    if isinstance(error, ValueError):
        return jsonify({"error": str(error)}), 400
    logger.exception("Unhandled error", exc_info=error)
    return jsonify({"error": "Internal server error"}), 500


def not_found(kind: str, key: str):
    return jsonify({"error": f"{kind} not found: {key}"}), 404


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not API_KEY_REQUIRED:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")

        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header"
            }), 401

        if not API_KEY:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set PASSBOOK_API_KEY environment variable"
            }), 503

        if not secrets.compare_digest(provided_key, API_KEY):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function

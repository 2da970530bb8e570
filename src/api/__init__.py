"""
PassBook API Package.

Flask blueprints exposing the PassBook engine over HTTP.

Blueprints:
- passbook: PassBooks, purchases, stores, memberships, payouts, instructions
- monitoring: metrics and health probes
"""

from dotenv import load_dotenv
from flask import Flask, jsonify

from api.monitoring import monitoring_bp
from api.passbook import passbook_bp
from api.state import get_processor, set_processor
from api.utils import error_response
from config import PassBookConfig, build_processor
from errors import PassBookError
from monitoring import configure_logging, get_logger, setup_request_logging
from processor import PassBookProcessor
from storage import StorageError
from token_transfer import TransferError

logger = get_logger(__name__)

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (passbook_bp, ""),
    (monitoring_bp, ""),
]

HANDLED_ERRORS = (PassBookError, StorageError, TransferError, TimeoutError, ValueError)


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(
    config: PassBookConfig | None = None,
    processor: PassBookProcessor | None = None,
) -> Flask:
    """
    Build the Flask app.

    Args:
        config: Settings (environment if None)
        processor: Pre-built processor, used by tests and embedders
    """
    config = config or PassBookConfig.from_env()
    set_processor(processor or build_processor(config))

    app = Flask(__name__)
    app.json.sort_keys = False

    register_blueprints(app)
    setup_request_logging(app)
    for error_type in HANDLED_ERRORS:
        app.register_error_handler(error_type, error_response)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    return app


def run_server() -> None:
    """Run the Flask development server."""
    load_dotenv()
    config = PassBookConfig.from_env()
    configure_logging(level=config.log_level, json_output=config.log_format == "json")
    app = create_app(config)

    storage = get_processor().ledger.storage
    logger.info(
        "PassBook API listening on http://%s:%d",
        config.host,
        config.port,
        extra={"storage": storage.__class__.__name__, "program_id": config.program_id},
    )
    app.run(host=config.host, port=config.port)

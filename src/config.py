"""
PassBook - Configuration

Runtime settings read from the environment, and the factory that wires
storage, locking, token service and processor together.

Environment Variables:
    PASSBOOK_PROGRAM_ID: Program identity mixed into every derived address
    STORAGE_BACKEND: memory, json or postgresql (default: memory)
    LEDGER_DATA_FILE: Path for the json backend (default: ledger_data.json)
    DATABASE_URL: PostgreSQL connection URL
    REDIS_URL: Enables distributed commit locks when set
    LOCK_TIMEOUT: Seconds to wait for commit locks (default: 10)
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LOG_FORMAT: json for structured output, anything else for console
    PASSBOOK_API_KEY: Key required in X-API-Key by the HTTP API
    PASSBOOK_REQUIRE_AUTH: false disables the API key check (default: true)
    HOST / PORT: HTTP bind address (default: 0.0.0.0:5000)
"""

import os
from dataclasses import dataclass

from ledger import DEFAULT_PROGRAM_ID, Ledger
from processor import PassBookProcessor
from scaling import LocalLockManager, RedisLockManager
from storage import get_storage_backend
from token_transfer import InMemoryTokenService, TokenTransferService


@dataclass
class PassBookConfig:
    """Configuration for a PassBook deployment."""

    program_id: str = DEFAULT_PROGRAM_ID

    # Storage
    storage_backend: str = "memory"
    data_file: str = "ledger_data.json"
    database_url: str = ""

    # Locking
    redis_url: str = ""
    lock_timeout: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # HTTP
    api_key: str = ""
    require_auth: bool = True
    host: str = "0.0.0.0"
    port: int = 5000

    @classmethod
    def from_env(cls) -> "PassBookConfig":
        """Create configuration from environment variables."""
        return cls(
            program_id=os.getenv("PASSBOOK_PROGRAM_ID", DEFAULT_PROGRAM_ID),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            data_file=os.getenv("LEDGER_DATA_FILE", "ledger_data.json"),
            database_url=os.getenv("DATABASE_URL", ""),
            redis_url=os.getenv("REDIS_URL", ""),
            lock_timeout=float(os.getenv("LOCK_TIMEOUT", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "console").lower(),
            api_key=os.getenv("PASSBOOK_API_KEY", ""),
            require_auth=os.getenv("PASSBOOK_REQUIRE_AUTH", "true").lower() == "true",
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "5000")),
        )

    def to_dict(self) -> dict:
        """Settings safe to expose, with secrets reduced to presence flags."""
        return {
            "program_id": self.program_id,
            "storage_backend": self.storage_backend,
            "database_configured": bool(self.database_url),
            "distributed_locking": bool(self.redis_url),
            "lock_timeout": self.lock_timeout,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "require_auth": self.require_auth,
            "api_key_configured": bool(self.api_key),
        }


def build_processor(
    config: PassBookConfig | None = None,
    token_service: TokenTransferService | None = None,
) -> PassBookProcessor:
    """Assemble a processor from ``config`` (environment if None)."""
    config = config or PassBookConfig.from_env()
    storage = get_storage_backend(
        backend_type=config.storage_backend,
        data_file=config.data_file,
        database_url=config.database_url or None,
    )
    lock_manager = RedisLockManager(config.redis_url) if config.redis_url else LocalLockManager()
    ledger = Ledger(
        storage,
        token_service or InMemoryTokenService(),
        program_id=config.program_id,
        lock_manager=lock_manager,
        lock_timeout=config.lock_timeout,
    )
    return PassBookProcessor(ledger)

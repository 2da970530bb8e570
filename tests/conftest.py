"""
Pytest configuration and shared fixtures for PassBook tests.

This module provides shared fixtures and test configuration including:
- A controllable clock
- Memory storage, in-memory token service and a ledger wired to them
- A processor plus factories for listings and funded wallets
- Flask app and client with test configuration
"""

import itertools
import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Set up test environment before any imports
os.environ["PASSBOOK_API_KEY"] = "test-api-key-12345"
os.environ["PASSBOOK_REQUIRE_AUTH"] = "false"

from addressing import NATIVE_MINT  # noqa: E402
from authorization import AuthContext  # noqa: E402
from instructions import InitPassBookArgs  # noqa: E402
from ledger import Ledger  # noqa: E402
from monitoring import metrics  # noqa: E402
from processor import PassBookProcessor  # noqa: E402
from records import Creator  # noqa: E402
from scaling import LocalLockManager  # noqa: E402
from storage import MemoryStorage  # noqa: E402
from token_transfer import InMemoryTokenService  # noqa: E402

PROGRAM_ID = "test-program"
START_TIME = 1_700_000_000
DAY = 86400

AUTHORITY = "authority-wallet"
CREATOR_A = "creator-a"
CREATOR_B = "creator-b"
MARKET = "market-operator"
REFERRER = "referrer-wallet"
BUYER = "buyer-wallet"
PRICE = 10_000_000


class FakeClock:
    """Callable clock returning unix seconds that tests move by hand."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def token_service():
    return InMemoryTokenService()


@pytest.fixture
def ledger(storage, token_service):
    return Ledger(
        storage,
        token_service,
        program_id=PROGRAM_ID,
        lock_manager=LocalLockManager(),
        lock_timeout=1.0,
    )


@pytest.fixture
def processor(ledger, clock):
    return PassBookProcessor(ledger, clock=clock)


@pytest.fixture
def fund(token_service):
    """Factory: give ``wallet`` a native balance (its account is the wallet itself)."""

    def _fund(wallet: str, amount: int = 100 * PRICE) -> str:
        if token_service.get_account(wallet) is None:
            token_service.create_account(wallet, wallet, NATIVE_MINT)
        token_service.mint_to(wallet, amount)
        return wallet

    return _fund


@pytest.fixture
def buyer(fund):
    return fund(BUYER)


@pytest.fixture
def make_init_args(token_service):
    """Factory: InitPassBookArgs with a fresh collectible mint held by the authority."""
    counter = itertools.count()

    def _make(**overrides) -> InitPassBookArgs:
        authority = overrides.get("authority", AUTHORITY)
        mint = overrides.pop("mint", f"collectible-{next(counter)}")
        source = overrides.pop("source_token_account", f"{mint}-holding")
        if token_service.get_account(source) is None:
            token_service.create_account(source, authority, mint, balance=1)

        fields = {
            "authority": authority,
            "mint": mint,
            "source_token_account": source,
            "name": "Gym Pass",
            "description": "Thirty days of gym access",
            "uri": "https://example.com/passes/gym.json",
            "price": PRICE,
            "creators": [Creator(CREATOR_A, 50), Creator(CREATOR_B, 50)],
            "access": 30,
        }
        fields.update(overrides)
        return InitPassBookArgs(**fields)

    return _make


@pytest.fixture
def listing(processor, make_init_args):
    """Factory: create a PassBook (activated unless told otherwise) and return its address."""

    def _listing(activate: bool = True, **overrides) -> str:
        args = make_init_args(**overrides)
        auth = AuthContext.of(args.authority)
        address = processor.init_pass_book(args, auth)
        if activate:
            processor.activate_pass_book(address, auth)
        return address

    return _listing


@pytest.fixture
def flask_app(processor):
    """Flask test app backed by the test processor."""
    from api import create_app
    from config import PassBookConfig

    app = create_app(PassBookConfig(program_id=PROGRAM_ID), processor=processor)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    """Create Flask test client."""
    return flask_app.test_client()


@pytest.fixture
def test_auth_headers():
    """Headers for authenticated requests."""
    return {
        "Content-Type": "application/json",
        "X-API-Key": "test-api-key-12345",
    }

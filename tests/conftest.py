"""
Shared fixtures: an in-memory store with the full manager stack and one
principal per role.
"""

from datetime import datetime, timezone, timedelta

import pytest

from teller_banking.accounts import AccountManager
from teller_banking.authorization import AuthorizationGate
from teller_banking.identity import Principal, Role
from teller_banking.storage import InMemoryStorage
from teller_banking.tokens import TokenService
from teller_banking.transactions import TransactionEngine
from teller_banking.users import UserManager


TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeClock:
    """Settable clock for token expiry tests"""

    def __init__(self, now=None):
        self.now = now or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    """Create in-memory storage for tests"""
    return InMemoryStorage()


@pytest.fixture
def token_service(clock):
    return TokenService(TEST_SECRET, clock=clock)


@pytest.fixture
def gate(token_service):
    return AuthorizationGate(token_service)


@pytest.fixture
def user_manager(storage, token_service):
    return UserManager(storage, token_service)


@pytest.fixture
def account_manager(storage, user_manager):
    return AccountManager(storage, user_manager)


@pytest.fixture
def engine(storage, account_manager):
    return TransactionEngine(storage, account_manager)


def _principal(user_manager, email, role):
    user = user_manager.create_user("Test", role.value.capitalize(), email, "secret-pass", role)
    return Principal(id=user.id, role=user.role)


@pytest.fixture
def alice(user_manager):
    return _principal(user_manager, "alice@example.com", Role.USER)


@pytest.fixture
def bob(user_manager):
    return _principal(user_manager, "bob@example.com", Role.USER)


@pytest.fixture
def cashier(user_manager):
    return _principal(user_manager, "cashier@example.com", Role.STAFF)


@pytest.fixture
def admin(user_manager):
    return _principal(user_manager, "admin@example.com", Role.ADMIN)

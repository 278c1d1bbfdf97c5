"""
Pytest configuration file for the HCLog test suite.

This file defines shared fixtures used across the test files:
- A throwaway Fernet key and a `LocalStore` under a temporary directory, so
  tests never touch the production data directory or key file.
- A controllable clock, so ids, loan dates and notification timestamps are
  predictable.
- `HCLogService` instances, empty or pre-populated with guest accounts for two
  hospital services.
"""
from datetime import datetime, timedelta

import pytest
from cryptography.fernet import Fernet

from hclog.service import HCLogService
from hclog.storage import LocalStore

PEDIATRICS = "Pediatría"
CARDIOLOGY = "Cardiología"


class FakeClock:
    """A clock that stays put until a test moves it."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def encryptor():
    """Provides a Fernet instance with a fresh key for test isolation."""
    return Fernet(Fernet.generate_key())


@pytest.fixture
def store(tmp_path, encryptor):
    return LocalStore(tmp_path / "data", encryptor)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 10, 9, 0))


@pytest.fixture
def service(store, clock):
    """A service over an empty store. Only the default administrator exists."""
    return HCLogService(store=store, clock=clock)


@pytest.fixture
def act_as(service):
    """Returns a helper that switches the service session to another existing user."""
    def _act_as(username):
        user = service.state.find_user(username)
        assert user is not None, f"unknown user {username}"
        service.current_user = user
        return user
    return _act_as


@pytest.fixture
def hospital_service(service, act_as):
    """
    Provides a service pre-populated with a second administrator and guests.

    Accounts: `admin` and `jefa` (admins), `pedia` and `pedia2` (Pediatría),
    `cardio` (Cardiología). The session is left logged in as `admin`.

    Yields:
        HCLogService: The populated service instance.
    """
    assert service.login("admin", "admin")
    service.add_user("jefa", "jefa123", "admin")
    service.add_user("pedia", "pedia123", "invitado", PEDIATRICS)
    service.add_user("pedia2", "pedia123", "invitado", PEDIATRICS)
    service.add_user("cardio", "cardio123", "invitado", CARDIOLOGY)
    act_as("admin")
    return service

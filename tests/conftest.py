"""
tests/conftest.py -- Shared test fixtures for the authentication core.

This module provides:
  - FakeClock: a mutable clock injected into every component, so lockout
    windows, token expiry and password expiry can be tested by moving time
    instead of sleeping.
  - make_settings(): AuthenticationSettings with bcrypt at its minimum cost
    (4 rounds) so hashing does not dominate test time.
  - store / service fixtures backed by a fresh in-memory SQLite database per
    test. Plain sqlite:///:memory: is safe here: these tests never leave the
    calling thread, and SQLAlchemy reuses one connection per thread for
    in-memory databases.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest

from auth.service import AuthenticationService
from auth.store import AuthStore
from core.config import AuthenticationSettings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> AuthenticationSettings:
    overrides.setdefault("bcrypt_rounds", 4)
    return AuthenticationSettings(**overrides)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def make_service(clock: FakeClock) -> Generator[Callable[..., AuthenticationService], None, None]:
    """Factory: make_service(**settings_overrides) -> AuthenticationService.

    Each call gets its own in-memory database, so a test can build services
    with different policies side by side.
    """
    stores: list[AuthStore] = []

    def _make(**overrides) -> AuthenticationService:
        settings = make_settings(**overrides)
        s = AuthStore("sqlite:///:memory:", identity_column=settings.identity_column_name)
        stores.append(s)
        return AuthenticationService(s, settings, clock=clock)

    yield _make

    for s in stores:
        s.close()


@pytest.fixture
def service(make_service) -> AuthenticationService:
    """Service with every optional policy off, as a fresh install would be."""
    return make_service()

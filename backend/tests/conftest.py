"""Pytest configuration and shared fixtures."""

import pytest

from finstream.market.credentials import StaticCredentialProvider
from finstream.market.store import MarketStateStore


@pytest.fixture
def store():
    """A fresh store with the default selected symbols."""
    return MarketStateStore()


@pytest.fixture
def credentials():
    """Credential provider holding a valid-looking bearer token."""
    return StaticCredentialProvider("test-token")

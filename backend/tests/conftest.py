from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from altcha_gate.config import settings
from altcha_gate.main import app
from altcha_gate.services.protocol import ProtocolContext
from altcha_gate.services.signer import Signer
from tests.test_utils import TEST_SECRET_KEY


class FakeClock:
    """Settable stand-in for the unix-seconds clock."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def protocol(clock):
    """A protocol context with a known key and a controllable clock."""
    return ProtocolContext(
        signer=Signer(TEST_SECRET_KEY.encode()),
        max_number=50_000,
        session_ttl_seconds=86_400,
        clock=clock,
    )


@pytest.fixture
def small_protocol(clock):
    """Low difficulty so end-to-end tests can brute-force quickly."""
    return ProtocolContext(
        signer=Signer(TEST_SECRET_KEY.encode()),
        max_number=500,
        session_ttl_seconds=86_400,
        clock=clock,
    )


@pytest.fixture
def client():
    """Create a test client with a configured secret key and a cheap difficulty."""
    with (
        patch.object(settings, "secret_key", SecretStr(TEST_SECRET_KEY)),
        patch.object(settings, "max_number", 500),
    ):
        with TestClient(app) as test_client:
            yield test_client

import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request

from altcha_gate.config import Settings
from altcha_gate.services.signer import ConfigurationError, Signer

MIN_SECRET_KEY_LENGTH = 32


def now_unix_seconds() -> int:
    return int(time.time())


@dataclass(frozen=True)
class ProtocolContext:
    """
    Immutable state shared by every challenge, verification and token call.

    Built once at startup and read concurrently by all requests.
    """

    signer: Signer
    max_number: int = 50_000
    session_ttl_seconds: int = 86_400
    clock: Callable[[], int] = now_unix_seconds

    @classmethod
    def from_settings(cls, config: Settings) -> "ProtocolContext":
        if config.secret_key is None:
            raise ConfigurationError("SECRET_KEY is not configured")

        key = config.secret_key.get_secret_value()
        if len(key) < MIN_SECRET_KEY_LENGTH:
            raise ConfigurationError(
                f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters"
            )

        return cls(
            signer=Signer(key.encode()),
            max_number=config.max_number,
            session_ttl_seconds=config.session_ttl_seconds,
        )


def get_protocol(request: Request) -> ProtocolContext:
    """Dependency for FastAPI endpoints to get the protocol context."""
    return request.app.state.protocol

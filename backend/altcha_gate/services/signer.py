import hashlib
import hmac
from dataclasses import dataclass, field


class ConfigurationError(RuntimeError):
    """Raised at startup when the signing setup is unusable."""


@dataclass(frozen=True)
class Signer:
    """HMAC-SHA256 signer holding the process-wide secret key."""

    key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not self.key:
            raise ConfigurationError("Signing key must not be empty")

    def sign(self, message: bytes) -> str:
        """Return the hex-encoded tag for a message."""
        return hmac.new(self.key, message, hashlib.sha256).hexdigest()

    def verify(self, message: bytes, tag: str) -> bool:
        """Check a hex tag against a message in constant time."""
        expected = self.sign(message)
        # compare_digest rejects non-ASCII str, compare as bytes instead
        return hmac.compare_digest(expected.encode(), tag.encode("utf-8", "surrogatepass"))

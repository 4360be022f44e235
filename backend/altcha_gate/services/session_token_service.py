"""
Signed session credentials handed out after a successful verification.

Token format: ``base64(client_ip|domain|expires):hex(hmac)``. The base64
alphabet has no ``:``, so the single separator stays unambiguous even when
the client address is IPv6.
"""

import base64
import binascii
from dataclasses import dataclass

import structlog

from altcha_gate.services.protocol import ProtocolContext

logger = structlog.get_logger()

TOKEN_SEPARATOR = ":"
FIELD_SEPARATOR = "|"
# Far beyond any unix timestamp this service issues
MAX_EXPIRY_DIGITS = 20


class TokenParseError(ValueError):
    """The token does not have the expected shape."""


@dataclass(frozen=True)
class TokenFields:
    client_ip: str
    domain: str
    expires: int
    payload: str
    signature: str


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogatepass")


def build_payload(client_ip: str, domain: str, expires: int) -> str:
    for name, value in (("client_ip", client_ip), ("domain", domain)):
        if FIELD_SEPARATOR in value:
            raise ValueError(f"{name} must not contain {FIELD_SEPARATOR!r}")
    return FIELD_SEPARATOR.join((client_ip, domain, str(expires)))


def issue_token(ctx: ProtocolContext, client_ip: str, domain: str) -> str:
    """Mint a credential bound to the client and domain, valid for the session TTL."""
    expires = ctx.clock() + ctx.session_ttl_seconds
    payload = build_payload(client_ip, domain, expires)
    signature = ctx.signer.sign(_encode(payload))
    encoded = base64.b64encode(_encode(payload)).decode("ascii")
    return f"{encoded}{TOKEN_SEPARATOR}{signature}"


def parse_token(token: str) -> TokenFields:
    """
    Split a token into its fields without checking the signature.

    Raises TokenParseError unless the token has exactly one ``:``, a strict
    base64 UTF-8 payload, and exactly three ``|`` fields ending in a
    non-negative integer.
    """
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2:
        raise TokenParseError("Expected exactly one separator")
    encoded, signature = parts

    try:
        raw = base64.b64decode(encoded, validate=True)
        payload = raw.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise TokenParseError("Payload is not base64 UTF-8") from e

    # Unused trailing bits would otherwise let several encodings share one payload
    if base64.b64encode(raw).decode("ascii") != encoded:
        raise TokenParseError("Payload is not canonical base64")

    fields = payload.split(FIELD_SEPARATOR)
    if len(fields) != 3:
        raise TokenParseError("Expected exactly three payload fields")
    client_ip, domain, expires = fields

    # isdigit() alone also accepts non-ASCII digits
    if not (expires.isascii() and expires.isdigit()):
        raise TokenParseError("Expiry is not a non-negative integer")
    if len(expires) > MAX_EXPIRY_DIGITS:
        raise TokenParseError("Expiry is out of range")

    try:
        expires_at = int(expires)
    except ValueError as e:
        raise TokenParseError("Expiry is not a non-negative integer") from e

    return TokenFields(
        client_ip=client_ip,
        domain=domain,
        expires=expires_at,
        payload=payload,
        signature=signature,
    )


def validate_token(ctx: ProtocolContext, token: str, client_ip: str, domain: str) -> bool:
    """
    Check a credential against the current request.

    Every failure returns False; the reason is only logged.
    """

    try:
        fields = parse_token(token)
    except TokenParseError as e:
        logger.info("token_malformed", reason=str(e))
        return False

    if not ctx.signer.verify(_encode(fields.payload), fields.signature):
        logger.warning("token_signature_invalid")
        return False

    # Valid through the expiry second itself
    if ctx.clock() > fields.expires:
        logger.info("token_expired", expires=fields.expires)
        return False

    if fields.client_ip != client_ip or fields.domain != domain:
        logger.warning(
            "token_binding_mismatch",
            token_ip=fields.client_ip,
            token_domain=fields.domain,
        )
        return False

    return True

"""Tests for issuing, parsing and validating session tokens."""

import base64

import pytest

from altcha_gate.services.protocol import ProtocolContext
from altcha_gate.services.session_token_service import (
    TokenParseError,
    issue_token,
    parse_token,
    validate_token,
)
from altcha_gate.services.signer import Signer

IP = "203.0.113.7"
DOMAIN = "library.example.edu"


def forge(protocol, payload: str) -> str:
    """Build a correctly signed token around an arbitrary payload."""
    signature = protocol.signer.sign(payload.encode())
    return f"{base64.b64encode(payload.encode()).decode()}:{signature}"


class TestIssueToken:
    def test_token_format(self, protocol, clock):
        """Test base64(ip|domain|expires):hex-signature."""
        token = issue_token(protocol, IP, DOMAIN)
        encoded, signature = token.split(":")

        payload = base64.b64decode(encoded).decode()
        assert payload == f"{IP}|{DOMAIN}|{clock.now + 86_400}"
        assert signature == protocol.signer.sign(payload.encode())

    def test_expiry_uses_ttl(self, clock):
        ctx = ProtocolContext(signer=Signer(b"k" * 32), session_ttl_seconds=60, clock=clock)
        assert parse_token(issue_token(ctx, IP, DOMAIN)).expires == clock.now + 60

    def test_ipv6_client(self, protocol):
        """Test that colons in an IPv6 address do not break the token shape."""
        token = issue_token(protocol, "2001:db8::1", DOMAIN)
        assert token.count(":") == 1
        assert parse_token(token).client_ip == "2001:db8::1"
        assert validate_token(protocol, token, "2001:db8::1", DOMAIN)

    @pytest.mark.parametrize(
        "client_ip,domain",
        [("1.2.3.4|evil", DOMAIN), (IP, "example.com|9999999999")],
    )
    def test_field_separator_refused(self, protocol, client_ip, domain):
        with pytest.raises(ValueError):
            issue_token(protocol, client_ip, domain)


class TestParseToken:
    def test_parses_fields(self, protocol, clock):
        fields = parse_token(issue_token(protocol, IP, DOMAIN))
        assert fields.client_ip == IP
        assert fields.domain == DOMAIN
        assert fields.expires == clock.now + 86_400

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "no-separator",
            "a:b:c",
            "%%%:abcd",
            base64.b64encode(b"\xff\xfe").decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com").decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|1|2").decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|-5").decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|12a").decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|").decode() + ":abcd",
            base64.b64encode("1.2.3.4|example.com|١٢".encode()).decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|" + b"9" * 5000).decode() + ":abcd",
            base64.b64encode(b"1.2.3.4|example.com|" + b"9" * 21).decode() + ":abcd",
        ],
        ids=[
            "empty",
            "no-separator",
            "two-separators",
            "bad-base64",
            "not-utf8",
            "two-fields",
            "four-fields",
            "negative-expiry",
            "non-numeric-expiry",
            "empty-expiry",
            "non-ascii-digits",
            "huge-expiry",
            "expiry-too-long",
        ],
    )
    def test_malformed(self, token):
        with pytest.raises(TokenParseError):
            parse_token(token)

    def test_non_canonical_base64(self):
        """Test that an encoding with non-zero padding bits is refused."""
        encoded = base64.b64encode(b"1.2.3.4|a.b|10").decode()
        assert encoded.endswith("=")
        # Last data char before padding carries unused low bits
        index = len(encoded.rstrip("=")) - 1
        alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
        bumped = alphabet[alphabet.index(encoded[index]) + 1]
        variant = encoded[:index] + bumped + encoded[index + 1 :]

        assert base64.b64decode(variant) == base64.b64decode(encoded)
        with pytest.raises(TokenParseError):
            parse_token(variant + ":abcd")


class TestValidateToken:
    def test_valid(self, protocol):
        token = issue_token(protocol, IP, DOMAIN)
        assert validate_token(protocol, token, IP, DOMAIN)

    @pytest.mark.parametrize("other_ip", ["203.0.113.8", "unknown", "", IP + " "])
    def test_other_ip_rejected(self, protocol, other_ip):
        token = issue_token(protocol, IP, DOMAIN)
        assert not validate_token(protocol, token, other_ip, DOMAIN)

    @pytest.mark.parametrize(
        "other_domain", ["evil.example.com", "example.edu", "localhost", DOMAIN.upper()]
    )
    def test_other_domain_rejected(self, protocol, other_domain):
        token = issue_token(protocol, IP, DOMAIN)
        assert not validate_token(protocol, token, IP, other_domain)

    def test_valid_at_expiry_second(self, protocol, clock):
        """Test that a token is still accepted at exactly its expiry time."""
        token = issue_token(protocol, IP, DOMAIN)
        clock.now += 86_400
        assert validate_token(protocol, token, IP, DOMAIN)

    def test_expired_one_second_later(self, protocol, clock):
        token = issue_token(protocol, IP, DOMAIN)
        clock.now += 86_401
        assert not validate_token(protocol, token, IP, DOMAIN)

    def test_expires_equal_now_valid(self, protocol, clock):
        token = forge(protocol, f"{IP}|{DOMAIN}|{clock.now}")
        assert validate_token(protocol, token, IP, DOMAIN)

    def test_expires_before_now_invalid(self, protocol, clock):
        token = forge(protocol, f"{IP}|{DOMAIN}|{clock.now - 1}")
        assert not validate_token(protocol, token, IP, DOMAIN)

    def test_every_single_character_flip_rejected(self, protocol):
        """Test that changing any one character of the token fails validation."""
        token = issue_token(protocol, IP, DOMAIN)

        for index, char in enumerate(token):
            replacement = "A" if char != "A" else "B"
            tampered = token[:index] + replacement + token[index + 1 :]
            assert not validate_token(protocol, tampered, IP, DOMAIN), index

    def test_payload_swap_rejected(self, protocol):
        """Test that re-encoding a different payload under the old signature fails."""
        token = issue_token(protocol, IP, DOMAIN)
        _, signature = token.split(":")
        swapped = base64.b64encode(f"{IP}|{DOMAIN}|99999999999".encode()).decode()
        assert not validate_token(protocol, f"{swapped}:{signature}", IP, DOMAIN)

    def test_other_key_rejected(self, protocol, clock):
        other = ProtocolContext(signer=Signer(b"other-key" * 4), clock=clock)
        token = issue_token(other, IP, DOMAIN)
        assert not validate_token(protocol, token, IP, DOMAIN)

    def test_unsigned_huge_expiry_rejected(self, protocol):
        """Test that an oversized expiry is refused instead of raising."""
        payload = f"{IP}|{DOMAIN}|" + "9" * 5000
        token = base64.b64encode(payload.encode()).decode() + ":x"
        assert not validate_token(protocol, token, IP, DOMAIN)

    def test_signed_twenty_digit_expiry_accepted(self, protocol):
        token = forge(protocol, f"{IP}|{DOMAIN}|" + "9" * 20)
        assert validate_token(protocol, token, IP, DOMAIN)

    @pytest.mark.parametrize("token", ["", "garbage", "a:b", ":", "::"])
    def test_malformed_rejected(self, protocol, token):
        assert not validate_token(protocol, token, IP, DOMAIN)

    def test_deterministic(self, protocol):
        token = issue_token(protocol, IP, DOMAIN)
        assert all(validate_token(protocol, token, IP, DOMAIN) for _ in range(5))

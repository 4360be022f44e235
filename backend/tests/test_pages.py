"""Tests for the challenge page."""

from unittest.mock import patch

import pytest

from altcha_gate.config import settings
from altcha_gate.routers.pages import safe_return_to, script_json


class TestChallengePage:
    def test_renders_widget(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "<altcha-widget" in response.text
        assert 'challengeurl="/api/challenge"' in response.text
        assert "/api/verify" in response.text

    def test_default_return_to(self, client):
        response = client.get("/")
        assert 'const returnTo = "https://testserver/";' in response.text

    def test_relative_return_to_kept(self, client):
        response = client.get("/", params={"return_to": "/items/42?page=2"})
        assert 'const returnTo = "/items/42?page=2";' in response.text

    def test_foreign_return_to_replaced(self, client):
        response = client.get("/", params={"return_to": "https://evil.example.com/"})
        assert "evil.example.com" not in response.text
        assert 'const returnTo = "https://testserver/";' in response.text

    def test_script_injection_escaped(self, client):
        response = client.get("/", params={"return_to": "/</script><script>alert(1)//"})
        assert "<script>alert(1)" not in response.text
        assert "\\u003c/script\\u003e" in response.text

    def test_site_name_escaped(self, client):
        with patch.object(settings, "site_name", "<b>Library</b>"):
            response = client.get("/")
        assert "<b>Library</b>" not in response.text
        assert "&lt;b&gt;Library&lt;/b&gt;" in response.text


class TestSafeReturnTo:
    @pytest.mark.parametrize(
        "return_to,expected",
        [
            (None, "https://lib.example.edu/"),
            ("", "https://lib.example.edu/"),
            ("/catalog", "/catalog"),
            ("https://lib.example.edu/a", "https://lib.example.edu/a"),
            ("http://LIB.example.edu:8080/a", "http://LIB.example.edu:8080/a"),
            ("https://user@lib.example.edu/a", "https://user@lib.example.edu/a"),
            ("//evil.example.com/", "https://lib.example.edu/"),
            ("/\\evil.example.com/", "https://lib.example.edu/"),
            ("https://evil.example.com/", "https://lib.example.edu/"),
            ("https://lib.example.edu.evil.com/", "https://lib.example.edu/"),
            ("https://lib.example.edu@evil.com/", "https://lib.example.edu/"),
            ("javascript:alert(1)", "https://lib.example.edu/"),
            ("catalog", "https://lib.example.edu/"),
            ("/\t/evil.example.com/", "https://lib.example.edu/"),
            ("/a b", "https://lib.example.edu/"),
        ],
    )
    def test_return_to(self, return_to, expected):
        assert safe_return_to(return_to, "lib.example.edu", "lib.example.edu") == expected

    def test_default_keeps_host_port(self):
        assert safe_return_to(None, "lib.example.edu:8443", "lib.example.edu") == (
            "https://lib.example.edu:8443/"
        )


def test_script_json_cannot_close_tag():
    assert script_json("</script>") == '"\\u003c/script\\u003e"'

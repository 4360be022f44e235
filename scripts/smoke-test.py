#!/usr/bin/env python3
"""
Smoke test for ALTCHA gate deployments.

This script is a deploy guardrail:
- Fast (a few seconds; one challenge is brute-forced locally)
- Actionable failures (step name, HTTP status/body preview)

Flow (default):
1. Health check
2. Challenge page renders the widget (optional via --skip-page)
3. Challenge issuance
4. Solve + POST /api/verify, capture the session cookie
5. GET /api/validate with the cookie (expects 200)
6. GET /api/validate without the cookie (expects 401)
7. POST /api/verify with a forged signature (expects 400)

Usage:
    ./scripts/smoke-test.py https://gate.example.com
    ./scripts/smoke-test.py https://gate.example.com --health-only
"""

import argparse
import base64
import hashlib
import json
import random
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from http.cookies import SimpleCookie
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

SkipCheck = Callable[["SmokeContext"], str | None]


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


COOKIE_NAME = "altcha_verified"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
MAX_ERROR_BODY_CHARS = 10_000
BODY_PREVIEW_BYTES = 200
MAX_BACKOFF_SECONDS = 4.0


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _preview_bytes(value: bytes, limit: int = BODY_PREVIEW_BYTES) -> bytes:
    if len(value) <= limit:
        return value
    return value[:limit]


def _decode_limited(value: bytes, max_chars: int = MAX_ERROR_BODY_CHARS) -> str:
    decoded = value.decode("utf-8", errors="replace")
    if len(decoded) <= max_chars:
        return decoded
    return decoded[:max_chars] + "…"


def _is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 425, 429, 502, 503, 504, 522, 524}


def _header(headers: dict[str, str], name: str) -> str | None:
    return next((v for k, v in headers.items() if k.lower() == name.lower()), None)


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout_seconds: float | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        effective_timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        req_headers = headers or {}

        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            try:
                request = Request(url, data=body, headers=req_headers, method=method)
                try:
                    with urlopen(request, timeout=effective_timeout) as response:
                        return response.getcode(), dict(response.headers.items()), response.read()
                except HTTPError as e:
                    error_body = e.read() if e.fp else b""
                    resp_headers = dict(e.headers.items()) if e.headers else {}
                    if attempt < max_attempts and _is_retryable_status(e.code):
                        self._sleep_backoff(attempt)
                        continue
                    return e.code, resp_headers, error_body
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e

        raise RuntimeError(f"No response after {max_attempts} attempts: {method} {url}")

    def api(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        url = f"{self.base_url}/api{path}"
        req_headers: dict[str, str] = {"Content-Type": "application/json"}
        if headers:
            req_headers.update(headers)
        body_bytes = json.dumps(data).encode() if data is not None else None
        return self.request(method, url, headers=req_headers, body=body_bytes)

    def api_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        status, resp_headers, body = self.api(method, path, **kwargs)
        if status < 200 or status >= 300:
            raise ApiError(status, _decode_limited(body))
        try:
            return json.loads(body.decode())
        except json.JSONDecodeError as e:
            raise RuntimeError(
                f"Invalid JSON response from {method} {path}: preview={_preview_bytes(body)!r}"
            ) from e

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        return self.request("GET", url, headers=headers, timeout_seconds=timeout_seconds)

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def wait_for_health(client: HttpClient, max_attempts: int = 30, delay: float = 2.0) -> bool:
    """Wait for /health to return healthy status."""
    url = f"{client.base_url}/health"

    for attempt in range(1, max_attempts + 1):
        try:
            status, _, body = client.get(url, timeout_seconds=10.0)
            if status == 200:
                data = json.loads(body.decode())
                if data.get("status") == "healthy":
                    log(f"Health check passed (attempt {attempt})")
                    return True
        except (json.JSONDecodeError, RuntimeError):
            pass

        if attempt < max_attempts:
            time.sleep(delay)

    return False


def solve_challenge(salt: str, challenge: str, max_number: int) -> int:
    """Find the number whose SHA-256 with the salt equals the challenge."""
    for number in range(max_number + 1):
        if hashlib.sha256(f"{salt}{number}".encode()).hexdigest() == challenge:
            return number
    raise RuntimeError(f"Failed to solve challenge within max_number={max_number}")


def encode_solution(challenge: dict[str, Any], number: int, **overrides: Any) -> str:
    payload = {
        "algorithm": challenge["algorithm"],
        "challenge": challenge["challenge"],
        "number": number,
        "salt": challenge["salt"],
        "signature": challenge["signature"],
    }
    payload.update(overrides)
    return base64.b64encode(json.dumps(payload).encode()).decode()


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int

    challenge: dict[str, Any] | None = None
    number: int | None = None
    token: str | None = None

    def require_challenge(self) -> dict[str, Any]:
        if not self.challenge:
            raise RuntimeError("Missing challenge (step ordering bug)")
        return self.challenge

    def require_number(self) -> int:
        if self.number is None:
            raise RuntimeError("Missing solved number (step ordering bug)")
        return self.number

    def require_token(self) -> str:
        if not self.token:
            raise RuntimeError("Missing session token (step ordering bug)")
        return self.token


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]
    # Return `None` to run the step; return a string to skip with that reason.
    skip_reason: SkipCheck | None = None


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str  # passed|skipped|failed
    seconds: float
    detail: str | None = None


def _print_summary(results: list[StepResult], total_seconds: float) -> None:
    log("Summary:")
    for result in results:
        suffix = f" - {result.detail}" if result.detail else ""
        log(f"  {result.status.upper():7} {result.name} ({result.seconds:.2f}s){suffix}")
    log(f"Total: {total_seconds:.2f}s")


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    results: list[StepResult] = []
    overall_start = time.time()

    for step in steps:
        reason = step.skip_reason(ctx) if step.skip_reason else None
        if reason:
            log(f"SKIP: {step.name}: {reason}")
            results.append(StepResult(step.name, "skipped", 0.0, reason))
            continue

        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            elapsed = time.time() - start
            results.append(StepResult(step.name, "failed", elapsed, str(e)))
            _print_summary(results, time.time() - overall_start)
            return False

        elapsed = time.time() - start
        results.append(StepResult(step.name, "passed", elapsed))
        log(f"OK: {step.name} ({elapsed:.2f}s)")

    _print_summary(results, time.time() - overall_start)
    return True


def step_health(ctx: SmokeContext) -> None:
    log(f"Checking health: {ctx.client.base_url}/health")
    if not wait_for_health(ctx.client, max_attempts=ctx.max_health_attempts):
        raise RuntimeError("Health check failed")


def step_page(ctx: SmokeContext) -> None:
    status, resp_headers, body = ctx.client.get(f"{ctx.client.base_url}/", timeout_seconds=20.0)
    if status != 200:
        raise RuntimeError(f"Challenge page returned {status}: {_preview_bytes(body)!r}")
    content_type = (_header(resp_headers, "content-type") or "").lower()
    if "text/html" not in content_type:
        raise RuntimeError(f"Challenge page Content-Type not HTML: {content_type!r}")
    if b"<altcha-widget" not in body:
        raise RuntimeError("Challenge page does not embed the ALTCHA widget")


def step_challenge(ctx: SmokeContext) -> None:
    challenge = ctx.client.api_json("GET", "/challenge")
    missing = {"algorithm", "challenge", "maxnumber", "salt", "signature"} - set(challenge)
    if missing:
        raise RuntimeError(f"Challenge missing fields: {sorted(missing)}")
    ctx.challenge = challenge
    log(f"Got challenge: maxnumber={challenge['maxnumber']}, salt={challenge['salt']}")


def step_verify(ctx: SmokeContext) -> None:
    challenge = ctx.require_challenge()
    log(f"Solving challenge (maxnumber={challenge['maxnumber']})")
    ctx.number = solve_challenge(challenge["salt"], challenge["challenge"], challenge["maxnumber"])

    status, resp_headers, body = ctx.client.api(
        "POST", "/verify", data={"altcha": encode_solution(challenge, ctx.require_number())}
    )
    if status != 200:
        raise ApiError(status, _decode_limited(body))

    set_cookie = _header(resp_headers, "set-cookie")
    if not set_cookie:
        raise RuntimeError("Verify response carried no Set-Cookie header")
    cookie = SimpleCookie()
    cookie.load(set_cookie)
    if COOKIE_NAME not in cookie:
        raise RuntimeError(f"Set-Cookie does not contain {COOKIE_NAME}: {set_cookie!r}")
    morsel = cookie[COOKIE_NAME]
    if not morsel["httponly"] or not morsel["secure"]:
        log("WARNING: session cookie is missing HttpOnly or Secure")
    ctx.token = morsel.value
    log("Verification succeeded; session cookie issued")


def step_validate(ctx: SmokeContext) -> None:
    status, _, body = ctx.client.api(
        "GET", "/validate", headers={"Cookie": f"{COOKIE_NAME}={ctx.require_token()}"}
    )
    if status != 200:
        raise RuntimeError(
            f"Expected 200 from /api/validate with cookie, got {status}: {_preview_bytes(body)!r}"
            " (is the proxy overwriting X-Forwarded-For consistently?)"
        )


def step_validate_without_cookie(ctx: SmokeContext) -> None:
    status, _, _ = ctx.client.api("GET", "/validate")
    if status != 401:
        raise RuntimeError(f"Expected 401 from /api/validate without cookie, got {status}")


def step_forged_verify(ctx: SmokeContext) -> None:
    challenge = ctx.require_challenge()
    forged = encode_solution(challenge, ctx.require_number(), signature="0" * 64)
    status, _, _ = ctx.client.api("POST", "/verify", data={"altcha": forged})
    if status != 400:
        raise RuntimeError(f"Expected 400 for a forged signature, got {status}")


def skip_page_disabled(_: SmokeContext) -> str | None:
    return "disabled via --skip-page"


def main() -> int:
    parser = argparse.ArgumentParser(description="ALTCHA gate smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://gate.example.com)")
    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Only run health check, skip full flow",
    )
    parser.add_argument(
        "--skip-page",
        action="store_true",
        help="Skip the challenge page check",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"HTTP timeout seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retries for transient failures (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--max-health-attempts",
        type=int,
        default=30,
        help="Max health check attempts (default: 30)",
    )
    args = parser.parse_args()

    try:
        base_url = args.base_url.rstrip("/")
        client = HttpClient(base_url=base_url, timeout_seconds=args.timeout, retries=args.retries)
        ctx = SmokeContext(client=client, max_health_attempts=args.max_health_attempts)

        steps: list[Step] = [Step("health", step_health)]
        if args.health_only:
            log("Health-only mode: skipping full flow")
        else:
            steps.extend(
                [
                    Step(
                        "challenge page",
                        step_page,
                        skip_reason=skip_page_disabled if args.skip_page else None,
                    ),
                    Step("challenge", step_challenge),
                    Step("verify", step_verify),
                    Step("validate", step_validate),
                    Step("validate without cookie", step_validate_without_cookie),
                    Step("forged verify", step_forged_verify),
                ]
            )

        ok = run_steps(ctx, steps)
        return 0 if ok else 1
    except Exception as e:
        log(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Request logging for the gate.

Every request gets an 8-hex-char correlation ID, echoed in ``X-Correlation-ID``.
Requests to the challenge API also get the resolved client IP and domain bound
into the structlog context, so the verification and token events further down
carry them without repeating them at each call site. The challenge page and
``/health`` are logged without them.

Cookies, query strings and request bodies are never logged.
"""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from altcha_gate.middleware.client_identity import resolve_client

API_PREFIX = "/api/"
CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


def bind_request_context(request: Request, correlation_id: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    if request.url.path.startswith(API_PREFIX):
        client = resolve_client(request)
        structlog.contextvars.bind_contextvars(
            client_ip=client.client_ip,
            domain=client.domain,
        )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs:
    - gate_request: method, path
    - gate_response: method, path, status_code, duration_ms; warning level for 4xx
    - gate_request_failed: unhandled exception with traceback
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = generate_correlation_id()
        start_time = time.perf_counter()
        bind_request_context(request, correlation_id)

        logger = structlog.get_logger()
        logger.debug("gate_request", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "gate_request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        # 4xx here means a rejected proof or cookie
        log = logger.warning if 400 <= response.status_code < 500 else logger.info
        log(
            "gate_response",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response

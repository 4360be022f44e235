from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from altcha_gate.config import settings
from altcha_gate.logging_config import get_logger, setup_logging
from altcha_gate.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from altcha_gate.routers import challenges, pages
from altcha_gate.services.protocol import ProtocolContext

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and build the protocol context; refuse to start without a key."""
    setup_logging()
    app.state.protocol = ProtocolContext.from_settings(settings)
    logger.info(
        "altcha_gate_started",
        max_number=app.state.protocol.max_number,
        session_ttl_seconds=app.state.protocol.session_ttl_seconds,
    )
    yield
    logger.info("altcha_gate_stopped")


app = FastAPI(
    title="ALTCHA Gate",
    description="Proof-of-work challenge gate issuing signed session cookies",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def malformed_request_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are a plain 400; field-level detail stays in the logs."""
    logger.info("request_malformed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": "Malformed request"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Return a bare 500 that still carries the correlation ID."""
    correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    headers = {CORRELATION_HEADER: correlation_id} if correlation_id else None
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"},
        headers=headers,
    )


# Routers
app.include_router(challenges.router, prefix="/api", tags=["altcha"])
app.include_router(pages.router, tags=["pages"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


def serve() -> None:
    """Run the gate with uvicorn on the configured address."""
    uvicorn.run(app, host=settings.host, port=settings.port, proxy_headers=True)

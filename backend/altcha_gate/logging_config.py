"""
Structured logging configuration using structlog.

JSON lines when ``log_format`` is ``json``, coloured console output otherwise.
Everything goes to stdout; the process manager owns persistence.

Digests (challenge, salt, signature, work hash) are cut to a short prefix
before rendering: enough to correlate a failed verification with the
challenge that was issued, not enough to replay anything from the logs.
"""

import logging
import sys

import structlog

from altcha_gate.config import Settings, settings

DIGEST_FIELDS = frozenset({"challenge", "salt", "signature", "work_hash"})
DIGEST_PREFIX_CHARS = 8


def shorten_digests(_logger, _method_name: str, event_dict: dict) -> dict:
    """structlog processor: truncate known hex digest fields."""
    for key in DIGEST_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and len(value) > DIGEST_PREFIX_CHARS:
            event_dict[key] = value[:DIGEST_PREFIX_CHARS]
    return event_dict


def setup_logging(config: Settings = settings) -> None:
    """Configure structlog and route stdlib (uvicorn) logging to stdout at the same level."""
    level = getattr(logging, config.log_level.upper())

    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # correlation_id, plus client_ip/domain on /api routes
            structlog.contextvars.merge_contextvars,
            shorten_digests,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # LoggingMiddleware already logs every response
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None):
    """Get a structlog logger, optionally bound to ``logger_name``."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger

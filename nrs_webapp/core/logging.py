"""Structured logging with per-request ids.

Configures structlog once for the process and routes stdlib ``logging``
records (core modules use ``logging.getLogger(__name__)``) through the same
processor chain, so every line carries the request id bound by
RequestIdMiddleware.
"""

import logging
import re
import sys
import uuid

import structlog
from structlog.types import Processor

from nrs_webapp.core.config import Settings

REQUEST_ID_HEADER = "X-Request-ID"

# Inbound request ids are echoed into logs and headers; only accept short,
# boring values so a client cannot inject log lines or header junk.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-_]{8,64}$")


def configure_logging(settings: Settings) -> None:
    """Configure structlog and stdlib logging.

    Console rendering for development, JSON lines when
    ``LOG_FORMAT=json``.

    Args:
        settings: Application settings (log level and format).
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(logger_name).setLevel(level)


def new_request_id(inbound: str | None = None) -> str:
    """Return the inbound request id when it is well formed, else a fresh one.

    Args:
        inbound: Value of the X-Request-ID request header, if any.

    Returns:
        Request id string.
    """
    if inbound and _REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return str(uuid.uuid4())


def bind_request_id(request_id: str) -> None:
    """Bind the request id to the structlog context of the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def mask_email(email: str) -> str:
    """Mask an email address for logs: ``alice@example.com`` -> ``a***@example.com``."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "<redacted-email>"
    first = local[:1] or "*"
    return f"{first}***@{domain}"


def mask_username(username: str) -> str:
    """Mask a username for logs: ``alice`` -> ``a***e``."""
    if len(username) <= 2:
        return "*" * len(username)
    return f"{username[0]}***{username[-1]}"

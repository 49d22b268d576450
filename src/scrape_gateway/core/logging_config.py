"""Structured JSON logging for the gateway, built on structlog.

``configure_logging()`` is called once by the application factory.  Modules
then log through either API and both end up in the same renderer::

    import logging
    logger = logging.getLogger(__name__)
    logger.warning("audit write failed", extra={"request_id": rid})

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("scrape_complete", render_mode="light", duration_ms=412)

The request middleware stores the gateway request id in :data:`request_id_var`
and every record emitted while that request is in flight carries it.

Credentials never reach a sink: values under secret-looking keys are
replaced wholesale, and a raw ``sk_`` key embedded in any other string
(a logged URL, an exception message) is cut down to its display prefix.
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Gateway request id (``req_<ms>_<hex>``) for the request being served."""

REDACTED = "[REDACTED]"

# Matched case-insensitively as substrings of event-dict keys.
_SECRET_KEY_FRAGMENTS: tuple[str, ...] = (
    "api_key",
    "x-api-key",
    "authorization",
    "bearer",
    "secret",
    "password",
    "token",
    "raw_key",
    "key_hash",
)

# Display prefix of an API key; safe to log.
_SAFE_KEYS: frozenset[str] = frozenset({"key_prefix"})

_RAW_KEY_RE = re.compile(r"\b(sk_[0-9a-fA-F]{8})[0-9a-fA-F]{56}\b")

# Libraries that log every request/connection at INFO.
_CHATTY_LOGGERS: tuple[str, ...] = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "aiosqlite",
    "asyncio",
)


def _is_secret_key(key: Any) -> bool:
    if not isinstance(key, str) or key in _SAFE_KEYS:
        return False
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return _RAW_KEY_RE.sub(r"\1...", value)
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret_key(k) else _scrub(v) for k, v in value.items()}
    return value


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask secret-bearing keys at the top level and one dict level down."""
    for key, value in list(event_dict.items()):
        event_dict[key] = REDACTED if _is_secret_key(key) else _scrub(value)
    return event_dict


def _add_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    rid = request_id_var.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _pre_chain() -> list[Processor]:
    """Processors applied to structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_secrets,
    ]


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib logging and structlog through one renderer.

    At ``DEBUG`` the renderer is structlog's coloured ``ConsoleRenderer``;
    at every other level it is newline-delimited JSON with ``timestamp``,
    ``level``, ``logger``, ``event`` and (inside a request) ``request_id``.

    Safe to call repeatedly; existing root handlers are replaced.

    Args:
        log_level: Level name, case-insensitive.  Unknown names fall back
            to ``INFO``.
    """
    level_name = log_level.upper()
    level = getattr(logging, level_name, logging.INFO)
    console = level_name == "DEBUG"

    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True) if console else structlog.processors.JSONRenderer()
    )
    pre_chain = _pre_chain()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    quiet_level = logging.NOTSET if console else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

"""
tenancy_sdk.tier0_core.logging
───────────────────────────────
Structured logs for the tenancy engine. Every record carries the app name and
environment; user_id / tenant_id / role are merged in from the context bound
by TenantContext.bind(). Credentials are dropped and email addresses masked
before rendering.

Event names are dotted and stable (``tenant.resolved``, ``quota.exceeded``,
``repository.not_found``); dashboards key on them.

Minimal stack: structlog (stdout JSON or console)
Configure via: TENANCY_LOG_LEVEL, TENANCY_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from tenancy_sdk.tier0_core.config import get_config

_HANDLER_NAME = "tenancy-stdout"


# ── Processors ────────────────────────────────────────────────────────────────

_SECRET_KEYS = frozenset({
    "password", "secret", "token", "api_key", "authorization",
    "credential", "access_token", "refresh_token", "id_token", "session_cookie",
})

_MASKED_KEYS = frozenset({"email", "invitee_email"})

_REDACTED = "[REDACTED]"


def _mask_email(value: Any) -> Any:
    if not isinstance(value, str) or "@" not in value:
        return value
    local, _, domain = value.partition("@")
    return f"{local[:1]}***@{domain}"


def _redact_processor(logger: Any, method: str, event_dict: dict) -> dict:
    """Drop credentials and mask addresses of invitees and members."""
    for key in list(event_dict.keys()):
        lowered = key.lower()
        if lowered in _SECRET_KEYS:
            event_dict[key] = _REDACTED
        elif lowered in _MASKED_KEYS:
            event_dict[key] = _mask_email(event_dict[key])
    return event_dict


def _app_processor(logger: Any, method: str, event_dict: dict) -> dict:
    cfg = get_config()
    event_dict.setdefault("app", cfg.app_name)
    event_dict.setdefault("env", cfg.environment)
    return event_dict


# ── Configuration ─────────────────────────────────────────────────────────────

def _configure_structlog() -> None:
    cfg = get_config()
    level = getattr(logging, cfg.log_level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _app_processor,
        _redact_processor,
    ]

    if cfg.log_format.lower() == "console":
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
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

    root_logger = logging.getLogger()
    # Replace our handler on reconfiguration, leave foreign ones alone.
    for existing in [h for h in root_logger.handlers if h.get_name() == _HANDLER_NAME]:
        root_logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


# ── Public API ────────────────────────────────────────────────────────────────

_configured = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

    Usage:
        log = get_logger(__name__)
        log.info("tenant.resolved", tenant_id="t_123", plan="BASIC")
        log.warning("quota.exceeded", resource="clients", current=50, maximum=50)
    """
    global _configured
    if not _configured:
        _configure_structlog()
        _configured = True
    return structlog.get_logger(name or __name__)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every log call in the current task (see TenantContext.bind)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all context-bound log fields. Call when the session ends."""
    structlog.contextvars.clear_contextvars()


__all__ = ["get_logger", "bind_context", "clear_context"]

"""
structlog setup shared by the API, the scheduler and the seed script.

Log lines are key/value events (console in dev, JSON elsewhere). Every line
carries the service and instance id; lines emitted inside an engine operation
also carry `operation` and a short `operation_id` so a whole sync cycle can be
pulled out of the stream. Provider credentials never reach the renderer.
"""
from __future__ import annotations

import functools
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from shared.config import Settings, get_settings

T = TypeVar("T")

# Event keys whose values are credentials (headers and settings names, lower-cased)
SECRET_KEYS = frozenset({
    "authorization",
    "x-auth-token",
    "x-apisports-key",
    "api_key",
    "cron_secret",
    "football_data_api_key",
    "api_football_api_key",
})
REDACTED = "***"

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "aiosqlite")


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential-bearing fields, including inside a logged `headers` dict."""
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif key == "headers" and isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if k.lower() in SECRET_KEYS else v for k, v in value.items()
            }
    return event_dict


def _processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
    ]


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.environment.value == "dev":
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(service_name: str, extra_context: dict[str, Any] | None = None) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        service_name: The service identifier (api, scheduler, seed).
        extra_context: Additional static context fields bound to every log entry.
    """
    settings = get_settings()
    shared_processors = _processors()

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(settings)],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name, instance_id=settings.instance_id, **(extra_context or {})
    )


def bind_operation(
    name: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async engine operation so its log lines share `operation` / `operation_id`."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            with structlog.contextvars.bound_contextvars(
                operation=name, operation_id=uuid.uuid4().hex[:12]
            ):
                return await func(*args, **kwargs)

        return wrapper

    return decorator


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)

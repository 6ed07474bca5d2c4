"""structlog setup and log context helpers.

Context is kept with ``structlog.contextvars``, so anything bound for a
request or a job shows up on every entry emitted while it runs:

- request_id, path, method: bound by RequestIDMiddleware
- user_id: bound by SessionMiddleware once the viewer is known
- task_name, task_id: bound at the start of a generation step
- card_set_id: bound by services working on one card set

stdlib loggers (uvicorn, celery, botocore) are routed through the same
renderer, so the process writes one JSON object per line.
"""

import logging
import sys

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "botocore", "boto3", "stripe")


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def _bind(**values: object) -> None:
    bind_contextvars(**{key: value for key, value in values.items() if value is not None})


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Start the log context of an HTTP request."""
    clear_contextvars()
    _bind(request_id=request_id, user_id=user_id, path=path, method=method)


def clear_request_context() -> None:
    clear_contextvars()


def set_user_id(user_id: str | None) -> None:
    _bind(user_id=user_id)


def bind_card_set(card_set_id: object | None) -> None:
    _bind(card_set_id=str(card_set_id) if card_set_id is not None else None)


def get_request_id() -> str | None:
    return get_contextvars().get("request_id")


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind job context for a generation step.

    Inside a webhook request the request's own context is kept and
    extended; ``request_id`` only fills in when none is bound yet.
    """
    if get_request_id() is None:
        _bind(request_id=request_id)
    _bind(task_name=task_name, task_id=task_id)


def clear_task_context() -> None:
    clear_contextvars()

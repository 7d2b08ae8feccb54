"""
Structured logging setup and event helpers.

The engine logs through structlog on top of the stdlib logging module. The
event helpers are fire-and-forget: they never raise and the engine never
branches on them.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog


def configure_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure structlog and the stdlib handlers it renders into.

    Args:
        config: The ``logging`` configuration section
    """
    config = config or {}
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)

    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )
    console_renderer = (
        structlog.processors.JSONRenderer()
        if config.get("json") or not sys.stderr.isatty()
        else structlog.dev.ConsoleRenderer()
    )
    console_formatter = structlog.stdlib.ProcessorFormatter(
        processor=console_renderer,
        foreign_pre_chain=shared_processors,
    )

    handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    log_file = config.get("file")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        max_bytes = config.get("max_bytes", 10 * 1024 * 1024)
        backup_count = config.get("backup_count", 5)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(json_formatter)
        handlers.append(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            log_path.parent / "error.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)
        handlers.append(error_handler)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def log_action_event(
    logger: Any,
    action_kind: Any,
    target: Optional[str],
    provider: Optional[str],
    status: str,
    **details: Any,
) -> None:
    _emit(
        logger,
        "info",
        "Action event",
        action_kind=getattr(action_kind, "value", action_kind),
        target=target,
        provider=provider or "system",
        status=status,
        **details,
    )


def log_provider_event(
    logger: Any, provider: str, action: str, status: str, **details: Any
) -> None:
    _emit(
        logger,
        "info",
        "Provider event",
        provider=provider,
        action=action,
        status=status,
        **details,
    )


def log_session_event(logger: Any, action: str, session_id: str, **details: Any) -> None:
    _emit(logger, "info", "Session event", action=action, session_id=session_id, **details)


def log_error(logger: Any, error: BaseException, **context: Any) -> None:
    _emit(
        logger,
        "error",
        "Engine error",
        error=str(error),
        error_type=type(error).__name__,
        exc_info=error,
        **context,
    )


def _emit(logger: Any, level: str, event: str, **fields: Any) -> None:
    try:
        getattr(logger, level)(event, **fields)
    except Exception:  # noqa: BLE001
        logging.getLogger(__name__).debug("Dropped log event %s", event)

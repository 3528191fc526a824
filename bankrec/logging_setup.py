"""Logging configuration: structlog routed through standard logging handlers."""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from .config import Settings, get_settings


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Configure console logging and, optionally, a log file.

    level and log_file default to app_log_level and log_file from settings.
    Context bound with structlog.contextvars (e.g. run_id) is added to every event.
    Production renders one JSON object per line.
    """
    settings = settings or get_settings()
    level = level or settings.app_log_level
    log_file = log_file or settings.log_file

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    if settings.is_production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )
    root = logging.getLogger()
    for handler in handlers:
        handler.setFormatter(formatter)
    root.handlers = handlers
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

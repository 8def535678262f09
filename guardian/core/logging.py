from __future__ import annotations

import logging as std_logging
import sys
from typing import Optional

import structlog

from .config import get_settings


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Route structlog through stdlib logging with a console or JSON renderer."""
    cfg = get_settings()
    level_name = (level or cfg.log_level).upper()
    as_json = cfg.log_json if json_output is None else json_output

    handler = std_logging.StreamHandler(sys.stdout)
    handler.setFormatter(std_logging.Formatter("%(message)s"))
    root = std_logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(std_logging, level_name, std_logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer()
        if as_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


"""
Structured logging setup.
"""

import logging
import os
import sys
from typing import Optional

import structlog

LOG_LEVEL_ENV = "QUOTA_GUARD_LOG_LEVEL"
LOG_FORMAT_ENV = "QUOTA_GUARD_LOG_FORMAT"


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Log level name (defaults to $QUOTA_GUARD_LOG_LEVEL or WARNING)
        fmt: "json" or "console" (defaults to $QUOTA_GUARD_LOG_FORMAT or console)
    """
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    fmt = (fmt or os.environ.get(LOG_FORMAT_ENV) or "console").lower()

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if fmt == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

from __future__ import annotations

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(level: str = "INFO", timestamps: bool = True, fmt: str = "console") -> None:
    """Route structlog through stdlib logging to stderr.

    Timestamps can be turned off when an external collector (journald,
    docker logs) already stamps every line.
    """
    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]
    if timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    numeric = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    # docker-py and redis-py are chatty at debug level.
    logging.getLogger("urllib3").setLevel(max(numeric, logging.INFO))
    logging.getLogger("docker").setLevel(max(numeric, logging.INFO))

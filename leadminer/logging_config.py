"""
logging_config.py - Loguru setup for LeadMiner

Loguru is the only backend. Services and connectors log through stdlib
module loggers (logging.getLogger("leadminer.<area>")); an intercept
handler forwards those records, so mining sessions, adapters and the API
share one stream.

Business Rules:
- log_format "json" serializes every record; "text" is coloured for a terminal
- log_format "auto" picks json when app_url is https (deployed), text otherwise
- log_file adds a rotating JSON sink; unset means stdout only
- Provider and driver loggers (httpx, sqlalchemy, uvicorn access) stay at WARNING

Called by: leadminer/main.py (lifespan startup)
Depends on: leadminer/config.py (log_level, log_format, log_file, app_url)
"""

import logging
import sys

from loguru import logger

from .config import Settings, settings

TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[area]}</cyan> | "
    "{message}"
)

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def use_json(cfg: Settings) -> bool:
    fmt = cfg.log_format.lower()
    if fmt == "auto":
        return cfg.app_url.startswith("https://")
    return fmt == "json"


def setup_logging(cfg: Settings | None = None) -> None:
    """Configure Loguru sinks and intercept stdlib logging. Call once at startup."""
    cfg = cfg or settings
    logger.remove()
    logger.configure(extra={"area": "leadminer"})

    level = cfg.log_level.upper()
    as_json = use_json(cfg)
    if as_json:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
    else:
        logger.add(sys.stdout, level=level, format=TEXT_FORMAT, colorize=True)

    if cfg.log_file:
        logger.add(cfg.log_file, level=level, rotation="50 MB", retention="7 days", serialize=True)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured", level=level, json=as_json, file=cfg.log_file)


class _InterceptHandler(logging.Handler):
    """Forward stdlib records to Loguru, tagged with the logger name as area."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Point Loguru at the caller, not at logging internals
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(area=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )

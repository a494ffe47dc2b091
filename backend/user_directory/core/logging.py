"""
Logging for the user directory.

One line per record: time, level, origin, request ID and message. The request
ID comes from ``request_id_ctx``, which RequestContextMiddleware sets for the
duration of each HTTP request; records emitted outside a request (startup,
the admin CLI) show ``-``.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

from user_directory.core.config import get_settings

ROOT_LOGGER_NAME = "user_directory"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        log_entry = (
            f"{timestamp} | {record.levelname:<8} | "
            f"{record.name}:{record.funcName}:{record.lineno} | "
            f"req={request_id_ctx.get()} | {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            log_entry += f" | EXCEPTION: {self.formatException(record.exc_info)}"
        return log_entry


def setup_logging() -> None:
    """
    Install the structured stdout handler on the root logger.
    Both the app lifespan and the admin CLI call this, so a second call only
    re-applies levels.
    """
    settings = get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    if not any(isinstance(h.formatter, StructuredFormatter) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(console_handler)

    # Per-request lines come from RequestContextMiddleware instead
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "Logging ready (level=%s, env=%s)", settings.LOG_LEVEL, settings.APP_ENV
    )


def get_logger(name: str) -> logging.Logger:
    """``get_logger("users")`` -> the ``user_directory.users`` logger."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from Metaport.config import Settings


def setup_logging(settings: Settings | None = None) -> None:
    """Initialize structlog + stdlib logging.

    If settings provided, honor per-handler levels from [logging] config.
    Defaults: INFO level, console on, no file handler.
    """
    level_name = (settings.logging_level if settings else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.captureWarnings(True)

    # ProcessorFormatter renders BOTH structlog and stdlib/third-party logs as JSON
    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            # Pull run-local context (import_id, user) from contextvars
            merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )

    root_handlers: list[logging.Handler] = []
    console_lvl_name = settings.logging_console if settings is not None else level_name
    if (console_lvl_name or "").upper() != "NONE":
        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, console_lvl_name.upper(), level))
        ch.setFormatter(processor_formatter)
        root_handlers.append(ch)

    file_lvl_name = settings.logging_file if settings is not None else "NONE"
    if (file_lvl_name or "").upper() != "NONE":
        path = settings.logging_file_path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = RotatingFileHandler(
            path,
            maxBytes=settings.logging_max_bytes,
            backupCount=settings.logging_backup_count,
        )
        fh.setLevel(getattr(logging, file_lvl_name.upper(), level))
        fh.setFormatter(processor_formatter)
        root_handlers.append(fh)

    # force=True to replace any prior configuration
    logging.basicConfig(level=level, handlers=root_handlers, force=True)

    # Let SQLAlchemy/alembic loggers bubble up into our root handlers
    for name in ("sqlalchemy", "alembic", "asyncio"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Return a settings dict safe for logging.

    Database credentials embedded in the URL are replaced with "[REDACTED]".
    """
    data = settings.model_dump()
    url = data.get("database_url") or ""
    if "@" in url and "://" in url:
        scheme, rest = url.split("://", 1)
        data["database_url"] = f"{scheme}://[REDACTED]@{rest.split('@', 1)[1]}"
    return data

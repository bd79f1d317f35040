"""Observability utilities: logging setup.

Configures standard logging with the request correlation id in every record
and, if available, integrates `structlog` for structured logs. The dependency
on `structlog` is optional to keep the base runtime lightweight.
"""

from __future__ import annotations

import importlib
import logging

from ..utils.correlation import get_request_id

# Chatty third-party loggers that would drown out pipeline events at DEBUG
_QUIET_LOGGERS = ["httpx", "httpcore", "sqlalchemy.engine", "urllib3"]


class RequestIdFilter(logging.Filter):
    """Attach the current correlation id to each log record as ``req_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "req_id", None):
            record.req_id = get_request_id() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging.

    Parameters
    ----------
    level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".

    Behavior
    --------
    - Initializes Python's logging with the requested level.
    - Installs :class:`RequestIdFilter` on the root handlers.
    - If `structlog` is installed, configures it with a filtering bound logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=("%(asctime)s %(levelname)s %(name)s [%(req_id)s] - %(message)s"),
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())

    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(numeric_level, logging.WARNING))

    try:  # optional structlog
        structlog = importlib.import_module("structlog")
        structlog.configure(
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        )
    except ModuleNotFoundError:  # pragma: no cover
        pass

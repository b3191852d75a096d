"""Logging setup shared by the API process and scheduled jobs."""
import json
import logging
import sys
from datetime import datetime, UTC

from app.core.settings import settings

_CONFIGURED = False


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line so log sinks can index fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            payload["correlation_id"] = correlation_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging() -> logging.Logger:
    """Configure root logging once and return the application logger."""
    global _CONFIGURED
    app_logger = logging.getLogger("app")
    if _CONFIGURED:
        return app_logger

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Quiet chatty libraries unless we're debugging SQL
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.sql_debug else logging.WARNING
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _CONFIGURED = True
    return app_logger

"""
Logging setup for the triage service.

Debug and testing runs get one colored line per record, tagged with the
investigation and phase when the record carries them. Everything else
gets one JSON object per line.

Services attach investigation context through ``extra=``:

    logger.info("Phase complete", extra={"investigation_id": 4711, "phase": "phase1"})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# record attributes copied into JSON lines when set
EXTRA_FIELDS = (
    "investigation_id",
    "run_number",
    "phase",
    "checkpoint",
    "action",
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO     triage.services.phases #4711 [phase1]: message [35ms]``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        tags = ""
        inv = getattr(record, "investigation_id", None)
        if inv is not None:
            tags += f" #{inv}"
        phase = getattr(record, "phase", None)
        if phase:
            tags += f" [{phase}]"
        line = (f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
                f"{record.name}{tags}: {record.getMessage()}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    The level comes from the ``LOG_LEVEL`` environment variable, falling
    back to the app's ``LOG_LEVEL`` setting.
    """
    testing = app.config.get("TESTING", False)
    readable = testing or app.config.get("DEBUG", False)

    level_name = os.getenv("LOG_LEVEL", app.config.get("LOG_LEVEL", "INFO"))
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ReadableFormatter() if readable else JSONFormatter())
    handler.setLevel(level)

    # create_app may run more than once per process (tests)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "readable" if readable else "JSON")

"""
Logging configuration.

- Development: human-readable format on stderr
- LOG_FORMAT=json: one JSON object per line (log aggregator compatible)
- Log level: controlled via LOG_LEVEL config / env variable
"""

import json
import logging
import sys
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in ("rq_code", "uid", "status", "revision", "error_code"):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """Plain formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        base = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Attach a single stderr handler to the ``ims`` logger tree and the Flask
    app logger. Safe to call more than once (tests build several apps).
    """
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = JSONFormatter() if app.config.get("LOG_FORMAT") == "json" else ReadableFormatter()

    for logger in (logging.getLogger("ims"), app.logger):
        logger.setLevel(level)
        if not any(getattr(h, "_ims_handler", False) for h in logger.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler._ims_handler = True
            logger.addHandler(handler)
        for handler in logger.handlers:
            if getattr(handler, "_ims_handler", False):
                handler.setFormatter(formatter)
    logging.getLogger("ims").propagate = False

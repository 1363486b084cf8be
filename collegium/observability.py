"""
Structured logging setup.

Every record carries timestamp, level, logger name and message; the
identifiers passed through ``extra=`` (student_id, section_id, error_code,
...) are surfaced when present.
"""

import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "student_id", "section_id", "instructor_id", "assessment_id", "program_id",
    "term_id", "payment_id", "resource_id", "holder_id", "error_code", "attempt", "path",
)


class JSONFormatter(logging.Formatter):
    """Format logs as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Install a root handler with the JSON or text formatter and return it."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler

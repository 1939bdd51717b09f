"""Logging setup for s3odm.

Request records emitted by ``S3ODM.execute`` carry the fields in
``REQUEST_FIELDS`` as ``extra`` attributes. Both formatters render them:
the JSON one as keys of the object, the text one as a ``key=value`` suffix.
"""

import json
import logging
import sys
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import IO

REQUEST_FIELDS = ("operation", "method", "key", "status", "duration_ms")

# Transport libraries that log every request at INFO on their own
TRANSPORT_LOGGERS = ("httpx", "httpcore")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _request_fields(record: logging.LogRecord, fields: Iterable[str]) -> dict:
    return {
        name: getattr(record, name)
        for name in fields
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, logger, message, exception (when set), and any
    request field present on the record.
    """

    def __init__(self, fields: Iterable[str] = REQUEST_FIELDS) -> None:
        super().__init__()
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_request_fields(record, self.fields))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with request fields appended as key=value."""

    def __init__(self, fields: Iterable[str] = REQUEST_FIELDS) -> None:
        super().__init__(TEXT_FORMAT)
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _request_fields(record, self.fields)
        if not extras:
            return line
        suffix = " ".join(f"{name}={value}" for name, value in extras.items())
        return f"{line} [{suffix}]"


def configure_logging(level: str = "INFO", fmt: str = "text", stream: IO[str] | None = None) -> None:
    """Install a single root handler.

    httpx and httpcore are held at WARNING unless ``level`` is DEBUG, so the
    client's own request records are not doubled.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        fmt: 'text' or 'json'.
        stream: Destination; stderr by default.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    root.addHandler(handler)

    transport_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

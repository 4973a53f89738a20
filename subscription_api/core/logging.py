"""Logging setup and field-carrying loggers used for request correlation."""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class FieldLogger(logging.LoggerAdapter):
    """Logger adapter that appends ``key=value`` fields to every message."""

    def __init__(self, logger: logging.Logger, fields: Optional[dict[str, Any]] = None):
        super().__init__(logger, dict(fields or {}))

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self.extra)

    def with_fields(self, **fields: Any) -> "FieldLogger":
        merged = dict(self.extra)
        merged.update(fields)
        return FieldLogger(self.logger, merged)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = {"fields": extra}
        if extra:
            rendered = " ".join(f"{key}={value}" for key, value in extra.items())
            msg = f"{msg} {rendered}"
        return msg, kwargs


def get_logger(name: str, **fields: Any) -> FieldLogger:
    return FieldLogger(logging.getLogger(name), fields)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a single handler.

    Existing handlers are replaced so repeated calls (tests, reloads) do not
    duplicate output.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())
    return root

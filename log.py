"""Logging for Rengu.

Every logger hangs off the "rengu" root and writes one line per record to
stderr. RENGU_LOG_FORMAT picks the line shape (``json`` or ``text``) and
RENGU_LOG_LEVEL the threshold. Context goes in ``extra=``; only the keys in
CONTEXT_KEYS are printed.
"""
import json
import logging
import os
import sys
from typing import Any, Dict

ROOT = "rengu"

CONTEXT_KEYS = (
    "component", "flow", "tab", "session", "endpoint",
    "status_code", "count", "duration_ms", "detail",
)


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: getattr(record, k) for k in CONTEXT_KEYS if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            err = record.exc_info[1]
            line["error_type"] = type(err).__name__
            line["error"] = str(err)
        return json.dumps(line, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``12:00:01 WARNING rengu.controller: extract_words failed flow=extract_words tab=review``"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = " ".join(f"{k}={v}" for k, v in record_context(record).items())
        return f"{text} {context}" if context else text


FORMATTERS = {"json": JSONFormatter, "text": TextFormatter}


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT)
    if root.handlers:
        return root
    level = os.environ.get("RENGU_LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(FORMATTERS.get(os.environ.get("RENGU_LOG_FORMAT", "json"), JSONFormatter)())
    root.addHandler(handler)
    root.propagate = False
    return root


def get_logger(name: str = ROOT) -> logging.Logger:
    """Logger for ``name``; names outside the "rengu." tree are nested under it.

        logger = get_logger("rengu.llm")
        logger.info("Model call done", extra={"component": "gateway", "duration_ms": 812})
    """
    root = _configure_root()
    if name == ROOT:
        return root
    if not name.startswith(ROOT + "."):
        name = f"{ROOT}.{name}"
    return logging.getLogger(name)

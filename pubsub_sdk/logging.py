from __future__ import annotations
import json
import sys
import threading
import time
import traceback
from typing import Any, Dict, Optional

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

# One lock for all loggers: dispatch threads share stdout
_write_lock = threading.Lock()


class StructuredLogger:
    """JSON-lines logger shared by the subscriber, dispatchers and hooks."""

    def __init__(self, name: str = "pubsub", level: str = "INFO", context: Optional[Dict[str, Any]] = None):
        self.name = name
        self.level = level.upper()
        self.context: Dict[str, Any] = dict(context or {})

    def is_enabled(self, level: str) -> bool:
        return LEVELS.get(level, 100) >= LEVELS.get(self.level, 20)

    # ----------------------------------------------------------------------
    # Core logging method
    # ----------------------------------------------------------------------
    def _log(self, level: str, msg: str, extra: Optional[Dict[str, Any]] = None):
        """Format one record and print it as a JSON line."""
        if not self.is_enabled(level):
            return

        try:
            record = {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "level": level,
                "logger": self.name,
                "msg": str(msg),
            }

            fields = dict(self.context)
            if extra and isinstance(extra, dict):
                fields.update(extra)
            for k, v in fields.items():
                # core keys win
                if k not in record:
                    record[k] = v

            line = json.dumps(record, ensure_ascii=False, default=str)
            with _write_lock:
                print(line, file=sys.stdout, flush=True)

        except Exception as e:
            # Never crash the app due to logging errors
            print(f"[logger-error] failed to log: {e}", file=sys.stderr, flush=True)

    # ----------------------------------------------------------------------
    # Public convenience methods
    # ----------------------------------------------------------------------
    def debug(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("DEBUG", msg, extra)

    def info(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("INFO", msg, extra)

    def warning(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("WARNING", msg, extra)

    def error(self, msg: Any, extra: Optional[Dict[str, Any]] = None):
        if isinstance(msg, BaseException):
            err_str = f"{type(msg).__name__}: {msg}"
            tb = "".join(traceback.format_exception(type(msg), msg, msg.__traceback__))
            self._log("ERROR", err_str, dict(extra or {}, traceback=tb))
        else:
            self._log("ERROR", msg, extra)

    # ----------------------------------------------------------------------
    # Context binding
    # ----------------------------------------------------------------------
    def bind(self, **context: Any) -> "StructuredLogger":
        """
        Return a child logger with context permanently attached.
        Example:
            log = get_logger("subscriber").bind(message_id="abc", topic="orders")
        """
        merged = dict(self.context)
        merged.update(context)
        return StructuredLogger(name=self.name, level=self.level, context=merged)


# ----------------------------------------------------------------------
# Module-level logger registry (one logger per name)
# ----------------------------------------------------------------------

_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str = "pubsub", level: Optional[str] = None) -> StructuredLogger:
    """Get or create a logger; a given level updates an existing one."""
    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers[name] = StructuredLogger(name=name, level=level or "INFO")
    elif level:
        logger.level = level.upper()
    return logger


def set_level(level: str) -> None:
    """Apply one level to every registered logger."""
    for logger in _loggers.values():
        logger.level = level.upper()


__all__ = ["StructuredLogger", "get_logger", "set_level", "LEVELS"]

"""Structured JSON logging to a rotating file, tagged with trace ids."""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

TRACE_ID = "trace_id"
_MB = 1024 * 1024
_DEFAULT_MAX_SIZE_MB = 100
_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_logger = logging.getLogger("plato.applog")
_logger.propagate = False


@dataclass
class LogOptions:
    """Where the log file lives and how it is rotated; sizes in MB, ages in days."""

    log_dir: str = "/home/www/logs/applogs"
    filename: str = "default.log"
    max_size: int = 500
    max_backups: int = 10
    max_age: int = 1
    compress: bool = False
    caller_skip: int = 1


_options = LogOptions()


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds")
        body: dict[str, Any] = {
            "level": getattr(record, "plato_level", None) or _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "ts": ts,
            "caller": f"{os.path.basename(record.pathname)}:{record.lineno}",
            "msg": record.getMessage(),
        }
        body.update(getattr(record, "plato_fields", {}))
        if record.exc_info:
            body["error"] = self.formatException(record.exc_info)
        return json.dumps(body, default=str, ensure_ascii=False)


def _gz_name(name: str) -> str:
    return name + ".gz"


def _gz_rotate(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


class _RotatingFileHandler(RotatingFileHandler):
    def __init__(self, options: LogOptions) -> None:
        path = os.path.join(options.log_dir, options.filename)
        size = options.max_size if options.max_size > 0 else _DEFAULT_MAX_SIZE_MB
        super().__init__(path, maxBytes=size * _MB, backupCount=max(options.max_backups, 0), encoding="utf-8")
        self.max_age = options.max_age
        if options.compress:
            self.namer = _gz_name
            self.rotator = _gz_rotate

    def doRollover(self) -> None:
        super().doRollover()
        if self.max_age <= 0:
            return
        cutoff = time.time() - self.max_age * 86400
        base = Path(self.baseFilename)
        for old in base.parent.glob(base.name + ".*"):
            try:
                if old.stat().st_mtime < cutoff:
                    old.unlink()
            except OSError:
                continue


def setup_logger(options: Optional[LogOptions] = None, debug: bool = False) -> logging.Logger:
    """Configure the application logger; in debug mode it also writes to stdout."""
    global _options
    _options = options or LogOptions()
    os.makedirs(_options.log_dir, exist_ok=True)
    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
        handler.close()
    formatter = _JsonFormatter()
    file_handler = _RotatingFileHandler(_options)
    file_handler.setFormatter(formatter)
    if debug:
        file_handler.setLevel(logging.DEBUG)
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        stdout_handler.setLevel(logging.DEBUG)
        _logger.addHandler(stdout_handler)
        _logger.setLevel(logging.DEBUG)
    else:
        file_handler.setLevel(logging.INFO)
        _logger.setLevel(logging.INFO)
    _logger.addHandler(file_handler)
    return _logger


def get_trace_id(ctx: Any) -> str:
    """The trace id carried by ``ctx`` as 32 hex digits, or "" if it has no valid one.

    ``ctx`` may be a mapping or an object with a ``trace_id`` entry or attribute.
    """
    if ctx is None:
        return ""
    if isinstance(ctx, dict):
        value = ctx.get(TRACE_ID)
    else:
        value = getattr(ctx, TRACE_ID, None)
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value:032x}" if 0 < value < (1 << 128) else ""
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        value = bytes(value).hex()
    if not isinstance(value, str) or len(value) != 32:
        return ""
    try:
        number = int(value, 16)
    except ValueError:
        return ""
    return value.lower() if number else ""


def _emit(level: int, ctx: Any, message: str, fields: dict[str, Any], level_name: Optional[str] = None) -> None:
    payload = {TRACE_ID: get_trace_id(ctx), **fields}
    extra = {"plato_fields": payload, "plato_level": level_name}
    _logger.log(level, message, extra=extra, stacklevel=2 + _options.caller_skip)


def debug_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    _emit(logging.DEBUG, ctx, message, kwargs)


def info_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    _emit(logging.INFO, ctx, message, kwargs)


def warn_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    _emit(logging.WARNING, ctx, message, kwargs)


def error_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    _emit(logging.ERROR, ctx, message, kwargs)


def panic_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    """Log at the highest level, then raise RuntimeError."""
    _emit(logging.CRITICAL, ctx, message, kwargs, "panic")
    raise RuntimeError(message)


def fatal_ctx(ctx: Any, message: str, **kwargs: Any) -> None:
    """Log at the highest level, then exit with status 1."""
    _emit(logging.CRITICAL, ctx, message, kwargs, "fatal")
    for handler in _logger.handlers:
        handler.flush()
    raise SystemExit(1)
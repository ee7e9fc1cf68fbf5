"""
Logging configuration for Homecare.

Single 'homecare' logger; every module logs through a child of it
(logging.getLogger(__name__) under the homecare package).

  Log file : logs/homecare.log
  Rotation : 5 MB × 3 backups
  Level    : LOG_LEVEL env var (DEBUG / INFO / WARNING / ERROR / CRITICAL)
             defaults to INFO when unset

Usage
-----
    from homecare.logging_config import configure_logging, log_call

    # Once at startup (idempotent, safe to call multiple times):
    configure_logging()

    # On any function you want traced:
    @log_call
    def my_function(arg1, arg2):
        ...

    # Store mutations are traced per collection:
    @log_call
    def set_default(self, record_id): ...

Log format per line
-------------------
    2026-02-16 14:32:01 | DEBUG    | homecare.cli.main | CALL calendar_search | args=(query='clean')
    2026-02-16 14:32:01 | INFO     | homecare.cli.main | OK   calendar_search | 3ms
    2026-02-16 14:32:01 | INFO     | homecare.engine.store | OK   payment-methods.set_default | optimistic | 0ms
    2026-02-16 14:32:01 | ERROR    | homecare.engine.calendar | FAIL calendar.reschedule | ValueError: Invalid isoformat string: 'June' | 0ms
"""

import functools
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "homecare.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3


def configure_logging() -> logging.Logger:
    """
    Set up the homecare logger. Idempotent, safe to call on every CLI entry.
    Returns the configured logger.
    """
    _LOG_DIR.mkdir(exist_ok=True)

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger("homecare")

    # Guard: don't add duplicate handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.handlers.RotatingFileHandler(
        _LOG_FILE,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)

    return logger


def _call_name(func, args):
    """
    'set_default' for a plain function; 'payment-methods.set_default' when the
    first argument is a store, so every collection gets its own trace line.
    """
    store = args[0] if args else None
    resource_type = getattr(store, "resource_type", None)
    if isinstance(resource_type, str):
        return f"{resource_type}.{func.__name__}", args[1:]
    return func.__name__, args


def log_call(func):
    """
    Decorator: logs entry, clean exit, and exceptions for any function.

    - DEBUG on entry   : CALL <name> | args=(...)
    - INFO  on success : OK   <name> | <N>ms
                         OK   <name> | <status> | <N>ms   for store mutations
    - ERROR on failure : FAIL <name> | ExcType: message | <N>ms   (then re-raises)

    Lines go to the decorated function's module logger inside the homecare
    package, and to the 'homecare' logger otherwise.
    """
    module = func.__module__ or ""
    logger_name = module if module.startswith("homecare") else "homecare"

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(logger_name)
        name, shown = _call_name(func, args)
        start = time.perf_counter()

        parts = [repr(a) for a in shown] + [f"{k}={v!r}" for k, v in kwargs.items()]
        arg_str = ", ".join(parts) if parts else "—"
        logger.debug(f"CALL {name} | args=({arg_str})")

        try:
            result = func(*args, **kwargs)
            ms = int((time.perf_counter() - start) * 1000)
            status = getattr(result, "status", None)
            if isinstance(status, str):
                logger.info(f"OK   {name} | {status} | {ms}ms")
            else:
                logger.info(f"OK   {name} | {ms}ms")
            return result
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise

    return wrapper

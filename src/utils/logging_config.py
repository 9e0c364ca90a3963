"""Logging setup for the post-processing driver and embedding hosts.

Records go to stderr (G-code may be streaming on stdout) and, optionally,
to a log file.  Every line has the same shape::

    2025-10-28T13:45:12.345Z | INFO     | app=cooling job=benchy.gcode | Layer 3 ...

The ``key=value`` block holds the fields set with :func:`push_context`.
They live in a contextvar, so each thread or task sees its own.

Public API:
    setup_logging("DEBUG", log_file="cooling.log", context={"app": "cooling"})
    get_logger(name)
    set_level("WARNING")
    push_context(job="benchy.gcode") / pop_context(["job"]) / get_context()
    install_excepthook()

Calling setup_logging() again swaps out the handlers it installed before;
handlers attached to the root logger by anyone else are left alone.
"""

import contextvars
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


_LEVEL_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
}
_RESET = '\033[0m'

# Never mutated in place; push/pop always set a new dict
_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    'log_fields', default={}
)

_installed: List[logging.Handler] = []


class ContextFormatter(logging.Formatter):
    """``timestamp | LEVEL | key=value ... | message``, UTC timestamps.

    Parameters
    ----------
    color : bool
        Wrap the level name in ANSI color codes.
    """

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ts.strftime('%Y-%m-%dT%H:%M:%S.') + f"{ts.microsecond // 1000:03d}Z"

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        if self.color:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{level}{_RESET}"

        parts = [self.formatTime(record), level]
        fields = _fields.get()
        if fields:
            parts.append(' '.join(f"{k}={v}" for k, v in fields.items()))
        parts.append(record.getMessage())

        text = ' | '.join(parts)
        if record.exc_info:
            text += '\n' + self.formatException(record.exc_info)
        return text


def _level_number(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    color: bool = True,
    to_stderr: bool = True,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger.

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
    log_file : str, optional
        Also append records to this file (parent directories are created).
    color : bool
        Colored level names on stderr; ignored when stderr is not a terminal.
    to_stderr : bool
        Log to stderr, default True.
    context : dict, optional
        Fields pushed with :func:`push_context` before returning.

    Returns
    -------
    list[logging.Handler]
        The handlers now installed.

    Raises
    ------
    ValueError
        If log_level is not a known level name.
    """
    level = _level_number(log_level)
    root = logging.getLogger()

    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()

    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter(color=color and sys.stderr.isatty()))
        _installed.append(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(ContextFormatter())
        _installed.append(file_handler)

    for handler in _installed:
        root.addHandler(handler)
    root.setLevel(level)

    if context:
        push_context(**context)

    return list(_installed)


def get_logger(name: str) -> logging.Logger:
    """Get logger by name (typically __name__)."""
    return logging.getLogger(name)


def set_level(level: str) -> None:
    """Change the root logger level at runtime."""
    logging.getLogger().setLevel(_level_number(level))


def push_context(**kwargs) -> None:
    """Add or overwrite fields shown on every subsequent record.

    Examples
    --------
    >>> push_context(app="cooling", job="benchy.gcode")
    >>> logger.info("Started")  # → "... | app=cooling job=benchy.gcode | Started"
    """
    _fields.set({**_fields.get(), **kwargs})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Remove the named fields, or all of them when keys is None."""
    if keys is None:
        _fields.set({})
        return
    _fields.set({k: v for k, v in _fields.get().items() if k not in keys})


def get_context() -> Dict[str, Any]:
    """Copy of the current fields."""
    return dict(_fields.get())


def install_excepthook() -> None:
    """Log uncaught exceptions (except Ctrl+C) before the interpreter exits."""
    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = log_exception

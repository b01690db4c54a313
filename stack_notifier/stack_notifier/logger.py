"""
Logging setup for the notifier daemon.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

_LOG_INITIALISED = False
_CONSOLE_SINK_ID: Optional[int] = None


def _default_log_dir() -> Path:
    override = os.environ.get("STACK_NOTIFIER_LOG_DIR")
    if override:
        return Path(override)
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local")) / "Stack Notifier"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Logs" / "Stack Notifier"
    return Path.home() / ".local" / "state" / "stack-notifier"


def configure(log_path: Optional[Path] = None) -> None:
    """
    Configure loguru for the daemon.

    Installs a console sink and a rotating file sink exactly once. Later
    calls are no-ops; use ``set_verbose`` to change console verbosity.
    """
    global _LOG_INITIALISED, _CONSOLE_SINK_ID
    if _LOG_INITIALISED:
        return
    target = log_path or (_default_log_dir() / "daemon.log")
    target.parent.mkdir(parents=True, exist_ok=True)

    _logger.remove()
    if sys.stderr is not None:
        _CONSOLE_SINK_ID = _logger.add(sys.stderr, level="INFO", enqueue=True)
    _logger.add(
        target,
        level="DEBUG",
        rotation="10 MB",
        retention=5,
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )
    _LOG_INITIALISED = True


def set_verbose(verbose: bool) -> None:
    """Switch the console sink between INFO and DEBUG."""
    global _CONSOLE_SINK_ID
    configure()
    if sys.stderr is None:
        return
    if _CONSOLE_SINK_ID is not None:
        _logger.remove(_CONSOLE_SINK_ID)
    _CONSOLE_SINK_ID = _logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", enqueue=True)


def get_logger():
    """Return the shared logger instance."""
    configure()
    return _logger

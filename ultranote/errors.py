"""
Crash log for the command line.

An unexpected exception in a CLI command is appended with its traceback to
``ultranote-errors.log`` in the data directory the command ran against; the
user only sees a one-line message pointing there.
"""

import logging
import os
import traceback
from pathlib import Path
from typing import Optional

from .config import get_data_dir
from .types import utc_now

logger = logging.getLogger(__name__)

ERROR_LOG_NAME = "ultranote-errors.log"


def error_log_path(data_dir: Optional[Path] = None) -> Path:
    """The crash log of `data_dir`, or of the default data directory."""
    base = Path(data_dir).expanduser() if data_dir else get_data_dir()
    return base / ERROR_LOG_NAME


def _owner_only(path, flags):
    return os.open(path, flags, 0o600)


def format_entry(exc: BaseException, context: str = "") -> str:
    header = f"[{utc_now()}] {context}".rstrip()
    body = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'=' * 60}\n{header}\n{body}"


def log_exception(
    exc: BaseException,
    *,
    data_dir: Optional[Path] = None,
    context: str = "",
) -> Path:
    """
    Append an exception and its traceback to the crash log.

    Args:
        exc: The exception that occurred
        data_dir: Data directory the failing command used (--data-dir)
        context: Optional label, e.g. the program name

    Returns:
        Path to the crash log
    """
    path = error_log_path(data_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8", opener=_owner_only) as f:
            f.write(format_entry(exc, context))
    except OSError as e:
        logger.warning("Cannot write crash log %s: %s", path, e)
    return path

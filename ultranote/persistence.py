"""
Persistence gateway: the single JSON document on disk.

The document lives in one file. Every write first copies the current file to
``<name>.bak`` (one rolling generation) and then replaces the file atomically,
so neither a crash mid-write nor one bad write can destroy the only copy.
"""

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"

T = TypeVar("T")


class JsonFileStore:
    """
    Read/write/backup wrapper around the on-disk document.

    ``transaction()`` serializes read-modify-write cycles within one process.
    There is no cross-process lock: concurrent writers are reconciled by the
    merge engine, not by locking.
    """

    def __init__(self, path: Path):
        """
        Args:
            path: Path to the JSON document file
        """
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._path.with_name(self._path.name + BACKUP_SUFFIX)

    def exists(self) -> bool:
        return self._path.exists()

    def read_document(self) -> Optional[dict]:
        """
        Load the document.

        Returns:
            The document, or None if the file is missing, unreadable,
            or does not hold a JSON object
        """
        if not self._path.exists():
            return None
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Read error for %s: %s", self._path, e)
            return None
        if not isinstance(data, dict):
            logger.error("Document in %s is not a JSON object", self._path)
            return None
        return data

    def read_backup(self) -> Optional[dict]:
        """Load the previous generation, if any."""
        try:
            with open(self.backup_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def write_document(self, document: dict) -> bool:
        """
        Persist the document: backup the current file, then atomic replace.

        Returns:
            True on success, False if anything failed (logged)
        """
        tmp = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._path.exists():
                shutil.copy2(self._path, self.backup_path)
            tmp = NamedTemporaryFile(
                "w", encoding="utf-8", dir=str(self._path.parent),
                prefix=f".{self._path.name}.", suffix=".tmp", delete=False,
            )
            json.dump(document, tmp, ensure_ascii=False, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp.close()
            os.replace(tmp.name, self._path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Write error for %s: %s", self._path, e)
            return False
        finally:
            if tmp is not None:
                tmp.close()
                if os.path.exists(tmp.name):
                    try:
                        os.unlink(tmp.name)
                    except OSError:
                        pass

    def transaction(self, fn: Callable[[Optional[dict]], T]) -> T:
        """Run ``fn(current_document)`` while holding the in-process write lock."""
        with self._lock:
            return fn(self.read_document())

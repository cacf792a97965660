"""
In-memory document state owned by one client session.

All reads and mutations of the session's document go through DocumentState,
so the boundary of what is sent to and received from the server is explicit:
``snapshot()`` is what a write pushes, ``merge_inbound()`` and ``adopt()`` are
how server data comes back in.
"""

import copy
import logging
import threading
from typing import Any, Callable, Optional

from .merge import Orientation, merge_documents
from .types import (
    COLLECTIONS,
    DEFAULT_ACTIVITY_LIMIT,
    DELETED_AT,
    RECORD_COLLECTIONS,
    ensure_collections,
    is_deleted,
    is_purged,
    new_id,
    purge_stub,
    seed_document,
    utc_now,
)

logger = logging.getLogger(__name__)

# Fields a caller may not overwrite through update()
_PROTECTED_FIELDS = frozenset({"id", "createdAt", "deletedAt", "purgedAt"})

Listener = Callable[[str, str, str], None]


class RecordNotFound(KeyError):
    """No live record with that id exists in the collection."""


class DocumentState:
    """
    Thread-safe owner of a session's document.

    Mutations stamp timestamps, append an activity entry, mark the state
    dirty and notify listeners with ``(action, collection, record_id)``.
    The debounced writer subscribes as a listener.
    """

    def __init__(
        self,
        document: Optional[dict] = None,
        *,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
        clock: Callable[[], str] = utc_now,
    ):
        self._lock = threading.RLock()
        self._doc = ensure_collections(
            copy.deepcopy(document) if document is not None else seed_document()
        )
        self._activity_limit = activity_limit
        self._clock = clock
        self._dirty = False
        self._generation = 0
        self._listeners: list[Listener] = []

    # -------------------------------------------------------------------------
    # Listeners and dirty tracking
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def generation(self) -> int:
        """Counter bumped by every local mutation."""
        return self._generation

    def _changed(self, action: str, collection: str, record_id: str) -> None:
        self._dirty = True
        self._generation += 1
        for listener in list(self._listeners):
            try:
                listener(action, collection, record_id)
            except Exception as e:
                logger.warning("Document listener failed: %s", e)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def version(self) -> int:
        with self._lock:
            return self._doc.get("version", 1)

    @property
    def settings(self) -> dict:
        with self._lock:
            return dict(self._doc["settings"])

    def snapshot(self) -> dict:
        """Deep copy of the whole document, as sent to the server."""
        with self._lock:
            return copy.deepcopy(self._doc)

    def records(self, collection: str, *, include_deleted: bool = False) -> list[dict]:
        """Records of a collection; purged records are never returned."""
        self._check_collection(collection)
        with self._lock:
            return [
                dict(r) for r in self._doc[collection]
                if not is_purged(r) and (include_deleted or not is_deleted(r))
            ]

    def trash(self, collection: str) -> list[dict]:
        """Soft-deleted records that can still be restored."""
        self._check_collection(collection)
        with self._lock:
            return [dict(r) for r in self._doc[collection] if is_deleted(r) and not is_purged(r)]

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        with self._lock:
            record = self._find(collection, record_id)
            if record is None or is_purged(record):
                return None
            return dict(record)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(self, collection: str, **fields: Any) -> dict:
        """Create a record with a fresh id and createdAt = updatedAt = now."""
        self._check_record_collection(collection)
        now = self._clock()
        record = {k: v for k, v in fields.items() if k not in _PROTECTED_FIELDS}
        record["id"] = fields.get("id") or new_id()
        record["createdAt"] = now
        record["updatedAt"] = now
        with self._lock:
            if self._find(collection, record["id"]) is not None:
                raise ValueError(f"Duplicate id in {collection}: {record['id']}")
            self._doc[collection].append(record)
            self._log(now, "create", collection, record)
            self._changed("create", collection, record["id"])
            return dict(record)

    def update(self, collection: str, record_id: str, patch: dict) -> dict:
        """Shallow-assign `patch` and refresh updatedAt."""
        with self._lock:
            record = self._require(collection, record_id)
            now = self._clock()
            record.update({k: v for k, v in patch.items() if k not in _PROTECTED_FIELDS})
            record["updatedAt"] = now
            self._log(now, "update", collection, record)
            self._changed("update", collection, record_id)
            return dict(record)

    def delete(self, collection: str, record_id: str) -> dict:
        """Soft delete: the record stays, marked with deletedAt."""
        with self._lock:
            record = self._require(collection, record_id)
            now = self._clock()
            record[DELETED_AT] = now
            record["updatedAt"] = now
            self._log(now, "delete", collection, record)
            self._changed("delete", collection, record_id)
            return dict(record)

    def restore(self, collection: str, record_id: str) -> dict:
        """Undo a soft delete. The restore is a newer mutation and wins merges."""
        with self._lock:
            record = self._require(collection, record_id, allow_deleted=True)
            now = self._clock()
            record.pop(DELETED_AT, None)
            record["updatedAt"] = now
            self._log(now, "restore", collection, record)
            self._changed("restore", collection, record_id)
            return dict(record)

    def purge(self, collection: str, record_id: str) -> None:
        """Hard delete: replace the record with a terminal purge stub."""
        with self._lock:
            self._purge_one(collection, record_id)

    def empty_trash(self, collection: str) -> int:
        """Purge every soft-deleted record of a collection. Returns the count."""
        self._check_record_collection(collection)
        with self._lock:
            ids = [r["id"] for r in self._doc[collection] if is_deleted(r) and not is_purged(r)]
            for record_id in ids:
                self._purge_one(collection, record_id)
            return len(ids)

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            self._doc["settings"][key] = value
            self._changed("setting", "settings", key)

    def _purge_one(self, collection: str, record_id: str) -> None:
        record = self._require(collection, record_id, allow_deleted=True)
        now = self._clock()
        items = self._doc[collection]
        items[items.index(record)] = purge_stub(record, now)
        self._log(now, "purge", collection, record)
        self._changed("purge", collection, record_id)

    # -------------------------------------------------------------------------
    # Inbound server data
    # -------------------------------------------------------------------------

    def merge_inbound(self, remote: dict, orientation: Orientation = Orientation.CLIENT) -> bool:
        """
        Merge a server snapshot into local state.

        Client orientation keeps local settings over the server's. The first
        load of a session that started offline passes server orientation
        (local is the base, the remote snapshot wins settings) since local
        settings then hold only defaults.

        Does not mark the state dirty: nothing new needs to be pushed.

        Returns:
            True if any collection or setting changed
        """
        with self._lock:
            merged = merge_documents(
                self._doc, remote, orientation,
                activity_limit=self._activity_limit,
            )
            ensure_collections(merged)
            changed = False
            for name in COLLECTIONS + ("settings",):
                if merged.get(name) != self._doc.get(name):
                    logger.debug("Inbound changes in %s", name)
                    changed = True
            self._doc = merged
            return changed

    def adopt(self, document: dict, generation: Optional[int] = None) -> bool:
        """
        Take the server's merged result of our own write as local truth.

        If local mutations happened after the written snapshot (its
        `generation`), they are kept by merging the result in instead of
        replacing, and the state stays dirty for the next write.

        Returns:
            True if local state was replaced and is now clean
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                merged = merge_documents(
                    self._doc, document, Orientation.CLIENT,
                    activity_limit=self._activity_limit,
                )
                self._doc = ensure_collections(merged)
                return False
            self._doc = ensure_collections(copy.deepcopy(document))
            self._dirty = False
            return True

    def overlay_fields(self, collection: str, record_id: str, fields: dict) -> bool:
        """Write unsaved editor fields into a record without stamping it."""
        with self._lock:
            record = self._find(collection, record_id)
            if record is None or is_purged(record):
                return False
            record.update({k: v for k, v in fields.items() if k not in _PROTECTED_FIELDS})
            return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_collection(self, collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")

    def _check_record_collection(self, collection: str) -> None:
        if collection not in RECORD_COLLECTIONS:
            raise ValueError(f"Not a record collection: {collection!r}")

    def _find(self, collection: str, record_id: str) -> Optional[dict]:
        self._check_collection(collection)
        for record in self._doc[collection]:
            if record.get("id") == record_id:
                return record
        return None

    def _require(self, collection: str, record_id: str, *, allow_deleted: bool = False) -> dict:
        self._check_record_collection(collection)
        record = self._find(collection, record_id)
        if record is None or is_purged(record) or (is_deleted(record) and not allow_deleted):
            raise RecordNotFound(f"{collection}/{record_id}")
        return record

    def _log(self, now: str, action: str, collection: str, record: dict) -> None:
        entry = {
            "id": new_id(),
            "createdAt": now,
            "action": action,
            "collection": collection,
            "recordId": record["id"],
        }
        title = record.get("title") or record.get("name")
        if title and action != "purge":
            entry["title"] = title
        log = self._doc["activity"]
        log.append(entry)
        if len(log) > self._activity_limit:
            del log[: len(log) - self._activity_limit]

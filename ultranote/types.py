"""
Data types for the synchronized document.

A document is a plain JSON object: a version counter, a settings map and a
fixed set of record collections. Records are plain dicts that share a small
contract (id, createdAt, updatedAt, deletedAt, purgedAt).
"""

import secrets
import string
from datetime import datetime, timezone
from typing import Any, Optional


# Record collections carried by every document, in display order
COLLECTIONS = (
    "notes",
    "tasks",
    "projects",
    "templates",
    "links",
    "monthly",
    "notebooks",
    "activity",
)

# Collections merged by record recency (activity has its own rules)
RECORD_COLLECTIONS = tuple(c for c in COLLECTIONS if c != "activity")

# Tombstone markers. Never inherited from the losing side of a merge.
DELETED_AT = "deletedAt"
PURGED_AT = "purgedAt"
TOMBSTONE_FIELDS = frozenset({DELETED_AT, PURGED_AT})

# Fields a purge stub keeps; everything else is dropped
PURGE_STUB_FIELDS = ("id", "createdAt", "updatedAt", DELETED_AT, PURGED_AT)

DEFAULT_ACTIVITY_LIMIT = 200

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> str:
    """Current UTC timestamp in ISO-8601 with millisecond precision and a Z suffix.

    Matches what browsers produce with ``Date.prototype.toISOString``, so
    records written by any client sort consistently.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles 'Z' and '+00:00' suffixes as well as naive timestamps,
    which are taken to be UTC.
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _as_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return parse_utc_timestamp(value)
    except (ValueError, OverflowError):
        return None


def effective_recency(record: Optional[dict]) -> datetime:
    """Recency used to arbitrate merges.

    ``updatedAt`` if present, else ``createdAt``; missing or unparseable
    timestamps count as the epoch.
    """
    if not record:
        return EPOCH
    for key in ("updatedAt", "createdAt"):
        if record.get(key):
            return _as_datetime(record[key]) or EPOCH
    return EPOCH


def earlier_timestamp(a: Optional[str], b: Optional[str]) -> Optional[str]:
    """Return whichever of two timestamp strings is earlier (non-null preferred)."""
    if not a:
        return b
    if not b:
        return a
    da, db = _as_datetime(a), _as_datetime(b)
    if da is None:
        return b
    if db is None:
        return a
    return b if db < da else a


def is_deleted(record: dict) -> bool:
    return bool(record.get(DELETED_AT))


def is_purged(record: dict) -> bool:
    return bool(record.get(PURGED_AT))


def new_id() -> str:
    """Short random record id (8 lowercase alphanumerics)."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))


def purge_stub(record: dict, now: Optional[str] = None) -> dict:
    """Reduce a record to its terminal tombstone."""
    now = now or utc_now()
    stub = {k: record[k] for k in PURGE_STUB_FIELDS if k in record}
    stub.setdefault(DELETED_AT, now)
    stub[PURGED_AT] = record.get(PURGED_AT) or now
    stub["updatedAt"] = now
    return stub


def empty_document() -> dict:
    """A document with every collection present and no records."""
    doc: dict[str, Any] = {"version": 1, "settings": {}}
    for name in COLLECTIONS:
        doc[name] = []
    return doc


def ensure_collections(doc: dict) -> dict:
    """Fill in any missing collections and default settings, in place."""
    if not isinstance(doc.get("settings"), dict):
        doc["settings"] = {}
    for name in COLLECTIONS:
        if not isinstance(doc.get(name), list):
            doc[name] = []
    if not isinstance(doc.get("version"), int):
        doc["version"] = 1
    doc["settings"].setdefault("theme", "dark")
    return doc


DAILY_TEMPLATE = "# Top 3\n- [ ] \n- [ ] \n- [ ] \n\n## Tasks\n\n## Journal\n\n## Wins\n"


def seed_document() -> dict:
    """The document a fresh install starts from."""
    now = utc_now()
    doc = {
        "version": 1,
        "settings": {
            "rollover": True,
            "seenTip": False,
            "autoCarryTasks": True,
            "autoReload": False,
            "dailyTemplate": DAILY_TEMPLATE,
            "theme": "dark",
        },
        "projects": [
            {"id": "p1", "name": "Sample Project", "createdAt": now},
        ],
        "notes": [
            {
                "id": "n1", "title": "Daily", "type": "daily",
                "content": "# Top 3\n- [ ] Example task A\n- [ ] Example task B\n",
                "tags": [], "projectId": None, "dateIndex": now[:10],
                "pinned": False, "createdAt": now, "updatedAt": now,
            },
            {
                "id": "n2", "title": "Project Plan - Sample Project", "type": "note",
                "content": "## Goals\n- Define MVP\n\n## Next\n- [ ] Create first note\n",
                "tags": ["plan"], "projectId": "p1", "dateIndex": None,
                "pinned": False, "createdAt": now, "updatedAt": now,
            },
        ],
        "tasks": [
            {
                "id": "t1", "title": "Try adding a task on Today page", "status": "TODO",
                "due": None, "noteId": "n1", "projectId": None,
                "createdAt": now, "completedAt": None,
            },
        ],
        "templates": [
            {"id": "tpl1", "name": "Meeting Notes", "createdAt": now,
             "content": "# Meeting: [Title]\n\n## Agenda\n- \n\n## Action Items\n- [ ] \n"},
            {"id": "tpl2", "name": "Weekly Review", "createdAt": now,
             "content": "# Week of [Date]\n\n## Wins\n- \n\n## Next Week Focus\n- [ ] \n"},
        ],
        "links": [
            {"id": "l1", "title": "Example", "url": "https://example.com", "tags": ["ref"],
             "pinned": True, "status": "NEW", "createdAt": now, "updatedAt": now},
        ],
        "monthly": [],
        "notebooks": [],
        "activity": [],
    }
    return doc

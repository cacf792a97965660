"""
Record merge engine.

Reconciles two versions of a document (or of one collection) into one,
by record id, using last-writer-wins on effective recency and tombstone
rules. Used by the server when a client writes, and by clients when they
pull the server document.

Every function here is pure: inputs are never mutated and the result is
built from copies, so the same inputs always give the same output.
"""

from enum import Enum
from typing import Any, Iterable, Optional

from .types import (
    DEFAULT_ACTIVITY_LIMIT,
    DELETED_AT,
    PURGED_AT,
    RECORD_COLLECTIONS,
    TOMBSTONE_FIELDS,
    earlier_timestamp,
    effective_recency,
    is_deleted,
    is_purged,
)


class DeletePolicy(str, Enum):
    """How a tombstone on one side competes with a live record on the other."""

    # Deletion wins only if the deleting side is not older than the live side
    RECENCY = "recency"
    # Deletion always wins once set
    STICKY = "sticky"


class Orientation(str, Enum):
    """Which side of a document merge is authoritative for settings."""

    # base = on-disk document, incoming = client payload
    SERVER = "server"
    # base = local in-memory document, incoming = server snapshot
    CLIENT = "client"


def _records(value: Any) -> list[dict]:
    """Usable records of a collection: dicts with a non-empty id."""
    if not isinstance(value, list):
        return []
    return [r for r in value if isinstance(r, dict) and r.get("id") not in (None, "")]


def _overlay(loser: dict, winner: dict) -> dict:
    """Shallow-merge winner over loser; tombstones come from the winner only."""
    merged = {k: v for k, v in loser.items() if k not in TOMBSTONE_FIELDS}
    merged.update(winner)
    return merged


def _newer_over_older(base: dict, incoming: dict) -> dict:
    """Strictly newer side wins; on a tie base wins."""
    if effective_recency(incoming) > effective_recency(base):
        return _overlay(base, incoming)
    return _overlay(incoming, base)


def merge_record(
    base: dict,
    incoming: dict,
    *,
    delete_policy: DeletePolicy = DeletePolicy.RECENCY,
) -> dict:
    """Resolve one record present on both sides."""
    # Purge is terminal on either side
    if is_purged(base) or is_purged(incoming):
        if is_purged(base) and is_purged(incoming):
            stub = dict(base)
            stub[PURGED_AT] = earlier_timestamp(base[PURGED_AT], incoming[PURGED_AT])
            return stub
        return dict(base) if is_purged(base) else dict(incoming)

    base_deleted, incoming_deleted = is_deleted(base), is_deleted(incoming)

    if base_deleted and incoming_deleted:
        merged = _newer_over_older(base, incoming)
        merged[DELETED_AT] = earlier_timestamp(base[DELETED_AT], incoming[DELETED_AT])
        return merged

    if base_deleted != incoming_deleted:
        deleting, live = (base, incoming) if base_deleted else (incoming, base)
        if (
            delete_policy is DeletePolicy.STICKY
            or effective_recency(deleting) >= effective_recency(live)
        ):
            return _overlay(live, deleting)

    return _newer_over_older(base, incoming)


def merge_collection(
    base: Iterable[dict],
    incoming: Iterable[dict],
    *,
    delete_policy: DeletePolicy = DeletePolicy.RECENCY,
) -> list[dict]:
    """
    Merge two versions of the same collection by record id.

    Args:
        base: Records already held (on-disk or local in-memory)
        incoming: Records arriving from the other side
        delete_policy: Tombstone-versus-live rule, see DeletePolicy

    Returns:
        The union of ids: base ids in base order, then ids new in incoming.
    """
    out: dict[Any, dict] = {}
    for record in _records(base):
        out[record["id"]] = dict(record)
    for record in _records(incoming):
        current = out.get(record["id"])
        if current is None:
            out[record["id"]] = dict(record)
        else:
            out[record["id"]] = merge_record(current, record, delete_policy=delete_policy)
    return list(out.values())


def _activity_key(entry: dict) -> tuple:
    return (effective_recency(entry), str(entry["id"]))


def merge_activity(
    base: Iterable[dict],
    incoming: Iterable[dict],
    limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> list[dict]:
    """Append-only union of two activity logs, oldest first, capped to the newest `limit`."""
    out: dict[Any, dict] = {}
    for entry in _records(base) + _records(incoming):
        out.setdefault(entry["id"], dict(entry))
    entries = sorted(out.values(), key=_activity_key)
    if limit is not None and limit >= 0:
        entries = entries[-limit:] if limit else []
    return entries


def merge_settings(
    base: Optional[dict],
    incoming: Optional[dict],
    orientation: Orientation,
) -> dict:
    """
    Shallow-merge two settings maps.

    Server orientation: the client payload (incoming) wins for every key it
    supplies. Client orientation: local toggles (base) win over the server
    snapshot (incoming).
    """
    base = base if isinstance(base, dict) else {}
    incoming = incoming if isinstance(incoming, dict) else {}
    if orientation is Orientation.SERVER:
        return {**base, **incoming}
    return {**incoming, **base}


def _version(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def merge_documents(
    base: Optional[dict],
    incoming: Optional[dict],
    orientation: Orientation,
    *,
    delete_policy: DeletePolicy = DeletePolicy.RECENCY,
    activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> dict:
    """
    Merge two whole documents collection by collection.

    Collections go through merge_collection, activity through merge_activity,
    settings through merge_settings. The version is the larger of the two.
    Unknown top-level keys: in server orientation the client's value wins;
    in client orientation remote keys are only added where local lacks them.
    """
    base = base if isinstance(base, dict) else {}
    incoming = incoming if isinstance(incoming, dict) else {}

    known = set(RECORD_COLLECTIONS) | {"activity", "settings", "version"}
    merged: dict[str, Any] = {}
    if orientation is Orientation.SERVER:
        extras = {**base, **incoming}
    else:
        extras = {**incoming, **base}
    for key, value in extras.items():
        if key not in known:
            merged[key] = value

    merged["version"] = max(_version(base.get("version")), _version(incoming.get("version"))) or 1
    merged["settings"] = merge_settings(base.get("settings"), incoming.get("settings"), orientation)
    for name in RECORD_COLLECTIONS:
        merged[name] = merge_collection(
            base.get(name, []), incoming.get(name, []), delete_policy=delete_policy
        )
    merged["activity"] = merge_activity(
        base.get("activity", []), incoming.get("activity", []), activity_limit
    )
    return merged

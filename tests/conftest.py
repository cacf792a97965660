"""
Shared pytest fixtures for UltraNote tests.

Provides an isolated data directory, a Flask test client, and an in-memory
transport so sync tests never touch the network.
"""

import copy
from pathlib import Path

import pytest

from ultranote.config import StoreConfig
from ultranote.merge import DeletePolicy, Orientation, merge_documents
from ultranote.persistence import JsonFileStore
from ultranote.server import create_app
from ultranote.types import ensure_collections


def ts(second: int, minute: int = 0) -> str:
    """Deterministic timestamp: 2024-01-01T00:MM:SS.000Z"""
    return f"2024-01-01T00:{minute:02d}:{second:02d}.000Z"


def make_record(id: str, updated: int | None = None, *, created: int = 0, **fields) -> dict:
    """Record with createdAt/updatedAt taken from ts()."""
    record = {"id": id, "createdAt": ts(created)}
    if updated is not None:
        record["updatedAt"] = ts(updated)
    record.update(fields)
    return record


class FakeTransport:
    """
    In-memory stand-in for DocumentClient.

    Holds a server-side document and applies the same merge the real server
    does on push. Set `fail_push` / `fail_fetch` to simulate outages.
    """

    def __init__(self, document: dict | None = None):
        self.document = copy.deepcopy(document) if document else None
        self.fetches = 0
        self.pushes: list[dict] = []
        self.fail_fetch = False
        self.fail_push = False
        self.on_push = None
        self.closed = False

    def fetch_document(self):
        self.fetches += 1
        if self.fail_fetch:
            return None
        return copy.deepcopy(self.document) if self.document else {}

    def push_document(self, document):
        self.pushes.append(copy.deepcopy(document))
        if self.on_push is not None:
            self.on_push()
        if self.fail_push:
            return None
        merged = merge_documents(
            self.document or {}, document, Orientation.SERVER,
            delete_policy=DeletePolicy.RECENCY,
        )
        merged["version"] = merged["version"] + 1
        self.document = ensure_collections(merged)
        return copy.deepcopy(self.document)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment."""
    for name in ("PORT", "ULTRANOTE_SERVER_URL", "ULTRANOTE_VERBOSE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ULTRANOTE_DATA_DIR", str(tmp_path / "home"))


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def config(data_dir) -> StoreConfig:
    return StoreConfig(path=data_dir)


@pytest.fixture
def store(config) -> JsonFileStore:
    return JsonFileStore(config.data_path)


@pytest.fixture
def app(config):
    flask_app = create_app(config)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def http(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def transport():
    return FakeTransport()

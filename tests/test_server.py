"""Tests for the /api routes, via Flask's test client."""

from unittest.mock import patch

from ultranote.config import StoreConfig
from ultranote.merge import DeletePolicy
from ultranote.server import create_app
from tests.conftest import make_record, ts


class TestGetDb:

    def test_fresh_install_returns_empty_object(self, http):
        resp = http.get("/api/db")

        assert resp.status_code == 200
        assert resp.get_json() == {}

    def test_returns_on_disk_document(self, http, store):
        store.write_document({"version": 5, "notes": [make_record("n1", 1)]})

        resp = http.get("/api/db")

        assert resp.get_json()["version"] == 5
        assert resp.get_json()["notes"][0]["id"] == "n1"


class TestPostDb:

    def test_non_object_body_rejected(self, http, store):
        resp = http.post("/api/db", json="not an object")

        assert resp.status_code == 400
        assert "error" in resp.get_json()
        assert store.read_document() is None

    def test_array_body_rejected(self, http):
        assert http.post("/api/db", json=[1, 2]).status_code == 400

    def test_invalid_json_rejected(self, http):
        resp = http.post("/api/db", data="{oops", content_type="application/json")

        assert resp.status_code == 400

    def test_first_write_persists_and_bumps_version(self, http, store):
        resp = http.post("/api/db", json={"version": 1, "notes": [make_record("n1", 1)]})

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["ok"] is True
        assert body["db"]["version"] == 2
        assert body["db"]["tasks"] == []
        assert store.read_document() == body["db"]

    def test_merges_with_on_disk_document(self, http, store):
        store.write_document({
            "version": 3,
            "settings": {"theme": "dark", "rollover": True},
            "tasks": [make_record("t-a", 1, title="from A")],
        })

        resp = http.post("/api/db", json={
            "version": 2,
            "settings": {"theme": "light"},
            "tasks": [make_record("t-b", 2, title="from B")],
        })

        db = resp.get_json()["db"]
        assert [t["id"] for t in db["tasks"]] == ["t-a", "t-b"]
        assert db["settings"] == {"theme": "light", "rollover": True}
        assert db["version"] == 4

    def test_older_write_does_not_clobber_newer_record(self, http, store):
        store.write_document({"tasks": [make_record("t1", 5, status="DONE")]})

        db = http.post("/api/db", json={"tasks": [make_record("t1", 2, status="TODO")]}).get_json()["db"]

        assert db["tasks"][0]["status"] == "DONE"

    def test_delete_propagates(self, http, store):
        store.write_document({"notes": [make_record("n1", 2, title="x")]})

        db = http.post("/api/db", json={
            "notes": [make_record("n1", 3, title="x", deletedAt=ts(3))],
        }).get_json()["db"]

        assert db["notes"][0]["deletedAt"] == ts(3)

    def test_write_keeps_backup(self, http, store):
        http.post("/api/db", json={"version": 1})
        http.post("/api/db", json={"version": 1})

        assert store.read_backup()["version"] == 2
        assert store.read_document()["version"] == 3

    def test_persist_failure_returns_500(self, http, store):
        store.write_document({"version": 7})

        with patch("ultranote.persistence.JsonFileStore.write_document", return_value=False):
            resp = http.post("/api/db", json={"version": 7})

        assert resp.status_code == 500
        assert "error" in resp.get_json()
        assert store.read_document() == {"version": 7}

    def test_body_over_limit_rejected(self, data_dir):
        config = StoreConfig(path=data_dir)
        config.server.max_body_bytes = 1024
        client = create_app(config).test_client()

        resp = client.post("/api/db", json={"notes": [{"id": "n1", "content": "x" * 4096}]})

        assert resp.status_code == 413
        assert resp.get_json() == {"error": "Request body too large"}

    def test_sticky_delete_policy_from_config(self, data_dir):
        config = StoreConfig(path=data_dir)
        config.server.delete_policy = DeletePolicy.STICKY
        app = create_app(config)
        app.extensions["ultranote.store"].write_document(
            {"notes": [make_record("n1", 1, deletedAt=ts(1))]}
        )

        db = app.test_client().post(
            "/api/db", json={"notes": [make_record("n1", 5, title="restored")]}
        ).get_json()["db"]

        assert db["notes"][0]["deletedAt"] == ts(1)


class TestHealth:

    def test_health_reports_version(self, http, store):
        store.write_document({"version": 9})

        body = http.get("/api/health").get_json()

        assert body["status"] == "ok"
        assert body["version"] == 9

    def test_health_without_document(self, http):
        assert http.get("/api/health").get_json()["version"] == 0

"""Tests for the on-disk document gateway."""

import json
import threading

from ultranote.persistence import JsonFileStore


class TestReadWrite:

    def test_missing_file_reads_none(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")

        assert store.read_document() is None
        assert not store.exists()

    def test_write_then_read(self, tmp_path):
        store = JsonFileStore(tmp_path / "nested" / "data.json")

        assert store.write_document({"version": 2, "notes": [{"id": "n1", "title": "é"}]})
        assert store.read_document() == {"version": 2, "notes": [{"id": "n1", "title": "é"}]}

    def test_corrupt_file_reads_none(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{not json", encoding="utf-8")

        assert JsonFileStore(path).read_document() is None

    def test_non_object_reads_none(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        assert JsonFileStore(path).read_document() is None

    def test_unserializable_document_fails_cleanly(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")
        store.write_document({"version": 1})

        assert store.write_document({"bad": object()}) is False
        # Previous content untouched and no temp files left behind
        assert store.read_document() == {"version": 1}
        assert sorted(p.name for p in tmp_path.iterdir()) == ["data.json", "data.json.bak"]


class TestBackup:

    def test_first_write_has_no_backup(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")
        store.write_document({"version": 1})

        assert not store.backup_path.exists()
        assert store.read_backup() is None

    def test_backup_holds_previous_generation(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")
        store.write_document({"version": 1})
        store.write_document({"version": 2})
        store.write_document({"version": 3})

        assert store.backup_path.name == "data.json.bak"
        assert store.read_backup() == {"version": 2}
        assert json.loads(store.path.read_text(encoding="utf-8")) == {"version": 3}


class TestTransaction:

    def test_transaction_passes_current_document(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")
        store.write_document({"version": 4})

        assert store.transaction(lambda doc: doc["version"]) == 4

    def test_concurrent_increments_serialize(self, tmp_path):
        store = JsonFileStore(tmp_path / "data.json")
        store.write_document({"version": 0})

        def bump(doc):
            store.write_document({"version": doc["version"] + 1})

        threads = [threading.Thread(target=store.transaction, args=(bump,)) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.read_document() == {"version": 10}

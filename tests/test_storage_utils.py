import os
import time

from models import Artifact
from storage_utils import ArtifactStore


def _svg(key, body=b"<svg>1</svg>"):
    return Artifact(content_hash=key, mime_type="image/svg+xml", payload=body)


class TestArtifactStore:
    def test_save_and_get(self, tmp_path):
        store = ArtifactStore(tmp_path)
        path = store.save(_svg("abc"))
        assert path.name.startswith("artifact-abc-") and path.suffix == ".svg"
        got = store.get("abc")
        assert got.payload == b"<svg>1</svg>"
        assert got.mime_type == "image/svg+xml"

    def test_same_hash_saved_once(self, tmp_path):
        store = ArtifactStore(tmp_path)
        first = store.save(_svg("abc"))
        second = store.save(_svg("abc"))
        assert first == second
        assert len(list(tmp_path.iterdir())) == 1

    def test_get_missing(self, tmp_path):
        assert ArtifactStore(tmp_path).get("nothing") is None

    def test_table_extension(self, tmp_path):
        store = ArtifactStore(tmp_path)
        path = store.save(Artifact(content_hash="t1", mime_type="text/html", payload=b"<table/>"))
        assert path.suffix == ".html"
        assert store.get("t1").mime_type == "text/html"

    def test_list_files_newest_first(self, tmp_path):
        store = ArtifactStore(tmp_path)
        old = store.save(_svg("old"))
        new = store.save(_svg("new"))
        past = time.time() - 3600
        os.utime(old, (past, past))
        files = store.list_files()
        assert [f["hash"] for f in files] == ["new", "old"]
        assert files[0]["path"] == str(new)
        assert files[0]["size"] == len(b"<svg>1</svg>")

    def test_purge_removes_only_expired(self, tmp_path):
        store = ArtifactStore(tmp_path)
        old = store.save(_svg("old"))
        store.save(_svg("fresh"))
        past = time.time() - 2 * 24 * 3600
        os.utime(old, (past, past))
        assert store.purge(24 * 3600) == 1
        assert store.get("old") is None
        assert store.get("fresh") is not None

    def test_ignores_foreign_files(self, tmp_path):
        (tmp_path / "notes.txt").write_text("hi", encoding="utf-8")
        store = ArtifactStore(tmp_path)
        assert store.list_files() == []
        assert store.purge(0) == 0

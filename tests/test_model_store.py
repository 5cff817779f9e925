import hashlib
import logging

import pytest

from cryptopredict.errors import ArtifactNotFoundError, ModelStoreError
from cryptopredict.storage.model_store import ModelStore

logger = logging.getLogger("tests.model_store")


class RecordingMirror:
    """In-memory stand-in for the S3 mirror."""

    def __init__(self, fail_push: bool = False) -> None:
        self.objects = {}
        self.fail_push = fail_push

    def push(self, local_path, name):
        if self.fail_push:
            raise RuntimeError("bucket unavailable")
        self.objects[name] = local_path.read_bytes()

    def pull(self, name, local_path):
        if name not in self.objects:
            return False
        local_path.write_bytes(self.objects[name])
        return True

    def discard(self, name):
        self.objects.pop(name, None)


@pytest.fixture
def store(tmp_path):
    return ModelStore(tmp_path / "store", logger)


def test_write_then_read_returns_same_bytes(store):
    store.write("a.bin", b"\x00\x01payload")
    assert store.read("a.bin") == b"\x00\x01payload"
    assert store.list_files() == ["a.bin"]


def test_write_replaces_existing_content(store):
    store.write("a.bin", b"first")
    store.write("a.bin", b"second")
    assert store.read("a.bin") == b"second"


def test_read_missing_raises_not_found(store):
    with pytest.raises(ArtifactNotFoundError):
        store.read("missing.bin")


def test_remove_is_idempotent(store):
    store.write("a.bin", b"x")
    store.remove("a.bin")
    store.remove("a.bin")
    assert not store.exists("a.bin")


def test_checksum_is_sha256():
    assert ModelStore.compute_checksum(b"abc") == hashlib.sha256(b"abc").hexdigest()
    assert len(ModelStore.compute_checksum(b"")) == 64


@pytest.mark.parametrize("name", ["", "../escape.bin", "nested/file.bin"])
def test_rejects_non_plain_names(store, name):
    with pytest.raises(ValueError):
        store.path_for(name)


def test_failed_writer_keeps_previous_bytes_and_no_staging_files(store):
    store.write("a.bin", b"committed")

    def broken(path):
        path.write_bytes(b"half")
        raise OSError("disk full")

    with pytest.raises(ModelStoreError):
        store.write_with("a.bin", broken)
    assert store.read("a.bin") == b"committed"
    assert store.list_files() == ["a.bin"]
    assert [p.name for p in store.base_dir.iterdir()] == ["a.bin"]


def test_write_with_returns_committed_bytes(store):
    data = store.write_with("model.json", lambda path: path.write_text("{}", encoding="utf-8"))
    assert data == b"{}"


def test_mirror_receives_writes_and_removals(tmp_path):
    mirror = RecordingMirror()
    store = ModelStore(tmp_path / "store", logger, mirror=mirror)
    store.write("a.bin", b"abc")
    assert mirror.objects == {"a.bin": b"abc"}
    store.remove("a.bin")
    assert mirror.objects == {}


def test_missing_local_file_is_restored_from_mirror(tmp_path):
    mirror = RecordingMirror()
    mirror.objects["a.bin"] = b"remote"
    store = ModelStore(tmp_path / "store", logger, mirror=mirror)
    assert store.read("a.bin") == b"remote"
    assert store.exists("a.bin")


def test_mirror_failure_does_not_fail_local_write(tmp_path, caplog):
    store = ModelStore(tmp_path / "store", logger, mirror=RecordingMirror(fail_push=True))
    with caplog.at_level(logging.WARNING):
        store.write("a.bin", b"abc")
    assert store.read("a.bin") == b"abc"
    assert "S3 upload failed" in caplog.text

import gzip
import os

import pytest

from homefetch.storage.sharding import shard_path
from homefetch.storage.store import ArtifactStatus, ShardedStore, StorageError


@pytest.fixture
def store(tmp_path):
    store = ShardedStore(tmp_path / "out", fsync=False)
    store.initialize()
    return store


def test_status_absent_for_new_domain(store):
    assert store.status("example.com") is ArtifactStatus.ABSENT


def test_write_success_stores_gzip_at_shard_path(store):
    size = store.write_success("example.com", b"<html>hello</html>")

    path = shard_path(store.root, "example.com") / "example.com.gz"
    assert path.exists()
    assert size == path.stat().st_size
    assert gzip.decompress(path.read_bytes()) == b"<html>hello</html>"
    assert store.read_success("example.com") == b"<html>hello</html>"
    assert store.status("example.com") is ArtifactStatus.SUCCEEDED
    assert not store.failure_path("example.com").exists()


def test_write_success_leaves_no_temp_file(store):
    store.write_success("example.com", b"body")
    leftovers = [name for name in os.listdir(store.path_for("example.com")) if name.endswith(".tmp")]
    assert leftovers == []


def test_write_failure_records_error_text(store):
    store.write_failure("bad.invalid", "Cannot connect to host bad.invalid:80")

    assert store.status("bad.invalid") is ArtifactStatus.FAILED
    assert store.read_failure("bad.invalid") == "Cannot connect to host bad.invalid:80"
    assert not store.success_path("bad.invalid").exists()


def test_error_marker_is_checked_first(store):
    store.write_success("example.com", b"body")
    store.write_failure("example.com", "boom")
    assert store.status("example.com") is ArtifactStatus.FAILED


def test_stale_temp_file_is_not_a_result(store):
    # A crash between writing the temp file and renaming it
    directory = store.path_for("example.com")
    directory.mkdir(parents=True)
    stale = directory / "example.com.gz.tmp"
    stale.write_bytes(b"partial")

    assert store.status("example.com") is ArtifactStatus.ABSENT
    assert not store.success_path("example.com").exists()

    store.write_success("example.com", b"complete")
    assert store.read_success("example.com") == b"complete"
    assert stale.read_bytes() == b"partial"


def test_concurrent_writers_never_expose_partial_artifact(store, monkeypatch):
    real_replace = os.replace
    nested = []
    second_started = []

    def replace_after_second_writer(src, dst):
        # The second writer runs to completion between the first one's write and rename
        if not second_started:
            second_started.append(True)
            nested.append(store.write_success("example.com", b"second body"))
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", replace_after_second_writer)

    size = store.write_success("example.com", b"first body")

    assert nested
    assert store.read_success("example.com") == b"first body"
    assert size == store.success_path("example.com").stat().st_size
    assert os.listdir(store.path_for("example.com")) == ["example.com.gz"]


def test_failed_rename_leaves_final_path_absent(store, monkeypatch):
    def broken_replace(src, dst):
        raise OSError("disk on fire")

    monkeypatch.setattr(os, "replace", broken_replace)

    with pytest.raises(OSError):
        store.write_success("example.com", b"body")

    assert store.status("example.com") is ArtifactStatus.ABSENT
    assert os.listdir(store.path_for("example.com")) == []


def test_file_mode_applied(tmp_path):
    store = ShardedStore(tmp_path, file_mode=0o640, fsync=False)
    store.write_success("example.com", b"body")
    mode = store.success_path("example.com").stat().st_mode & 0o777
    assert mode & ~0o640 == 0


@pytest.mark.parametrize("name", ["", ".", "..", ".hidden", "a/b", "../escape", "nul\x00byte"])
def test_invalid_domain_names_rejected(store, name):
    with pytest.raises(StorageError):
        store.status(name)


def test_initialize_creates_root(tmp_path):
    root = tmp_path / "deep" / "root"
    ShardedStore(root).initialize()
    assert root.is_dir()

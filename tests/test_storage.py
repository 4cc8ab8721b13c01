import os

import pytest

from backupist.config import Config
from backupist.storage import (
    LocalStorage,
    MultiStorage,
    StorageError,
    StorageProvider,
    create_storage,
    storage_from_config,
)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "input.bin"
    path.write_bytes(b"backup payload")
    return path


@pytest.fixture
def store(tmp_path):
    return LocalStorage(tmp_path / "store")


def test_upload_and_download_round_trip(store, source_file, tmp_path):
    store.upload(source_file, "daily/one.bin")
    out = tmp_path / "restored" / "deep" / "one.bin"
    store.download("daily/one.bin", out)
    assert out.read_bytes() == b"backup payload"


def test_upload_creates_nested_directories(store, source_file):
    store.upload(source_file, "a/b/c/file.bin")
    assert (store.base_path and os.path.isfile(os.path.join(store.base_path, "a", "b", "c", "file.bin")))


def test_absolute_remote_path_stays_under_base(store, source_file):
    remote = os.path.join(os.sep, "backups", "x.bin")
    store.upload(source_file, remote)
    assert os.path.isfile(os.path.join(store.base_path, "backups", "x.bin"))
    assert store.exists(remote) is True


def test_exists_reports_missing(store):
    assert store.exists("nothing/here.bin") is False


def test_delete_removes_file(store, source_file):
    store.upload(source_file, "gone.bin")
    store.delete("gone.bin")
    assert store.exists("gone.bin") is False


def test_delete_missing_raises(store):
    with pytest.raises(StorageError):
        store.delete("missing.bin")


def test_download_missing_raises(store, tmp_path):
    with pytest.raises(StorageError):
        store.download("missing.bin", tmp_path / "out.bin")


def test_upload_missing_source_raises(store, tmp_path):
    with pytest.raises(StorageError):
        store.upload(tmp_path / "absent.bin", "x.bin")


def test_list_returns_relative_sorted_files(store, source_file):
    for name in ("b/two.bin", "a/one.bin", "a/zero.bin"):
        store.upload(source_file, name)
    assert store.list("") == [
        os.path.join("a", "one.bin"),
        os.path.join("a", "zero.bin"),
        os.path.join("b", "two.bin"),
    ]


def test_list_with_prefix_keeps_paths_relative_to_base(store, source_file):
    store.upload(source_file, "a/one.bin")
    store.upload(source_file, "b/two.bin")
    assert store.list("b") == [os.path.join("b", "two.bin")]


def test_list_of_single_file(store, source_file):
    store.upload(source_file, "solo.bin")
    assert store.list("solo.bin") == ["solo.bin"]


def test_list_missing_prefix_raises(store):
    with pytest.raises(StorageError):
        store.list("no-such-dir")


def test_provider_is_abstract():
    with pytest.raises(TypeError):
        StorageProvider()


def test_multi_upload_goes_to_all(tmp_path, source_file):
    first = LocalStorage(tmp_path / "one")
    second = LocalStorage(tmp_path / "two")
    multi = MultiStorage(first, second)
    multi.upload(source_file, "f.bin")
    assert first.exists("f.bin") and second.exists("f.bin")


def test_multi_upload_reports_failing_index(tmp_path):
    multi = MultiStorage(LocalStorage(tmp_path / "one"), LocalStorage(tmp_path / "two"))
    with pytest.raises(StorageError, match="storage 0"):
        multi.upload(tmp_path / "absent.bin", "f.bin")


def test_multi_download_falls_back(tmp_path, source_file):
    first = LocalStorage(tmp_path / "one")
    second = LocalStorage(tmp_path / "two")
    second.upload(source_file, "f.bin")
    out = tmp_path / "out.bin"
    MultiStorage(first, second).download("f.bin", out)
    assert out.read_bytes() == source_file.read_bytes()


def test_multi_download_all_fail_reports_last(tmp_path):
    multi = MultiStorage(LocalStorage(tmp_path / "one"), LocalStorage(tmp_path / "two"))
    with pytest.raises(StorageError, match="storage 1"):
        multi.download("f.bin", tmp_path / "out.bin")


def test_multi_delete_collects_errors_but_deletes_rest(tmp_path, source_file):
    first = LocalStorage(tmp_path / "one")
    second = LocalStorage(tmp_path / "two")
    second.upload(source_file, "f.bin")
    with pytest.raises(StorageError, match="storage 0"):
        MultiStorage(first, second).delete("f.bin")
    assert second.exists("f.bin") is False


def test_multi_delete_all_present(tmp_path, source_file):
    first = LocalStorage(tmp_path / "one")
    second = LocalStorage(tmp_path / "two")
    multi = MultiStorage(first, second)
    multi.upload(source_file, "f.bin")
    multi.delete("f.bin")
    assert not first.exists("f.bin") and not second.exists("f.bin")


def test_multi_list_and_exists_use_first(tmp_path, source_file):
    first = LocalStorage(tmp_path / "one")
    second = LocalStorage(tmp_path / "two")
    first.upload(source_file, "only-first.bin")
    second.upload(source_file, "only-second.bin")
    multi = MultiStorage(first, second)
    assert multi.list("") == ["only-first.bin"]
    assert multi.exists("only-first.bin") is True
    assert multi.exists("only-second.bin") is False


def test_multi_without_storages_cannot_list():
    with pytest.raises(StorageError, match="no storages"):
        MultiStorage().list("")


def test_create_storage_local_path(tmp_path):
    storage = create_storage(str(tmp_path))
    assert isinstance(storage, LocalStorage)
    assert storage.base_path == str(tmp_path)


@pytest.mark.parametrize("url", ["s3://bucket/path", "gcs://bucket/path"])
def test_create_storage_remote_unsupported(url):
    with pytest.raises(StorageError, match="unsupported storage type"):
        create_storage(url)


def test_create_storage_remote_without_bucket():
    with pytest.raises(StorageError, match="invalid"):
        create_storage("s3://")


def test_storage_from_config_local(tmp_path):
    config = Config()
    config.storage.local_path = str(tmp_path / "backups")
    storage = storage_from_config(config)
    assert isinstance(storage, LocalStorage)
    assert storage.base_path == str(tmp_path / "backups")


@pytest.mark.parametrize("kind", ["s3", "gcs", "ftp"])
def test_storage_from_config_other_types_raise(kind):
    config = Config()
    config.storage.type = kind
    with pytest.raises(StorageError, match=kind):
        storage_from_config(config)
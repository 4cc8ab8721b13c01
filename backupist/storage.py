"""Storage providers that hold finished backups: a local directory and a fan-out over several."""

from __future__ import annotations

import abc
import os
import shutil
import stat
from typing import Iterator

from backupist.config import Config
from backupist.types import StorageType

_REMOTE_SCHEMES = {"s3://": StorageType.S3, "gcs://": StorageType.GCS}


class StorageError(Exception):
    """Raised when a storage operation fails."""


class StorageProvider(abc.ABC):
    """Somewhere backups can be uploaded to, fetched from, listed and removed."""

    @abc.abstractmethod
    def upload(self, local_path: str | os.PathLike[str], remote_path: str) -> None:
        """Copy a local file into the storage under the remote path."""

    @abc.abstractmethod
    def download(self, remote_path: str, local_path: str | os.PathLike[str]) -> None:
        """Copy a stored file to a local path, creating its parent directories."""

    @abc.abstractmethod
    def delete(self, remote_path: str) -> None:
        """Remove a stored file."""

    @abc.abstractmethod
    def list(self, prefix: str) -> list[str]:
        """Paths of the stored files under the prefix."""

    @abc.abstractmethod
    def exists(self, remote_path: str) -> bool:
        """Whether a file is stored under the remote path."""


def _join(base: str, remote: str) -> str:
    """Join like a plain path concatenation: an absolute remote path stays below the base."""
    parts = [part for part in (base, remote) if part]
    if not parts:
        return ""
    return os.path.normpath(os.sep.join(parts))


def _make_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, mode=0o755, exist_ok=True)


def _files_under(path: str) -> Iterator[str]:
    """Every non-directory at or below the path, in lexical order, without following links."""
    info = os.lstat(path)
    if not stat.S_ISDIR(info.st_mode):
        yield path
        return
    for name in sorted(os.listdir(path)):
        yield from _files_under(os.path.join(path, name))


class LocalStorage(StorageProvider):
    """Storage in a directory of the local file system."""

    def __init__(self, base_path: str | os.PathLike[str]) -> None:
        self.base_path = os.fspath(base_path)

    def __repr__(self) -> str:
        return f"LocalStorage({self.base_path!r})"

    def _full(self, remote_path: str) -> str:
        return _join(self.base_path, os.fspath(remote_path))

    def upload(self, local_path: str | os.PathLike[str], remote_path: str) -> None:
        full_path = self._full(remote_path)
        try:
            _make_parent(full_path)
            with open(os.fspath(local_path), "rb") as source, open(full_path, "wb") as target:
                shutil.copyfileobj(source, target)
        except OSError as exc:
            raise StorageError(f"cannot upload {os.fspath(local_path)} to {full_path}: {exc}") from exc

    def download(self, remote_path: str, local_path: str | os.PathLike[str]) -> None:
        full_path = self._full(remote_path)
        target_path = os.fspath(local_path)
        try:
            _make_parent(target_path)
            with open(full_path, "rb") as source, open(target_path, "wb") as target:
                shutil.copyfileobj(source, target)
        except OSError as exc:
            raise StorageError(f"cannot download {full_path} to {target_path}: {exc}") from exc

    def delete(self, remote_path: str) -> None:
        full_path = self._full(remote_path)
        try:
            os.remove(full_path)
        except OSError as exc:
            raise StorageError(f"cannot delete {full_path}: {exc}") from exc

    def list(self, prefix: str) -> list[str]:
        """Files under the prefix, as paths relative to the base directory."""
        full_path = self._full(prefix)
        base = self.base_path or "."
        try:
            return [os.path.relpath(path, base) for path in _files_under(full_path)]
        except OSError as exc:
            raise StorageError(f"cannot list {full_path}: {exc}") from exc

    def exists(self, remote_path: str) -> bool:
        full_path = self._full(remote_path)
        try:
            os.stat(full_path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"cannot check whether {full_path} exists: {exc}") from exc
        return True


class MultiStorage(StorageProvider):
    """Several storages used together: writes go to all, reads to the first that works."""

    def __init__(self, *storages: StorageProvider) -> None:
        self.storages = tuple(storages)

    def upload(self, local_path: str | os.PathLike[str], remote_path: str) -> None:
        """Upload to every storage in turn, stopping at the first failure."""
        for index, storage in enumerate(self.storages):
            try:
                storage.upload(local_path, remote_path)
            except StorageError as exc:
                raise StorageError(f"upload to storage {index} failed: {exc}") from exc

    def download(self, remote_path: str, local_path: str | os.PathLike[str]) -> None:
        """Download from the first storage that succeeds; raise the last failure if none does."""
        last_error: StorageError | None = None
        for index, storage in enumerate(self.storages):
            try:
                storage.download(remote_path, local_path)
            except StorageError as exc:
                last_error = StorageError(f"download from storage {index} failed: {exc}")
                last_error.__cause__ = exc
            else:
                return
        if last_error is not None:
            raise last_error

    def delete(self, remote_path: str) -> None:
        """Delete from every storage; failures are collected and reported together."""
        errors = []
        for index, storage in enumerate(self.storages):
            try:
                storage.delete(remote_path)
            except StorageError as exc:
                errors.append(f"delete from storage {index} failed: {exc}")
        if errors:
            raise StorageError("errors while deleting: " + "; ".join(errors))

    def _first(self) -> StorageProvider:
        if not self.storages:
            raise StorageError("no storages available")
        return self.storages[0]

    def list(self, prefix: str) -> list[str]:
        """The listing of the first storage."""
        return self._first().list(prefix)

    def exists(self, remote_path: str) -> bool:
        """Whether the first storage holds the file."""
        return self._first().exists(remote_path)


def _unsupported(storage_type: str, where: str) -> StorageError:
    return StorageError(f"unsupported storage type: {storage_type} ({where})")


def create_storage(storage_url: str) -> StorageProvider:
    """A provider for the URL: a plain path gives local storage."""
    for scheme, storage_type in _REMOTE_SCHEMES.items():
        if storage_url.startswith(scheme):
            bucket = storage_url[len(scheme):].split("/", 1)[0]
            if not bucket:
                raise StorageError(f"invalid {storage_type.value} URL: {storage_url}")
            raise _unsupported(storage_type.value, storage_url)
    return LocalStorage(storage_url)


def storage_from_config(config: Config) -> StorageProvider:
    """The provider named by the storage section of the configuration."""
    storage_type = config.storage.type
    if storage_type == StorageType.LOCAL.value:
        return LocalStorage(config.storage.local_path)
    raise _unsupported(storage_type, "configuration")
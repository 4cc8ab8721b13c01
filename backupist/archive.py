"""Creation, extraction and inspection of gzip-compressed tar archives."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

log = logging.getLogger(__name__)

_READ_ERRORS = (OSError, tarfile.TarError, EOFError, zlib.error)
_WRITE_FLAGS = os.O_CREAT | os.O_WRONLY | getattr(os, "O_BINARY", 0)


class ArchiveError(Exception):
    """Raised when an archive cannot be written, read or trusted."""


@dataclass
class ArchiveInfo:
    """Summary of an archive's size and contents."""

    path: str
    size: int = 0
    uncompressed_size: int = 0
    compression_ratio: float = 0.0
    file_count: int = 0
    directory_count: int = 0
    mod_time: datetime | None = None


_ErrorHandler = Callable[[str, OSError], None]


def _walk(root: str, on_error: _ErrorHandler | None = None) -> Iterator[tuple[str, os.stat_result]]:
    """Yield the root and everything below it in lexical order, without following links."""
    try:
        info = os.lstat(root)
    except OSError as exc:
        if on_error is None:
            raise
        on_error(root, exc)
        return
    yield root, info
    if not stat.S_ISDIR(info.st_mode):
        return
    try:
        names = sorted(os.listdir(root))
    except OSError as exc:
        if on_error is None:
            raise
        on_error(root, exc)
        return
    for name in names:
        yield from _walk(os.path.join(root, name), on_error)


def _write_archive(
    source_path: str | os.PathLike[str],
    archive_path: str | os.PathLike[str],
    include: Callable[[str, os.stat_result], bool],
) -> int:
    source = os.path.normpath(os.fspath(source_path))
    base = os.path.dirname(source) or "."
    added = 0
    with tarfile.open(os.fspath(archive_path), "w:gz") as tar:
        for path, info in _walk(source):
            if not include(path, info):
                continue
            arcname = os.path.relpath(path, base).replace(os.sep, "/")
            member = tar.gettarinfo(path, arcname=arcname)
            if member is None:
                log.warning("skipping unsupported file type: %s", path)
                continue
            if member.isreg():
                with open(path, "rb") as handle:
                    tar.addfile(member, handle)
                added += 1
            else:
                tar.addfile(member)
    return added


def create_archive(source_path: str | os.PathLike[str], archive_path: str | os.PathLike[str]) -> int:
    """Pack a directory into a tar.gz archive; return the number of regular files stored.

    Entry names are relative to the parent of the source, so they start with its base name.
    The archive itself is skipped when it lies inside the source.
    """
    archive_abs = os.path.abspath(os.fspath(archive_path))
    try:
        added = _write_archive(
            source_path, archive_path, lambda path, _info: os.path.abspath(path) != archive_abs
        )
    except (OSError, tarfile.TarError) as exc:
        raise ArchiveError(f"cannot create archive {os.fspath(archive_path)}: {exc}") from exc
    log.info("archive created: source=%s archive=%s", os.fspath(source_path), archive_abs)
    return added


def create_incremental_archive(
    source_path: str | os.PathLike[str],
    archive_path: str | os.PathLike[str],
    baseline_path: str | os.PathLike[str] | None,
) -> int:
    """Pack only entries modified no earlier than the baseline file; return regular files stored.

    Without a baseline, or when it does not exist, everything is packed.
    """
    baseline_ns: int | None = None
    if baseline_path:
        try:
            baseline_ns = os.stat(os.fspath(baseline_path)).st_mtime_ns
        except OSError:
            baseline_ns = None

    def include(_path: str, info: os.stat_result) -> bool:
        return baseline_ns is None or info.st_mtime_ns >= baseline_ns

    try:
        added = _write_archive(source_path, archive_path, include)
    except (OSError, tarfile.TarError) as exc:
        raise ArchiveError(
            f"cannot create incremental archive {os.fspath(archive_path)}: {exc}"
        ) from exc
    log.info(
        "incremental archive created: archive=%s files_added=%d baseline=%s",
        os.fspath(archive_path),
        added,
        os.fspath(baseline_path) if baseline_path else "",
    )
    return added


def _target_path(dest: str, name: str) -> str:
    relative = name.lstrip("/")
    return os.path.normpath(os.path.join(dest, relative) if dest else relative)


def extract_archive(archive_path: str | os.PathLike[str], dest_path: str | os.PathLike[str]) -> None:
    """Unpack directories and regular files of a tar.gz archive below the destination.

    Entries that would land outside the destination make the whole extraction fail.
    """
    dest = os.fspath(dest_path)
    prefix = os.path.normpath(dest) + os.sep
    try:
        with tarfile.open(os.fspath(archive_path), "r:gz") as tar:
            for member in tar:
                full_path = _target_path(dest, member.name)
                if not full_path.startswith(prefix):
                    raise ArchiveError(f"unsafe path in archive: {member.name}")
                mode = member.mode & 0o7777
                if member.isdir():
                    os.makedirs(full_path, mode=mode, exist_ok=True)
                elif member.isreg():
                    os.makedirs(os.path.dirname(full_path), mode=0o755, exist_ok=True)
                    source = tar.extractfile(member)
                    descriptor = os.open(full_path, _WRITE_FLAGS, mode)
                    with os.fdopen(descriptor, "wb") as out:
                        if source is not None:
                            shutil.copyfileobj(source, out)
                else:
                    log.warning(
                        "unsupported entry type in archive: type=%r name=%s",
                        member.type,
                        member.name,
                    )
    except _READ_ERRORS as exc:
        raise ArchiveError(f"cannot extract archive {os.fspath(archive_path)}: {exc}") from exc
    log.info("archive extracted: archive=%s destination=%s", os.fspath(archive_path), dest)


def directory_size(path: str | os.PathLike[str]) -> int:
    """Total size in bytes of everything that is not a directory; unreadable entries are skipped."""

    def report(failed: str, exc: OSError) -> None:
        log.warning("cannot read %s: %s", failed, exc)

    return sum(
        info.st_size
        for _, info in _walk(os.fspath(path), report)
        if not stat.S_ISDIR(info.st_mode)
    )


def file_size(path: str | os.PathLike[str]) -> int:
    """Size of a file in bytes."""
    try:
        return os.stat(os.fspath(path)).st_size
    except OSError as exc:
        raise ArchiveError(f"cannot read file information: {exc}") from exc


def archive_info(archive_path: str | os.PathLike[str]) -> ArchiveInfo:
    """Count entries and sum their sizes without extracting."""
    path = os.fspath(archive_path)
    try:
        file_stat = os.stat(path)
    except OSError as exc:
        raise ArchiveError(f"cannot read archive information: {exc}") from exc
    info = ArchiveInfo(
        path=path,
        size=file_stat.st_size,
        mod_time=datetime.fromtimestamp(file_stat.st_mtime),
    )
    try:
        with tarfile.open(path, "r:gz") as tar:
            for member in tar:
                info.file_count += 1
                info.uncompressed_size += member.size
                if member.isdir():
                    info.directory_count += 1
    except _READ_ERRORS as exc:
        raise ArchiveError(f"cannot read archive {path}: {exc}") from exc
    if info.uncompressed_size > 0:
        info.compression_ratio = info.uncompressed_size / info.size
    return info


def validate_archive(archive_path: str | os.PathLike[str]) -> int:
    """Read every entry and the data of every regular file; return the number of entries."""
    path = os.fspath(archive_path)
    count = 0
    try:
        with tarfile.open(path, "r:gz") as tar:
            for member in tar:
                count += 1
                if member.isreg():
                    data = tar.extractfile(member)
                    if data is not None:
                        while data.read(64 * 1024):
                            pass
    except _READ_ERRORS as exc:
        raise ArchiveError(f"archive {path} is damaged: {exc}") from exc
    log.info("archive validated: archive=%s files=%d", path, count)
    return count
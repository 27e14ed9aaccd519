"""Filesystem backing store.

Maps backing-store keys directly onto a local directory tree:
- Objects are regular files, containers are directories
- Path traversal protection on every key
- Atomic writes via temp file + rename, so readers never see partial objects
- Server-side move (rename), copy, purge and usage are supported
- Change notification is not supported

Environment Variables:
    HASHMAP_FS_BASE_DIR: Base directory for storage
        (default: tempfile.gettempdir() / hashmap_objects)
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from hashmap.backend.base import BackingStore, ListEntry
from hashmap.backend.models import ContainerInfo, ObjectInfo, StoreFeatures, Usage
from hashmap.deadline import Deadline, check_deadline
from hashmap.errors import (
    DirectoryNotEmptyError,
    DirectoryNotFoundError,
    ObjectNotFoundError,
    PathTraversalError,
    StorageBackendError,
)

logger = logging.getLogger(__name__)

HASHMAP_FS_BASE_DIR_ENV = "HASHMAP_FS_BASE_DIR"

_TMP_PREFIX = ".hashmap-tmp-"

FILESYSTEM_FEATURES = StoreFeatures(
    move=True,
    copy=True,
    purge=True,
    about=True,
    set_mod_time=True,
    can_have_empty_directories=True,
)


def _is_path_traversal(key: str) -> bool:
    """Check if a key contains path traversal sequences.

    Detects:
    - "." and ".." segments, and empty segments
    - Absolute paths (starting with / or ~, or a drive letter like C:)
    - Backslashes (Windows path separators)
    - Null bytes
    """
    if "\x00" in key or "\\" in key:
        return True
    if key.startswith("/") or key.startswith("~"):
        return True
    if len(key) >= 2 and key[1] == ":":
        return True
    return any(segment in ("", ".", "..") for segment in key.split("/"))


def _mtime(stat: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat.st_mtime, UTC)


class FilesystemObjectStore(BackingStore):
    """Filesystem-based store implementation.

    Keys are laid out verbatim beneath the base directory:
        {base_dir}/{key}
    The empty key denotes the base directory itself.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        """Initialize filesystem storage.

        Args:
            base_dir: Base directory for storage. If None, uses
                HASHMAP_FS_BASE_DIR env var or OS temp directory.
        """
        if base_dir is None:
            base_dir = os.environ.get(HASHMAP_FS_BASE_DIR_ENV)

        if base_dir is None:
            base_dir = Path(tempfile.gettempdir()) / "hashmap_objects"
        else:
            base_dir = Path(base_dir)

        self._base_dir = base_dir.resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("FilesystemObjectStore initialized with base_dir=%s", self._base_dir)

    @property
    def backend_name(self) -> str:
        return "filesystem"

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def features(self) -> StoreFeatures:
        return FILESYSTEM_FEATURES

    @property
    def precision(self) -> float:
        return 1e-9

    def _path(self, key: str) -> Path:
        """Resolve a key to a path inside the base directory."""
        if not key:
            return self._base_dir
        if _is_path_traversal(key):
            raise PathTraversalError(
                message="Invalid key: path traversal or unsafe characters detected", key=key
            )
        path = self._base_dir / key
        try:
            path.resolve().relative_to(self._base_dir)
        except ValueError as e:
            raise PathTraversalError(
                message="Path resolves outside storage base directory", key=key
            ) from e
        return path

    def _object_path(self, key: str) -> Path:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key=key)
        return path

    def _container_path(self, key: str) -> Path:
        path = self._path(key)
        if not path.is_dir():
            raise DirectoryNotFoundError(key=key)
        return path

    def _info(self, key: str, path: Path) -> ObjectInfo:
        stat = path.stat()
        return ObjectInfo(key=key, size=stat.st_size, mod_time=_mtime(stat))

    def get(self, key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        check_deadline(deadline)
        path = self._object_path(key)
        try:
            return self._info(key, path)
        except FileNotFoundError as e:
            raise ObjectNotFoundError(key=key) from e

    def open(self, key: str, *, deadline: Deadline | None = None) -> BinaryIO:
        check_deadline(deadline)
        path = self._object_path(key)
        try:
            return path.open("rb")
        except FileNotFoundError as e:
            raise ObjectNotFoundError(key=key) from e
        except OSError as e:
            raise StorageBackendError(f"Failed to open object: {e}", key=key, cause=e) from e

    def put(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        size: int = -1,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> ObjectInfo:
        """Store an object atomically."""
        check_deadline(deadline)
        path = self._path(key)
        if not key or path.is_dir():
            raise StorageBackendError("Cannot write an object over a container", key=key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageBackendError(
                f"Failed to create object directory: {e}", key=key, cause=e
            ) from e

        tmp_file = path.parent / f"{_TMP_PREFIX}{uuid.uuid4().hex}"
        try:
            with tmp_file.open("wb") as f:
                for chunk in chunks:
                    f.write(chunk)
            if mod_time is not None:
                ts = mod_time.timestamp()
                os.utime(tmp_file, (ts, ts))
            tmp_file.replace(path)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(f"Failed to write object: {e}", key=key, cause=e) from e
        except BaseException:
            tmp_file.unlink(missing_ok=True)
            raise

        logger.debug("Stored object: key=%s", key)
        return self._info(key, path)

    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        path = self._object_path(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(key=key) from e
        except OSError as e:
            raise StorageBackendError(f"Failed to delete object: {e}", key=key, cause=e) from e

    def mkdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        path = self._path(key)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageBackendError(
                f"Failed to create container: {e}", key=key, cause=e
            ) from e

    def rmdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        path = self._container_path(key)
        try:
            path.rmdir()
        except OSError as e:
            if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                raise DirectoryNotEmptyError(key=key) from e
            raise StorageBackendError(
                f"Failed to remove container: {e}", key=key, cause=e
            ) from e

    def list(self, key: str, *, deadline: Deadline | None = None) -> list[ListEntry]:
        check_deadline(deadline)
        path = self._container_path(key)
        entries: list[ListEntry] = []
        try:
            children = sorted(path.iterdir())
        except OSError as e:
            raise StorageBackendError(f"Failed to list container: {e}", key=key, cause=e) from e
        for child in children:
            if child.name.startswith(_TMP_PREFIX):
                continue
            child_key = f"{key}/{child.name}" if key else child.name
            stat = child.stat()
            if child.is_dir():
                entries.append(ContainerInfo(key=child_key, size=-1, mod_time=_mtime(stat)))
            else:
                entries.append(ObjectInfo(key=child_key, size=stat.st_size, mod_time=_mtime(stat)))
        return entries

    def move(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> None:
        """Move a container, merging into the destination if it already exists."""
        check_deadline(deadline)
        if not src_key:
            raise DirectoryNotFoundError("Cannot move the store root", key=src_key)
        src = self._container_path(src_key)
        dst = self._path(dst_key)
        try:
            if not dst.exists():
                dst.parent.mkdir(parents=True, exist_ok=True)
                src.replace(dst)
            else:
                self._merge(src, dst)
        except OSError as e:
            raise StorageBackendError(
                f"Failed to move container: {e}", key=src_key, cause=e
            ) from e
        logger.debug("Moved container: %s -> %s", src_key, dst_key)

    def _merge(self, src: Path, dst: Path) -> None:
        for child in list(src.iterdir()):
            target = dst / child.name
            if child.is_dir() and target.is_dir():
                self._merge(child, target)
            else:
                child.replace(target)
        src.rmdir()

    def copy(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        check_deadline(deadline)
        src = self._object_path(src_key)
        dst = self._path(dst_key)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        except OSError as e:
            raise StorageBackendError(f"Failed to copy object: {e}", key=src_key, cause=e) from e
        return self._info(dst_key, dst)

    def purge(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        path = self._container_path(key)
        try:
            if key:
                shutil.rmtree(path)
            else:
                for child in path.iterdir():
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
        except OSError as e:
            raise StorageBackendError(
                f"Failed to purge container: {e}", key=key, cause=e
            ) from e
        logger.debug("Purged container: key=%s", key)

    def about(self, *, deadline: Deadline | None = None) -> Usage:
        check_deadline(deadline)
        usage = shutil.disk_usage(self._base_dir)
        used = 0
        objects = 0
        for root, _, files in os.walk(self._base_dir):
            for name in files:
                if not name.startswith(_TMP_PREFIX):
                    objects += 1
                    used += os.path.getsize(os.path.join(root, name))
        return Usage(total=usage.total, used=used, free=usage.free, objects=objects)

    def set_mod_time(
        self, key: str, mod_time: datetime, *, deadline: Deadline | None = None
    ) -> ObjectInfo:
        check_deadline(deadline)
        path = self._object_path(key)
        ts = mod_time.timestamp()
        try:
            os.utime(path, (ts, ts))
        except OSError as e:
            raise StorageBackendError(
                f"Failed to set modification time: {e}", key=key, cause=e
            ) from e
        return self._info(key, path)

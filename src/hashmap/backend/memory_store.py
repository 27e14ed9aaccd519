"""In-memory backing store.

Keeps objects in a dictionary keyed by their full key. Containers exist
implicitly whenever an object lives beneath them, or explicitly after
mkdir(). Every optional capability is implemented; the `features` argument
switches individual capabilities off, which is how callers exercise the
overlay's degraded paths.

Change notifications are delivered synchronously, after the mutation that
caused them, to every subscribed callback.
"""

from __future__ import annotations

import hashlib
import io
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import BinaryIO

from hashmap.backend.base import BackingStore, ChangeCallback, ListEntry
from hashmap.backend.models import ContainerInfo, EntryType, ObjectInfo, StoreFeatures, Usage
from hashmap.deadline import Deadline, check_deadline
from hashmap.errors import (
    DirectoryNotEmptyError,
    DirectoryNotFoundError,
    ObjectNotFoundError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)

ALL_FEATURES = StoreFeatures(
    move=True,
    copy=True,
    purge=True,
    change_notify=True,
    about=True,
    cleanup=True,
    set_mod_time=True,
    can_have_empty_directories=True,
)


@dataclass(frozen=True)
class _Blob:
    data: bytes
    mod_time: datetime
    sha256: str


def _prefix(key: str) -> str:
    return f"{key}/" if key else ""


def _ancestors(key: str) -> list[str]:
    parts = key.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


class MemoryObjectStore(BackingStore):
    """Dictionary-backed store implementing the full BackingStore contract."""

    def __init__(self, features: StoreFeatures | None = None) -> None:
        """Initialize an empty store.

        Args:
            features: Capabilities to advertise and honour. Defaults to all.
        """
        self._features = features if features is not None else ALL_FEATURES
        self._objects: dict[str, _Blob] = {}
        self._containers: dict[str, datetime] = {}
        self._subscribers: list[ChangeCallback] = []
        self._lock = threading.RLock()

    @property
    def backend_name(self) -> str:
        return "memory"

    @property
    def features(self) -> StoreFeatures:
        return self._features

    @property
    def precision(self) -> float:
        return 1e-9

    @property
    def hashes(self) -> frozenset[str]:
        return frozenset({"sha256"})

    def keys(self) -> list[str]:
        """Return every object key, sorted."""
        with self._lock:
            return sorted(self._objects)

    def _require(self, capability: str, key: str | None = None) -> None:
        if not getattr(self._features, capability):
            raise UnsupportedOperationError(capability, key=key)

    def _emit(self, keys: Iterable[str]) -> None:
        subscribers = list(self._subscribers)
        for key in keys:
            for callback in subscribers:
                callback(key, EntryType.OBJECT)

    def _info(self, key: str, blob: _Blob) -> ObjectInfo:
        return ObjectInfo(key=key, size=len(blob.data), mod_time=blob.mod_time, sha256=blob.sha256)

    def _container_exists(self, key: str) -> bool:
        if not key or key in self._containers:
            return True
        prefix = _prefix(key)
        return any(k.startswith(prefix) for k in self._objects) or any(
            c.startswith(prefix) for c in self._containers
        )

    def _container_info(self, key: str) -> ContainerInfo:
        prefix = _prefix(key)
        blobs = [b for k, b in self._objects.items() if k.startswith(prefix)]
        times = [b.mod_time for b in blobs]
        if key in self._containers:
            times.append(self._containers[key])
        return ContainerInfo(
            key=key,
            size=sum(len(b.data) for b in blobs),
            mod_time=max(times) if times else datetime.now(UTC),
            items=len(self._direct_children(key)),
        )

    def _direct_children(self, key: str) -> dict[str, bool]:
        """Map each direct child key to True if it is a container."""
        prefix = _prefix(key)
        children: dict[str, bool] = {}
        for candidate in (*self._objects, *self._containers):
            if not candidate.startswith(prefix) or candidate == key:
                continue
            head, sep, _ = candidate[len(prefix) :].partition("/")
            child = prefix + head
            is_container = bool(sep) or candidate in self._containers
            children[child] = children.get(child, False) or is_container
        return children

    def get(self, key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        check_deadline(deadline)
        with self._lock:
            blob = self._objects.get(key)
            if blob is None:
                raise ObjectNotFoundError(key=key)
            return self._info(key, blob)

    def open(self, key: str, *, deadline: Deadline | None = None) -> BinaryIO:
        check_deadline(deadline)
        with self._lock:
            blob = self._objects.get(key)
        if blob is None:
            raise ObjectNotFoundError(key=key)
        return io.BytesIO(blob.data)

    def put(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        size: int = -1,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> ObjectInfo:
        check_deadline(deadline)
        data = b"".join(chunks)
        blob = _Blob(
            data=data,
            mod_time=mod_time or datetime.now(UTC),
            sha256=hashlib.sha256(data).hexdigest(),
        )
        with self._lock:
            self._objects[key] = blob
        logger.debug("Stored object: key=%s size=%d", key, len(data))
        self._emit([key])
        return self._info(key, blob)

    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise ObjectNotFoundError(key=key)
        self._emit([key])

    def mkdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        if not key:
            return
        now = datetime.now(UTC)
        with self._lock:
            for container in (*_ancestors(key), key):
                self._containers.setdefault(container, now)

    def rmdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        check_deadline(deadline)
        with self._lock:
            if not self._container_exists(key):
                raise DirectoryNotFoundError(key=key)
            if self._direct_children(key):
                raise DirectoryNotEmptyError(key=key)
            self._containers.pop(key, None)

    def list(self, key: str, *, deadline: Deadline | None = None) -> list[ListEntry]:
        check_deadline(deadline)
        with self._lock:
            if not self._container_exists(key):
                raise DirectoryNotFoundError(key=key)
            entries: list[ListEntry] = []
            for child, is_container in sorted(self._direct_children(key).items()):
                if is_container:
                    entries.append(self._container_info(child))
                else:
                    entries.append(self._info(child, self._objects[child]))
            return entries

    def move(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> None:
        """Move a container, merging into the destination if it exists."""
        self._require("move", src_key)
        check_deadline(deadline)
        with self._lock:
            if not src_key or not self._container_exists(src_key):
                raise DirectoryNotFoundError(key=src_key)
            src_prefix = _prefix(src_key)
            dst_prefix = _prefix(dst_key)
            for key in [k for k in self._objects if k.startswith(src_prefix)]:
                self._objects[dst_prefix + key[len(src_prefix) :]] = self._objects.pop(key)
            for key in [c for c in self._containers if c.startswith(src_prefix)]:
                self._containers[dst_prefix + key[len(src_prefix) :]] = self._containers.pop(key)
            created = self._containers.pop(src_key, datetime.now(UTC))
            for container in (*_ancestors(dst_key), dst_key):
                self._containers.setdefault(container, created)
        logger.debug("Moved container: %s -> %s", src_key, dst_key)

    def copy(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        self._require("copy", src_key)
        check_deadline(deadline)
        with self._lock:
            blob = self._objects.get(src_key)
            if blob is None:
                raise ObjectNotFoundError(key=src_key)
            self._objects[dst_key] = blob
        self._emit([dst_key])
        return self._info(dst_key, blob)

    def purge(self, key: str, *, deadline: Deadline | None = None) -> None:
        self._require("purge", key)
        check_deadline(deadline)
        with self._lock:
            if not self._container_exists(key):
                raise DirectoryNotFoundError(key=key)
            prefix = _prefix(key)
            removed = [k for k in self._objects if k.startswith(prefix)]
            for k in removed:
                del self._objects[k]
            for c in [c for c in self._containers if c == key or c.startswith(prefix)]:
                del self._containers[c]
        logger.debug("Purged container: key=%s objects=%d", key, len(removed))
        self._emit(removed)

    def change_notify(
        self,
        callback: ChangeCallback,
        interval: float,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Subscribe callback. Events are pushed immediately; interval is unused."""
        self._require("change_notify")
        check_deadline(deadline)
        with self._lock:
            self._subscribers.append(callback)

    def about(self, *, deadline: Deadline | None = None) -> Usage:
        self._require("about")
        check_deadline(deadline)
        with self._lock:
            return Usage(
                used=sum(len(b.data) for b in self._objects.values()),
                objects=len(self._objects),
            )

    def cleanup(self, *, deadline: Deadline | None = None) -> None:
        """Nothing is ever trashed, so there is nothing to clean up."""
        self._require("cleanup")
        check_deadline(deadline)

    def set_mod_time(
        self, key: str, mod_time: datetime, *, deadline: Deadline | None = None
    ) -> ObjectInfo:
        self._require("set_mod_time", key)
        check_deadline(deadline)
        with self._lock:
            blob = self._objects.get(key)
            if blob is None:
                raise ObjectNotFoundError(key=key)
            blob = replace(blob, mod_time=mod_time)
            self._objects[key] = blob
            return self._info(key, blob)

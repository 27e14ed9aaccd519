"""Listing entries returned by the hashmap overlay.

HashmapObject wraps the "data" object of a file and knows where the rest of
the file record lives ("<dirKey>/<fileKey>/..."). Directory wraps a tree
entry together with whatever the backing store reports about its container.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, BinaryIO

from hashmap.backend.models import ContainerInfo, ObjectInfo
from hashmap.deadline import Deadline
from hashmap.errors import BadStateError, DirectoryNotFoundError, UnsupportedOperationError
from hashmap.paths import DATA_OBJECT, join_key, split

if TYPE_CHECKING:
    from hashmap.fs import HashmapFs
    from hashmap.tree import DirEntry

logger = logging.getLogger(__name__)


class HashmapObject:
    """A file in the overlay namespace.

    Attributes:
        remote: Logical path relative to the overlay root.
        base_path: Backing-store key of the file's sub-container.
    """

    def __init__(
        self,
        fs: HashmapFs,
        remote: str,
        base_path: str,
        dir_entry: DirEntry,
        info: ObjectInfo,
    ) -> None:
        self._fs = fs
        self.remote = remote
        self.base_path = base_path
        self._dir_entry = dir_entry
        self._info = info

    def __str__(self) -> str:
        return self.remote

    def __repr__(self) -> str:
        return f"HashmapObject(remote={self.remote!r}, base_path={self.base_path!r})"

    @property
    def fs(self) -> HashmapFs:
        return self._fs

    @property
    def name(self) -> str:
        return split(self.remote)[1]

    @property
    def data_key(self) -> str:
        """Backing-store key of the payload."""
        return join_key(self.base_path, DATA_OBJECT)

    @property
    def info(self) -> ObjectInfo:
        """Metadata of the payload as last reported by the backing store."""
        return self._info

    @property
    def size(self) -> int:
        return self._info.size

    @property
    def mod_time(self) -> datetime:
        return self._info.mod_time

    def hash(self, hash_type: str) -> str:
        """Return the payload checksum, or "" if the store cannot report it."""
        if hash_type == "sha256" and hash_type in self._fs.hashes:
            return self._info.sha256 or ""
        return ""

    def open(self, *, deadline: Deadline | None = None) -> BinaryIO:
        """Open the payload for reading. Caller closes the stream."""
        return self._fs.store.open(self.data_key, deadline=deadline)

    def read(self, *, deadline: Deadline | None = None) -> bytes:
        return self._fs.store.read(self.data_key, deadline=deadline)

    def update(
        self,
        chunks: Iterable[bytes],
        *,
        size: int = -1,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Replace the payload. The name record and file index are unchanged."""
        self._info = self._fs.store.put(
            self.data_key, chunks, size=size, mod_time=mod_time, deadline=deadline
        )

    def set_mod_time(self, mod_time: datetime, *, deadline: Deadline | None = None) -> None:
        if not self._fs.store.features.set_mod_time:
            raise UnsupportedOperationError("set_mod_time", path=self.remote)
        self._info = self._fs.store.set_mod_time(self.data_key, mod_time, deadline=deadline)

    def remove(self, *, deadline: Deadline | None = None) -> None:
        """Remove the file: its payload, name record and file index entry.

        Raises:
            BadStateError: If the directory's file index cannot be loaded.
                Nothing is deleted in that case.
        """
        store = self._fs.store
        with self._fs.lock:
            index = self._dir_entry.file_index
            try:
                index.files(store, deadline=deadline)
            except BadStateError as e:
                raise BadStateError(
                    "refusing to modify map file: cannot load map file", path=self.remote
                ) from e
            try:
                store.purge_container(self.base_path, deadline=deadline)
            except DirectoryNotFoundError:
                logger.debug("File container %s already absent", self.base_path)
            index.discard(self.name)
            index.persist(store, deadline=deadline)
        logger.debug("Removed file %s", self.remote)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "file",
            "path": self.remote,
            "size": self.size,
            "mod_time": self.mod_time.isoformat(),
        }


class Directory:
    """A directory in the overlay namespace.

    `container` is None when the backing store has no matching container
    (for example an empty directory on a store that cannot hold one); size
    and modification time are then unknown.
    """

    def __init__(self, fs: HashmapFs, entry: DirEntry, container: ContainerInfo | None) -> None:
        self._fs = fs
        self.entry = entry
        self.container = container
        self._listed_at = datetime.now(UTC)

    def __str__(self) -> str:
        return self.remote

    def __repr__(self) -> str:
        return f"Directory(remote={self.remote!r}, key={self.entry.key!r})"

    @property
    def remote(self) -> str:
        return self._fs.relative(self.entry.path)

    @property
    def mod_time(self) -> datetime:
        if self.container is None:
            return self._listed_at
        return self.container.mod_time

    @property
    def size(self) -> int:
        if self.container is None:
            return -1
        return self.container.size

    @property
    def items(self) -> int:
        """Number of child directories plus files, without loading the file index."""
        files = self.entry.file_index.cached() or {}
        return len(self.entry.child_ids) + len(files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "directory",
            "path": self.remote,
            "size": self.size,
            "mod_time": self.mod_time.isoformat(),
            "items": self.items,
        }

"""Backing-store interface definition.

Provides the BackingStore abstract base class that every store wrapped by the
hashmap overlay must implement. Stores are flat and string-keyed: a key is a
"/"-joined sequence of segments, and any key prefix that holds other keys is a
container.

Required primitives are abstract. Optional capabilities are advertised through
`features` and default to raising UnsupportedOperationError, so a missing
capability is always an explicit error, never a silent no-op.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import BinaryIO

from hashmap.backend.models import ContainerInfo, EntryType, ObjectInfo, StoreFeatures, Usage
from hashmap.deadline import Deadline
from hashmap.errors import DirectoryNotFoundError, UnsupportedOperationError

ChangeCallback = Callable[[str, EntryType], None]
ListEntry = ObjectInfo | ContainerInfo


class BackingStore(ABC):
    """Abstract base class for stores wrapped by the hashmap overlay.

    Implementations:
    - MemoryObjectStore: In-process dictionary (tests, ephemeral use)
    - FilesystemObjectStore: Local directory tree
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for logging and tracing."""
        ...

    @property
    @abstractmethod
    def features(self) -> StoreFeatures:
        """Return the optional capabilities this store offers."""
        ...

    @property
    def precision(self) -> float:
        """Modification time precision in seconds."""
        return 1.0

    @property
    def hashes(self) -> frozenset[str]:
        """Checksum types this store can report for objects."""
        return frozenset()

    @abstractmethod
    def get(self, key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        """Get object metadata.

        Raises:
            ObjectNotFoundError: If no object exists at key.
        """
        ...

    @abstractmethod
    def open(self, key: str, *, deadline: Deadline | None = None) -> BinaryIO:
        """Open an object's content for reading. Caller closes the stream.

        Raises:
            ObjectNotFoundError: If no object exists at key.
        """
        ...

    @abstractmethod
    def put(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        size: int = -1,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> ObjectInfo:
        """Store an object, replacing any existing object at key.

        Args:
            key: Backing-store key.
            chunks: Content, consumed incrementally. An exception raised by
                the producer propagates to the caller.
            size: Size hint in bytes, -1 if unknown.
            mod_time: Modification time to record, defaults to now.
            deadline: Cancellation signal.

        Returns:
            Metadata of the stored object.
        """
        ...

    @abstractmethod
    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Delete a single object.

        Raises:
            ObjectNotFoundError: If no object exists at key.
        """
        ...

    @abstractmethod
    def mkdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Create a container. Succeeds if it already exists."""
        ...

    @abstractmethod
    def rmdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Remove an empty container.

        Raises:
            DirectoryNotFoundError: If the container does not exist.
            DirectoryNotEmptyError: If the container still has entries.
        """
        ...

    @abstractmethod
    def list(self, key: str, *, deadline: Deadline | None = None) -> list[ListEntry]:
        """List the direct entries of a container ("" is the store root).

        Raises:
            DirectoryNotFoundError: If the container does not exist.
        """
        ...

    def purge_container(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Delete a container and everything beneath it.

        Uses the bulk-delete capability when available, otherwise walks the
        container deleting objects and removing containers deepest first.

        Raises:
            DirectoryNotFoundError: If the container does not exist.
        """
        if self.features.purge:
            self.purge(key, deadline=deadline)
            return
        for entry in self.list(key, deadline=deadline):
            if isinstance(entry, ContainerInfo):
                self.purge_container(entry.key, deadline=deadline)
            else:
                self.delete(entry.key, deadline=deadline)
        if key:
            try:
                self.rmdir(key, deadline=deadline)
            except DirectoryNotFoundError:
                # Implicit containers vanish with their last object.
                pass

    def read(self, key: str, *, deadline: Deadline | None = None) -> bytes:
        """Read an object's entire content."""
        with self.open(key, deadline=deadline) as f:
            return f.read()

    # Optional capabilities.

    def move(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> None:
        """Move a container and its contents to a new key (server side)."""
        raise UnsupportedOperationError("move", key=src_key)

    def copy(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> ObjectInfo:
        """Copy an object to a new key (server side)."""
        raise UnsupportedOperationError("copy", key=src_key)

    def purge(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Bulk delete a container and everything beneath it."""
        raise UnsupportedOperationError("purge", key=key)

    def change_notify(
        self,
        callback: ChangeCallback,
        interval: float,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Deliver (key, entry_type) change events to callback."""
        raise UnsupportedOperationError("change_notify")

    def about(self, *, deadline: Deadline | None = None) -> Usage:
        """Return usage and quota information."""
        raise UnsupportedOperationError("about")

    def cleanup(self, *, deadline: Deadline | None = None) -> None:
        """Empty trash or remove old versions."""
        raise UnsupportedOperationError("cleanup")

    def set_mod_time(
        self, key: str, mod_time: datetime, *, deadline: Deadline | None = None
    ) -> ObjectInfo:
        """Change the modification time of an object."""
        raise UnsupportedOperationError("set_mod_time", key=key)

    def shutdown(self, *, deadline: Deadline | None = None) -> None:
        """Release backend resources. The default has nothing to release."""
        return None

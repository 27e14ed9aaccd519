"""Per-directory file index.

Each directory keeps a table mapping the filenames it holds to their file
keys, persisted at "<dirKey>/map". The table is loaded lazily on first
access. Its state is explicit so that a transient read failure never turns
into a cached empty directory:

    NOT_LOADED --load ok / object missing--> LOADED
    NOT_LOADED --any other failure--------> LOAD_FAILED --retry on next access
"""

from __future__ import annotations

import logging
from enum import StrEnum

from hashmap.backend.base import BackingStore
from hashmap.codec import decode_entries, encode_entries
from hashmap.deadline import Deadline
from hashmap.errors import (
    BadStateError,
    HashCollisionError,
    HashmapError,
    ObjectNotFoundError,
    OperationCancelledError,
)
from hashmap.paths import INDEX_OBJECT, join_key

logger = logging.getLogger(__name__)


class LoadState(StrEnum):
    """Load state of a FileIndex."""

    NOT_LOADED = "not_loaded"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"


class FileIndex:
    """Lazily loaded filename -> file key table of one directory."""

    def __init__(self, dir_key: str) -> None:
        self._dir_key = dir_key
        self._state = LoadState.NOT_LOADED
        self._files: dict[str, str] = {}

    @property
    def key(self) -> str:
        """Backing-store key of the persisted table."""
        return join_key(self._dir_key, INDEX_OBJECT)

    @property
    def state(self) -> LoadState:
        return self._state

    def cached(self) -> dict[str, str] | None:
        """Return the table if it is loaded, without touching the store."""
        if self._state is LoadState.LOADED:
            return self._files
        return None

    def files(self, store: BackingStore, *, deadline: Deadline | None = None) -> dict[str, str]:
        """Return the table, loading it on first access.

        The returned mapping is live: add() and discard() mutate it.

        Raises:
            BadStateError: If the table exists but cannot be read or parsed.
                The index stays LOAD_FAILED and the next call retries.
            OperationCancelledError: If the deadline fired while loading.
        """
        if self._state is not LoadState.LOADED:
            self._load(store, deadline)
        return self._files

    def _load(self, store: BackingStore, deadline: Deadline | None) -> None:
        files: dict[str, str] = {}
        try:
            with store.open(self.key, deadline=deadline) as stream:
                for file_key, name in decode_entries(stream, source=self.key):
                    files[name] = file_key
        except ObjectNotFoundError:
            # Directory not materialised yet.
            logger.debug("No file index at %s, treating directory as empty", self.key)
        except (BadStateError, OperationCancelledError):
            self._state = LoadState.LOAD_FAILED
            raise
        except (HashmapError, OSError) as e:
            self._state = LoadState.LOAD_FAILED
            raise BadStateError(f"cannot load map file: {e}", key=self.key) from e
        self._files = files
        self._state = LoadState.LOADED

    def _require_loaded(self) -> None:
        if self._state is not LoadState.LOADED:
            raise BadStateError("file index is not loaded, refusing to modify", key=self.key)

    def add(self, name: str, file_key: str) -> None:
        """Record a file.

        Raises:
            BadStateError: If the table is not loaded.
            HashCollisionError: If another filename already owns file_key.
        """
        self._require_loaded()
        owner = self.lookup_name(file_key)
        if owner is not None and owner != name:
            raise HashCollisionError(
                "file name hash collides with an existing file",
                key=file_key,
                path=name,
                existing_path=owner,
            )
        self._files[name] = file_key

    def discard(self, name: str) -> None:
        self._require_loaded()
        self._files.pop(name, None)

    def reset(self) -> None:
        """Mark the table loaded and empty, after its contents were purged."""
        self._files = {}
        self._state = LoadState.LOADED

    def lookup_name(self, file_key: str) -> str | None:
        """Return the filename whose key is file_key, if any."""
        for name, key in self._files.items():
            if key == file_key:
                return name
        return None

    def persist(self, store: BackingStore, *, deadline: Deadline | None = None) -> None:
        """Write the table to the store, sorted by filename.

        Raises:
            BadStateError: If the table cannot be loaded first.
        """
        files = self.files(store, deadline=deadline)
        store.put(self.key, encode_entries(files), deadline=deadline)
        logger.debug("Persisted file index %s (%d files)", self.key, len(files))

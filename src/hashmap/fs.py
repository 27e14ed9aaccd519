"""Hashmap overlay filesystem.

HashmapFs presents a hierarchical namespace of directories and files over a
flat BackingStore. Every directory is stored under hash(path) and every file
under "<dirKey>/<hash(filename)>/", next to a name record holding its full
logical path. Two kinds of index objects tie the namespace together:

    map                   root index: one "<dirKey> <path>" line per directory
    <dirKey>/map          file index: one "<fileKey> <filename>" line per file
    <dirKey>/<fileKey>/name   name record: "<path>\\n"
    <dirKey>/<fileKey>/data   file payload

Every overlay opened on the same BackingStore instance shares one
DirectoryTree and one re-entrant lock, whatever its root. The root index
object is per store, so each persist writes the one tree every overlay
sees. A new store instance over the same data reloads the tree.
Mutations update the in-memory index first and then persist it; a failed
write leaves memory ahead of the store and is reported to the caller.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO

from hashmap.backend.base import BackingStore
from hashmap.backend.models import StoreFeatures, Usage
from hashmap.codec import encode_name_record, name_record_size
from hashmap.config import HashmapConfig
from hashmap.deadline import Deadline
from hashmap.errors import (
    BadStateError,
    DirectoryExistsError,
    DirectoryNotEmptyError,
    DirectoryNotFoundError,
    HashCollisionError,
    HashmapError,
    InvalidMoveError,
    InvalidNameError,
    IsDirectoryError,
    IsFileError,
    ObjectNotFoundError,
    UnsupportedOperationError,
)
from hashmap.hashing import HashType, get_hasher
from hashmap.listing import ListCallback, ListEntry, list_directory, walk_directory
from hashmap.notify import ChangeTranslator, NotifyCallback
from hashmap.objects import HashmapObject
from hashmap.paths import (
    DATA_OBJECT,
    NAME_OBJECT,
    is_within,
    join,
    join_key,
    normalize,
    relative_to,
    split,
    validate_name,
)
from hashmap.tracing import traced_operation
from hashmap.tree import DirEntry, DirectoryTree

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024

Payload = bytes | BinaryIO | Iterable[bytes]


def _chunks(data: Payload) -> Iterator[bytes]:
    if isinstance(data, bytes | bytearray):
        yield bytes(data)
        return
    read = getattr(data, "read", None)
    if read is not None:
        while chunk := read(READ_CHUNK_SIZE):
            yield chunk
        return
    yield from data  # type: ignore[misc]


@dataclass
class _SharedTree:
    hash_type: HashType
    tree: DirectoryTree
    lock: threading.RLock = field(default_factory=threading.RLock)


_shared_trees: weakref.WeakKeyDictionary[BackingStore, _SharedTree] = (
    weakref.WeakKeyDictionary()
)
_shared_trees_lock = threading.Lock()


def _open_tree(
    store: BackingStore, hash_type: HashType, deadline: Deadline | None
) -> _SharedTree:
    """Return the tree of store, loading the root index on first use.

    Raises:
        BadStateError: If the root index cannot be loaded, or store is already
            open with a different hash type.
    """
    with _shared_trees_lock:
        shared = _shared_trees.get(store)
        if shared is None:
            tree = DirectoryTree.load(store, get_hasher(hash_type), deadline=deadline)
            shared = _SharedTree(hash_type, tree)
            _shared_trees[store] = shared
        elif shared.hash_type is not hash_type:
            raise BadStateError(
                f"backing store is already open with hash type {shared.hash_type}"
            )
        return shared


class HashmapFs:
    """Hierarchical overlay over a flat backing store.

    Args:
        store: Backing store holding all objects.
        hash_type: Hash function applied to directory paths and filenames.
        root: Logical directory this overlay is rooted at. Paths passed to
            and returned from methods are relative to it.
        name: Overlay name, used in logs and str().
        deadline: Deadline for loading the root index.

    Raises:
        BadStateError: If the root index exists but cannot be loaded, or
            another overlay already opened store with a different hash type.
        UnknownHashTypeError: If hash_type is not recognised.
    """

    def __init__(
        self,
        store: BackingStore,
        *,
        hash_type: HashType | str = HashType.MD5,
        root: str = "",
        name: str = "hashmap",
        deadline: Deadline | None = None,
    ) -> None:
        self._hasher = get_hasher(hash_type)
        self._hash_type = HashType(hash_type)
        self._store = store
        self._root = normalize(root)
        self._name = name
        shared = _open_tree(store, self._hash_type, deadline)
        self._lock = shared.lock
        self._tree = shared.tree
        logger.info(
            "Hashmap overlay %s ready: backend=%s hash_type=%s directories=%d",
            name,
            store.backend_name,
            self._hash_type,
            len(self._tree),
        )

    @classmethod
    def from_config(
        cls,
        config: HashmapConfig,
        store: BackingStore,
        *,
        deadline: Deadline | None = None,
    ) -> HashmapFs:
        return cls(
            store,
            hash_type=config.hash_type,
            root=config.root,
            name=config.name,
            deadline=deadline,
        )

    def __str__(self) -> str:
        return f"Hashmap ({self._hash_type}) '{self._name}:{self._root}'"

    @property
    def name(self) -> str:
        return self._name

    @property
    def root(self) -> str:
        return self._root

    @property
    def hash_type(self) -> HashType:
        return self._hash_type

    @property
    def store(self) -> BackingStore:
        return self._store

    @property
    def tree(self) -> DirectoryTree:
        return self._tree

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def backend_name(self) -> str:
        return f"hashmap:{self._store.backend_name}"

    @property
    def precision(self) -> float:
        return self._store.precision

    @property
    def hashes(self) -> frozenset[str]:
        return self._store.hashes

    @property
    def features(self) -> StoreFeatures:
        """Capabilities of the overlay. Empty directories are always kept."""
        base = self._store.features
        return StoreFeatures(
            move=base.move,
            copy=base.copy,
            purge=base.purge,
            change_notify=base.change_notify,
            about=base.about,
            cleanup=base.cleanup,
            set_mod_time=base.set_mod_time,
            can_have_empty_directories=True,
        )

    # Path helpers.

    def absolute(self, remote: str) -> str:
        """Return the tree path of a path relative to the overlay root."""
        return join(self._root, normalize(remote))

    def relative(self, path: str) -> str:
        """Return a tree path relative to the overlay root."""
        return relative_to(path, self._root)

    @property
    def _identity(self) -> bool:
        return self._hash_type is HashType.NONE

    def to_hash(self, remote: str) -> tuple[DirEntry | None, str]:
        """Resolve a file path to its directory entry and file key.

        Returns:
            (entry, file_key); entry is None when the parent directory is not
            in the tree.
        """
        parent, leaf = split(self.absolute(remote))
        return self._tree.get(parent), self._hasher(leaf)

    def _validate_file_path(self, path: str) -> None:
        validate_name(path, kind="file", identity=self._identity)
        parent, leaf = split(path)
        if not leaf:
            raise IsDirectoryError(path=path)
        if self._identity and not parent:
            raise InvalidNameError(
                "files cannot be stored in the root directory when names are not hashed",
                path=path,
            )

    def _require(self, capability: str) -> None:
        if not getattr(self._store.features, capability):
            raise UnsupportedOperationError(
                capability, f"backing store {self._store.backend_name} cannot {capability}"
            )

    def _load_files(
        self, entry: DirEntry, message: str, deadline: Deadline | None
    ) -> dict[str, str]:
        try:
            return entry.file_index.files(self._store, deadline=deadline)
        except BadStateError as e:
            raise BadStateError(message, path=entry.path, key=entry.key) from e

    # Reading.

    @traced_operation("new_object")
    def new_object(self, remote: str, *, deadline: Deadline | None = None) -> HashmapObject:
        """Find a file.

        Raises:
            IsDirectoryError: If remote names a directory.
            ObjectNotFoundError: If there is no such file.
        """
        remote = normalize(remote)
        path = self.absolute(remote)
        with self._lock:
            if path in self._tree:
                raise IsDirectoryError(path=remote)
            entry, _ = self.to_hash(remote)
            if entry is None:
                raise ObjectNotFoundError(path=remote)
            files = entry.file_index.files(self._store, deadline=deadline)
            file_key = files.get(split(path)[1])
            if file_key is None:
                raise ObjectNotFoundError(path=remote)
            base_path = join_key(entry.key, file_key)
            info = self._store.get(join_key(base_path, DATA_OBJECT), deadline=deadline)
            return HashmapObject(self, remote, base_path, entry, info)

    @traced_operation("list")
    def list(self, dir: str = "", *, deadline: Deadline | None = None) -> list[ListEntry]:
        """List the directories and files directly inside dir.

        Raises:
            DirectoryNotFoundError: If dir is not in the tree.
            BadStateError: If dir's file index cannot be loaded.
        """
        with self._lock:
            entry = self._tree.get(self.absolute(dir))
            if entry is None:
                raise DirectoryNotFoundError(path=dir)
            return list_directory(self, entry, deadline=deadline)

    @traced_operation("list_r")
    def list_r(
        self, dir: str, callback: ListCallback, *, deadline: Deadline | None = None
    ) -> None:
        """Walk dir recursively, calling callback with each directory's listing."""
        with self._lock:
            entry = self._tree.get(self.absolute(dir))
            if entry is None:
                raise DirectoryNotFoundError(path=dir)
            walk_directory(self, entry, callback, deadline=deadline)

    # Directories.

    @traced_operation("mkdir")
    def mkdir(self, dir: str = "", *, deadline: Deadline | None = None) -> None:
        """Create dir and any missing ancestors. Existing directories are a no-op.

        Raises:
            InvalidNameError: If the path contains a newline (or a reserved
                name when names are not hashed).
            HashCollisionError: If a new path hashes to an existing key.
            IsFileError: If the path names an existing file.
            BadStateError: If the nearest existing ancestor's file index
                cannot be loaded.
        """
        path = self.absolute(dir)
        with self._lock:
            if path in self._tree:
                return
            validate_name(path, kind="directory", identity=self._identity)

            missing: list[str] = []
            cursor = path
            parent = self._tree.get(cursor)
            while parent is None:
                missing.append(cursor)
                cursor = split(cursor)[0]
                parent = self._tree.get(cursor)
            missing.reverse()

            files = self._load_files(
                parent, "directory in a bad state, refusing to modify", deadline
            )
            if split(missing[0])[1] in files:
                raise IsFileError(path=self.relative(missing[0]))

            created: list[DirEntry] = []
            try:
                for p in missing:
                    created.append(self._tree.ensure(p))
                if self._store.features.can_have_empty_directories:
                    for entry in created:
                        self._store.mkdir(entry.key, deadline=deadline)
            except HashmapError:
                for entry in reversed(created):
                    self._tree.remove(entry.path)
                raise
            self._tree.persist(self._store, deadline=deadline)
        logger.debug("Created directory %s", path)

    @traced_operation("rmdir")
    def rmdir(self, dir: str, *, deadline: Deadline | None = None) -> None:
        """Remove an empty directory.

        Raises:
            DirectoryNotFoundError: If dir is not in the tree.
            DirectoryNotEmptyError: If dir holds files or directories.
            BadStateError: If dir's file index cannot be loaded, or dir is the
                tree root.
        """
        path = self.absolute(dir)
        with self._lock:
            entry = self._tree.get(path)
            if entry is None:
                raise DirectoryNotFoundError(path=dir)
            files = self._load_files(entry, "directory in a bad state, refusing to modify", deadline)
            if files or entry.child_ids:
                raise DirectoryNotEmptyError(path=dir)
            self._tree.remove(path)
            self._tree.persist(self._store, deadline=deadline)
            try:
                self._store.purge_container(entry.key, deadline=deadline)
            except DirectoryNotFoundError:
                logger.debug("Container %s for directory %s already absent", entry.key, path)
        logger.debug("Removed directory %s", path)

    @traced_operation("purge")
    def purge(self, dir: str = "", *, deadline: Deadline | None = None) -> None:
        """Remove dir and everything beneath it.

        Descendants are purged before their parents. A failure is recorded and
        the walk continues, but no ancestor of a failed node is purged. The
        root index is persisted once at the end whatever happened, then the
        first failure is raised. Purging the tree root empties it.

        Raises:
            UnsupportedOperationError: If the store has no bulk delete.
            DirectoryNotFoundError: If dir is not in the tree.
        """
        self._require("purge")
        path = self.absolute(dir)
        with self._lock:
            entry = self._tree.get(path)
            if entry is None:
                raise DirectoryNotFoundError(path=dir)
            errors: list[HashmapError] = []
            self._purge_entry(entry, errors, deadline)
            self._tree.persist(self._store, deadline=deadline)
        if errors:
            raise errors[0]
        logger.debug("Purged directory %s", path)

    def _purge_entry(
        self, entry: DirEntry, errors: list[HashmapError], deadline: Deadline | None
    ) -> bool:
        ok = True
        for child in self._tree.children(entry):
            ok = self._purge_entry(child, errors, deadline) and ok
        if not ok:
            return False
        try:
            self._store.purge(entry.key, deadline=deadline)
        except DirectoryNotFoundError:
            logger.debug("Container %s for directory %s already absent", entry.key, entry.path)
        except HashmapError as e:
            logger.warning("Failed to purge directory %r: %s", entry.path, e)
            errors.append(e)
            return False
        if entry.is_root:
            entry.file_index.reset()
        else:
            self._tree.remove(entry.path)
        return True

    @traced_operation("dir_move")
    def dir_move(
        self,
        src_remote: str,
        dst_remote: str,
        *,
        src_fs: HashmapFs | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Move a directory tree, possibly from another overlay on the same store.

        src_remote is resolved against src_fs's root and dst_remote against
        this overlay's root; both overlays share one tree. Directories are
        moved children first. Each moved directory gets a new entry at its
        destination and has its name records rewritten. A node whose
        descendant failed to move is left in place. The root index is
        persisted at the end whatever happened, then the first failure is
        raised.

        Raises:
            UnsupportedOperationError: If the store cannot move containers, or
                src_fs wraps a different store.
            DirectoryNotFoundError: If the source is not in the tree.
            DirectoryExistsError: If the destination is already in the tree.
            InvalidMoveError: If the source is the tree root or the
                destination lies inside the source.
        """
        self._require("move")
        src_fs = self if src_fs is None else src_fs
        if src_fs.store is not self._store:
            raise UnsupportedOperationError(
                "move", "cannot move directories between different backing stores"
            )
        src_path = src_fs.absolute(src_remote)
        dst_path = self.absolute(dst_remote)
        validate_name(dst_path, kind="directory", identity=self._identity)

        with self._lock:
            src_entry = self._tree.get(src_path)
            if src_entry is None:
                raise DirectoryNotFoundError(path=src_remote)
            if src_entry.is_root:
                raise InvalidMoveError("cannot move the root directory", path=src_remote)
            if dst_path in self._tree:
                raise DirectoryExistsError(path=dst_remote)
            if is_within(dst_path, src_path):
                raise InvalidMoveError(
                    "cannot move a directory into itself", path=dst_remote
                )

            errors: list[HashmapError] = []
            self._move_entry(src_entry, src_path, dst_path, errors, deadline)
            self._tree.persist(self._store, deadline=deadline)
        if errors:
            raise errors[0]
        logger.debug("Moved directory %s to %s", src_path, dst_path)

    def _move_entry(
        self,
        entry: DirEntry,
        src_root: str,
        dst_root: str,
        errors: list[HashmapError],
        deadline: Deadline | None,
    ) -> bool:
        ok = True
        for child in self._tree.children(entry):
            ok = self._move_entry(child, src_root, dst_root, errors, deadline) and ok
        if not ok:
            return False

        dst_location = join(dst_root, relative_to(entry.path, src_root))
        dst_key = self._hasher(dst_location)
        owner = self._tree.get_by_key(dst_key)
        if owner is not None and owner.path != dst_location:
            errors.append(
                HashCollisionError(
                    "directory path hash collides with an existing directory",
                    key=dst_key,
                    path=dst_location,
                    existing_path=owner.path,
                )
            )
            return False
        try:
            self._store.move(entry.key, dst_key, deadline=deadline)
        except DirectoryNotFoundError:
            logger.debug("Container %s for directory %s not materialised", entry.key, entry.path)
        except HashmapError as e:
            logger.warning("Failed to move directory %r to %r: %s", entry.path, dst_location, e)
            errors.append(e)
            return False

        self._tree.remove(entry.path)
        moved = self._tree.ensure(dst_location)
        try:
            self._rewrite_name_records(moved, deadline)
        except HashmapError as e:
            logger.warning("Failed to rewrite name records in %r: %s", dst_location, e)
            errors.append(e)
        return True

    def _rewrite_name_records(self, entry: DirEntry, deadline: Deadline | None) -> None:
        files = self._load_files(
            entry, "cannot rewrite name files with invalid map file", deadline
        )
        for name, file_key in sorted(files.items()):
            path = join(entry.path, name)
            self._store.put(
                join_key(entry.key, file_key, NAME_OBJECT),
                encode_name_record(path),
                size=name_record_size(path),
                deadline=deadline,
            )

    # Files.

    def _prepare_dest(
        self, remote: str, deadline: Deadline | None
    ) -> tuple[DirEntry, str, str]:
        """Check a file destination and write its containers and name record.

        Returns:
            (entry, leaf, base_path) of the destination.
        """
        path = self.absolute(remote)
        self._validate_file_path(path)
        if path in self._tree:
            raise IsDirectoryError(path=remote)
        entry, file_key = self.to_hash(remote)
        if entry is None:
            raise DirectoryNotFoundError(path=split(remote)[0])
        leaf = split(path)[1]

        self._load_files(entry, "refusing to modify map file: cannot load map file", deadline)
        owner = entry.file_index.lookup_name(file_key)
        if owner is not None and owner != leaf:
            raise HashCollisionError(
                "file name hash collides with an existing file",
                key=file_key,
                path=remote,
                existing_path=owner,
            )

        base_path = join_key(entry.key, file_key)
        self._store.mkdir(entry.key, deadline=deadline)
        self._store.mkdir(base_path, deadline=deadline)
        self._store.put(
            join_key(base_path, NAME_OBJECT),
            encode_name_record(path),
            size=name_record_size(path),
            deadline=deadline,
        )
        return entry, leaf, base_path

    def _commit_file(
        self, entry: DirEntry, leaf: str, base_path: str, deadline: Deadline | None
    ) -> None:
        entry.file_index.add(leaf, split(base_path)[1])
        entry.file_index.persist(self._store, deadline=deadline)

    @traced_operation("put")
    def put(
        self,
        remote: str,
        data: Payload,
        *,
        size: int = -1,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> HashmapObject:
        """Write a file, replacing any existing file of the same name.

        The parent directory must already exist.

        Raises:
            DirectoryNotFoundError: If the parent directory is not in the tree.
            IsDirectoryError: If remote names a directory.
            InvalidNameError: If the name cannot be represented in the index.
            HashCollisionError: If another file in the directory has the
                same file key.
            BadStateError: If the directory's file index cannot be loaded.
        """
        remote = normalize(remote)
        with self._lock:
            entry, leaf, base_path = self._prepare_dest(remote, deadline)
            info = self._store.put(
                join_key(base_path, DATA_OBJECT),
                _chunks(data),
                size=size,
                mod_time=mod_time,
                deadline=deadline,
            )
            self._commit_file(entry, leaf, base_path, deadline)
        logger.debug("Stored file %s (%d bytes)", remote, info.size)
        return HashmapObject(self, remote, base_path, entry, info)

    def put_stream(
        self,
        remote: str,
        data: Payload,
        *,
        mod_time: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> HashmapObject:
        """Write a file of unknown size."""
        return self.put(remote, data, size=-1, mod_time=mod_time, deadline=deadline)

    @traced_operation("copy")
    def copy(
        self, src: HashmapObject, remote: str, *, deadline: Deadline | None = None
    ) -> HashmapObject:
        """Server-side copy of a file to remote.

        Raises:
            UnsupportedOperationError: If the store cannot copy, or src lives
                on a different store.
        """
        self._require("copy")
        if src.fs.store is not self._store:
            raise UnsupportedOperationError(
                "copy", "cannot copy files between different backing stores"
            )
        remote = normalize(remote)
        with self._lock:
            entry, leaf, base_path = self._prepare_dest(remote, deadline)
            info = self._store.copy(
                src.data_key, join_key(base_path, DATA_OBJECT), deadline=deadline
            )
            self._commit_file(entry, leaf, base_path, deadline)
        logger.debug("Copied file %s to %s", src.remote, remote)
        return HashmapObject(self, remote, base_path, entry, info)

    # Delegations.

    def change_notify(
        self,
        callback: NotifyCallback,
        interval: float = 60.0,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Deliver (path, entry_type) events for files changed in the store.

        Raises:
            UnsupportedOperationError: If the store cannot report changes.
        """
        self._require("change_notify")
        self._store.change_notify(ChangeTranslator(self, callback), interval, deadline=deadline)

    def about(self, *, deadline: Deadline | None = None) -> Usage:
        self._require("about")
        return self._store.about(deadline=deadline)

    def cleanup(self, *, deadline: Deadline | None = None) -> None:
        self._require("cleanup")
        self._store.cleanup(deadline=deadline)

    def shutdown(self, *, deadline: Deadline | None = None) -> None:
        self._store.shutdown(deadline=deadline)

"""Directory tree index.

All directories of an overlay live in one DirectoryTree, an arena of DirEntry
nodes addressed by integer ids. Each node records its parent id and the ids
of its children; only the tree links and unlinks nodes, which keeps the
invariants in one place:

- the root entry ("" path) always exists and has no parent
- every entry's key equals hash(path)
- a parent's children contain each child exactly once
- no two entries share a path or a key

The whole tree is persisted as the root index object "map", one
"<key> <path>" line per entry sorted by path.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from hashmap.backend.base import BackingStore
from hashmap.codec import decode_entries, encode_entries
from hashmap.deadline import Deadline
from hashmap.errors import BadStateError, HashCollisionError, ObjectNotFoundError
from hashmap.file_index import FileIndex
from hashmap.hashing import Hasher
from hashmap.paths import INDEX_OBJECT, split

logger = logging.getLogger(__name__)

ROOT_INDEX_KEY = INDEX_OBJECT


@dataclass(eq=False)
class DirEntry:
    """A directory node.

    Attributes:
        node_id: Arena id of this node.
        path: Logical path from the overlay root, "" for the root.
        key: Storage key, hash(path).
        parent_id: Arena id of the parent, None for the root.
        child_ids: Arena ids of the child directories.
        file_index: Lazily loaded table of the files in this directory.
    """

    node_id: int
    path: str
    key: str
    parent_id: int | None
    child_ids: set[int] = field(default_factory=set)
    file_index: FileIndex = field(init=False)

    def __post_init__(self) -> None:
        self.file_index = FileIndex(self.key)
        if not self.key:
            # Unhashed root: its table would live at the root index key. It
            # never holds files.
            self.file_index.reset()

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def name(self) -> str:
        return split(self.path)[1]

    def __repr__(self) -> str:
        return f"DirEntry(path={self.path!r}, key={self.key!r})"


class DirectoryTree:
    """Arena of DirEntry nodes with lookup by path and by key."""

    def __init__(self, hasher: Hasher) -> None:
        self._hasher = hasher
        self._ids = itertools.count()
        self._nodes: dict[int, DirEntry] = {}
        self._by_path: dict[str, int] = {}
        self._by_key: dict[str, int] = {}
        self._root = self.ensure("")

    @classmethod
    def load(
        cls,
        store: BackingStore,
        hasher: Hasher,
        *,
        deadline: Deadline | None = None,
    ) -> DirectoryTree:
        """Rebuild a tree from the root index object.

        A missing root index yields a tree holding only the root. Ancestors
        missing from the index are created.

        Raises:
            BadStateError: If the root index is malformed or was written
                with a different hash function.
        """
        tree = cls(hasher)
        try:
            stream = store.open(ROOT_INDEX_KEY, deadline=deadline)
        except ObjectNotFoundError:
            logger.debug("No root index found, starting with an empty tree")
            return tree
        with stream:
            for key, path in decode_entries(stream, source=ROOT_INDEX_KEY):
                if key != hasher(path):
                    raise BadStateError(
                        "root index key does not match the configured hash type",
                        key=key,
                        path=path,
                    )
                tree.ensure(path)
        logger.debug("Loaded root index with %d directories", len(tree))
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, path: object) -> bool:
        return path in self._by_path

    @property
    def root(self) -> DirEntry:
        return self._root

    def get(self, path: str) -> DirEntry | None:
        node_id = self._by_path.get(path)
        return None if node_id is None else self._nodes[node_id]

    def get_by_key(self, key: str) -> DirEntry | None:
        node_id = self._by_key.get(key)
        return None if node_id is None else self._nodes[node_id]

    def parent(self, entry: DirEntry) -> DirEntry | None:
        return None if entry.parent_id is None else self._nodes[entry.parent_id]

    def children(self, entry: DirEntry) -> list[DirEntry]:
        """Return the child directories of entry, ordered by path."""
        return sorted((self._nodes[i] for i in entry.child_ids), key=lambda e: e.path)

    def walk(self, entry: DirEntry) -> Iterator[DirEntry]:
        """Yield entry and all its descendants depth-first, parents first."""
        stack = [entry]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.children(current)))

    def paths(self) -> list[str]:
        return sorted(self._by_path)

    def ensure(self, path: str) -> DirEntry:
        """Return the entry for path, creating it and its ancestors if needed.

        Raises:
            HashCollisionError: If hash(path) is already owned by another path.
        """
        existing = self.get(path)
        if existing is not None:
            return existing

        parent: DirEntry | None = None
        if path:
            parent = self.ensure(split(path)[0])

        key = self._hasher(path)
        owner = self.get_by_key(key)
        if owner is not None:
            raise HashCollisionError(
                "directory path hash collides with an existing directory",
                key=key,
                path=path,
                existing_path=owner.path,
            )

        entry = DirEntry(
            node_id=next(self._ids),
            path=path,
            key=key,
            parent_id=None if parent is None else parent.node_id,
        )
        self._nodes[entry.node_id] = entry
        self._by_path[path] = entry.node_id
        self._by_key[key] = entry.node_id
        if parent is not None:
            parent.child_ids.add(entry.node_id)
        return entry

    def remove(self, path: str) -> None:
        """Unlink an entry from its parent and both indices.

        The caller must already have checked that the directory holds no
        files. Unknown paths are ignored.

        Raises:
            BadStateError: If path is the root or still has child directories.
        """
        entry = self.get(path)
        if entry is None:
            return
        if entry.is_root:
            raise BadStateError("cannot remove root directory", path=path)
        if entry.child_ids:
            raise BadStateError("cannot remove a directory with children", path=path)
        parent = self._nodes[entry.parent_id]  # type: ignore[index]
        parent.child_ids.discard(entry.node_id)
        del self._nodes[entry.node_id]
        del self._by_path[entry.path]
        del self._by_key[entry.key]

    def entries(self) -> dict[str, str]:
        """Return a path -> key mapping of every entry."""
        return {path: self._nodes[node_id].key for path, node_id in self._by_path.items()}

    def persist(self, store: BackingStore, *, deadline: Deadline | None = None) -> None:
        """Write the root index. Must follow every structural mutation."""
        store.put(ROOT_INDEX_KEY, encode_entries(self.entries()), deadline=deadline)
        logger.debug("Persisted root index (%d directories)", len(self))

"""Directory listing.

A listing merges three sources: the tree's child directories, the backing
store's listing of the containers holding them (for live container
metadata), and the directory's file index. A file that cannot be resolved
is logged and left out; the rest of the listing is still returned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from hashmap.backend.models import ContainerInfo
from hashmap.deadline import Deadline
from hashmap.errors import DirectoryNotFoundError, HashmapError
from hashmap.objects import Directory, HashmapObject
from hashmap.paths import join, split

if TYPE_CHECKING:
    from hashmap.fs import HashmapFs
    from hashmap.tree import DirEntry

logger = logging.getLogger(__name__)

ListEntry = Directory | HashmapObject
ListCallback = Callable[[list[ListEntry]], None]


def list_directory(
    fs: HashmapFs,
    entry: DirEntry,
    *,
    deadline: Deadline | None = None,
) -> list[ListEntry]:
    """List one directory level.

    Returns:
        Directories first, then files ordered by name.

    Raises:
        BadStateError: If the directory's file index cannot be loaded.
    """
    store = fs.store
    files = entry.file_index.files(store, deadline=deadline)
    subdirs = {child.key: child for child in fs.tree.children(entry)}

    entries: list[ListEntry] = []
    # Hashed keys all live at the store root; unhashed ones under their parent.
    for container_key in sorted({split(key)[0] for key in subdirs}):
        try:
            items = store.list(container_key, deadline=deadline)
        except DirectoryNotFoundError:
            continue
        for item in items:
            if isinstance(item, ContainerInfo) and item.key in subdirs:
                entries.append(Directory(fs, subdirs.pop(item.key), item))
    # Directories known to the index but not materialised in the store.
    for child in subdirs.values():
        entries.append(Directory(fs, child, None))
    entries.sort(key=lambda d: d.entry.path)

    for name in sorted(files):
        remote = fs.relative(join(entry.path, name))
        try:
            entries.append(fs.new_object(remote, deadline=deadline))
        except HashmapError as e:
            logger.warning("error fetching object %r: %s", remote, e)
    return entries


def walk_directory(
    fs: HashmapFs,
    entry: DirEntry,
    callback: ListCallback,
    *,
    deadline: Deadline | None = None,
) -> None:
    """Feed callback one tranche per directory, depth-first, parents first.

    Any exception from a directory load or from callback stops the walk.
    """
    for current in fs.tree.walk(entry):
        callback(list_directory(fs, current, deadline=deadline))

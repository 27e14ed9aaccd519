"""Change-notification translation.

Backing stores report changes by storage key. Only payload keys
("<dirKey>/<fileKey>/data") correspond to files in the overlay; everything
else (index objects, name records, containers) is ignored. The directory
key is resolved through the tree and the file key through the directory's
file index, falling back to the file's name record for files the index does
not list yet. Untranslatable events are logged and dropped: translation
never raises into the store's notification loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from hashmap.backend.models import EntryType
from hashmap.codec import decode_name_record
from hashmap.errors import HashmapError
from hashmap.paths import DATA_OBJECT, NAME_OBJECT, is_within, join, join_key, split

if TYPE_CHECKING:
    from hashmap.fs import HashmapFs
    from hashmap.tree import DirEntry

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[str, EntryType], None]


class ChangeTranslator:
    """Callable mapping raw store events to overlay paths."""

    def __init__(self, fs: HashmapFs, notify: NotifyCallback) -> None:
        self._fs = fs
        self._notify = notify

    def translate(self, key: str) -> str | None:
        """Return the overlay path for a storage key, or None if unmapped."""
        segments = key.split("/")
        if segments[-1] != DATA_OBJECT:
            return None
        if len(segments) < 2:
            logger.debug("Ignoring malformed change notification for %r", key)
            return None
        dir_key = "/".join(segments[:-2])
        file_key = segments[-2]

        fs = self._fs
        with fs.lock:
            entry = fs.tree.get_by_key(dir_key)
            if entry is None:
                logger.warning("cannot map change notification for path %r", key)
                return None
            try:
                entry.file_index.files(fs.store)
            except HashmapError as e:
                logger.error("cannot fetch map file for path %r: %s", key, e)
                return None
            name = entry.file_index.lookup_name(file_key)
            if name is not None:
                path: str | None = join(entry.path, name)
            else:
                path = self._read_name_record(entry, file_key)
        if path is None:
            logger.warning("no file matches while mapping change notification for path %r", key)
            return None

        if not is_within(path, fs.root):
            logger.debug("Change notification for %r is outside the overlay root", path)
            return None
        return fs.relative(path)

    def _read_name_record(self, entry: DirEntry, file_key: str) -> str | None:
        key = join_key(entry.key, file_key, NAME_OBJECT)
        try:
            path = decode_name_record(self._fs.store.read(key), source=key)
        except HashmapError as e:
            logger.debug("No usable name record at %s: %s", key, e)
            return None
        if split(path)[0] != entry.path:
            logger.warning("name record %s does not match its location", key)
            return None
        return path

    def __call__(self, key: str, entry_type: EntryType) -> None:
        path = self.translate(key)
        if path is not None:
            self._notify(path, entry_type)

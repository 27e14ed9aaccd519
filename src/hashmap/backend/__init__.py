"""Backing stores for the hashmap overlay.

Backends:
- MemoryObjectStore: In-process dictionary (tests, ephemeral use)
- FilesystemObjectStore: Local directory tree

Environment Variables:
    HASHMAP_FS_BASE_DIR: Base directory for the filesystem backend
        (default: OS temp dir / hashmap_objects)
"""

from hashmap.backend.base import BackingStore, ChangeCallback, ListEntry
from hashmap.backend.filesystem_store import FilesystemObjectStore
from hashmap.backend.memory_store import ALL_FEATURES, MemoryObjectStore
from hashmap.backend.models import ContainerInfo, EntryType, ObjectInfo, StoreFeatures, Usage

__all__ = [
    "ALL_FEATURES",
    "BackingStore",
    "ChangeCallback",
    "ContainerInfo",
    "EntryType",
    "FilesystemObjectStore",
    "ListEntry",
    "MemoryObjectStore",
    "ObjectInfo",
    "StoreFeatures",
    "Usage",
]

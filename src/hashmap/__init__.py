"""Hashmap overlay: hierarchical directories and files over a flat object store.

Directory paths and filenames are hashed into storage keys; index objects in
the store map the keys back to names. See hashmap.fs for the layout.

Usage:
    from hashmap import HashmapFs, MemoryObjectStore

    fs = HashmapFs(MemoryObjectStore(), hash_type="sha1")
    fs.mkdir("photos/2024")
    fs.put("photos/2024/beach.jpg", data)
"""

from hashmap.backend import (
    BackingStore,
    FilesystemObjectStore,
    MemoryObjectStore,
    StoreFeatures,
)
from hashmap.config import ConfigError, HashmapConfig, load_hashmap_config
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
    OperationCancelledError,
    PathTraversalError,
    StorageBackendError,
    UnsupportedOperationError,
)
from hashmap.fs import HashmapFs
from hashmap.hashing import HashType, UnknownHashTypeError, get_hasher
from hashmap.objects import Directory, HashmapObject

__all__ = [
    # Overlay
    "HashmapFs",
    "HashmapObject",
    "Directory",
    "HashType",
    "get_hasher",
    "Deadline",
    # Configuration
    "HashmapConfig",
    "ConfigError",
    "load_hashmap_config",
    # Backends
    "BackingStore",
    "FilesystemObjectStore",
    "MemoryObjectStore",
    "StoreFeatures",
    # Errors
    "HashmapError",
    "ObjectNotFoundError",
    "DirectoryNotFoundError",
    "IsDirectoryError",
    "IsFileError",
    "DirectoryExistsError",
    "DirectoryNotEmptyError",
    "UnsupportedOperationError",
    "BadStateError",
    "HashCollisionError",
    "InvalidNameError",
    "InvalidMoveError",
    "PathTraversalError",
    "StorageBackendError",
    "OperationCancelledError",
    "UnknownHashTypeError",
]

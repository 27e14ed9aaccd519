"""Name hashing for the hashmap overlay.

A hash function is fixed per overlay instance and applied uniformly to
directory paths and file leaf names. All digests are lowercase hex of the
UTF-8 encoding; "none" is the identity function.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from enum import StrEnum

from hashmap.errors import HashmapError

Hasher = Callable[[str], str]


class HashType(StrEnum):
    """Supported name hashing algorithms."""

    NONE = "none"
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"


class UnknownHashTypeError(HashmapError):
    """Raised when a hash type name is not one of HashType."""


def hash_none(name: str) -> str:
    return name


def hash_md5(name: str) -> str:
    return hashlib.md5(name.encode("utf-8")).hexdigest()


def hash_sha1(name: str) -> str:
    return hashlib.sha1(name.encode("utf-8")).hexdigest()


def hash_sha256(name: str) -> str:
    return hashlib.sha256(name.encode("utf-8")).hexdigest()


_HASHERS: dict[HashType, Hasher] = {
    HashType.NONE: hash_none,
    HashType.MD5: hash_md5,
    HashType.SHA1: hash_sha1,
    HashType.SHA256: hash_sha256,
}


def get_hasher(hash_type: str | HashType) -> Hasher:
    """Return the hash function for a hash type name.

    Args:
        hash_type: One of "none", "md5", "sha1", "sha256".

    Returns:
        A deterministic function mapping a string to a storage key.

    Raises:
        UnknownHashTypeError: If hash_type is not supported.
    """
    try:
        return _HASHERS[HashType(hash_type)]
    except ValueError as e:
        raise UnknownHashTypeError(f"Unknown hash type {hash_type!r}") from e

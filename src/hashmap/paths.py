"""Logical path and storage key helpers.

Logical paths are "/"-separated, never carry a leading or trailing slash and
use "" for the root. Storage keys are joined the same way, skipping empty
components so that the identity-hashed root key "" never produces a leading
slash.
"""

from __future__ import annotations

import posixpath

from hashmap.errors import InvalidNameError

INDEX_OBJECT = "map"
NAME_OBJECT = "name"
DATA_OBJECT = "data"

# Leaf names that alias index objects when names are not hashed.
RESERVED_IDENTITY_NAMES = frozenset({INDEX_OBJECT, NAME_OBJECT, DATA_OBJECT})


def normalize(path: str) -> str:
    """Normalise a logical path: collapse separators, strip edge slashes."""
    if not path:
        return ""
    path = posixpath.normpath(path.strip("/"))
    return "" if path == "." else path


def join(*parts: str) -> str:
    """Join logical path components, ignoring empty ones."""
    return normalize("/".join(p for p in parts if p))


def join_key(*parts: str) -> str:
    """Join storage key components, ignoring empty ones."""
    return "/".join(p for p in parts if p)


def split(path: str) -> tuple[str, str]:
    """Split a logical path into (parent, leaf). The root's parent is ""."""
    parent, _, leaf = path.rpartition("/")
    return parent, leaf


def relative_to(path: str, root: str) -> str:
    """Make path relative to root. Paths outside root are returned unchanged."""
    if not root:
        return path
    if path == root:
        return ""
    if path.startswith(root + "/"):
        return path[len(root) + 1 :]
    return path


def is_within(path: str, ancestor: str) -> bool:
    """Return True if path equals ancestor or lies beneath it."""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def validate_name(path: str, *, kind: str, identity: bool = False) -> None:
    """Reject names the index format cannot represent.

    Args:
        path: Logical path being created.
        kind: "directory" or "file", used in the error message.
        identity: True when names are stored unhashed.

    Raises:
        InvalidNameError: On an embedded newline, or on a reserved leaf name
            under identity hashing.
    """
    if "\n" in path:
        raise InvalidNameError(f"{kind} name may not contain newline", path=path)
    if identity:
        for segment in path.split("/"):
            if segment in RESERVED_IDENTITY_NAMES:
                raise InvalidNameError(
                    f"{kind} name {segment!r} is reserved when names are not hashed",
                    path=path,
                )

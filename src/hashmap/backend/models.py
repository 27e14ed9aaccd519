"""Backing-store data models.

Provides typed dataclasses describing what a backing store reports about
its objects and containers, and which optional capabilities it offers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class EntryType(StrEnum):
    """Kind of entry reported by listings and change notifications."""

    OBJECT = "object"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata for a stored object.

    Attributes:
        key: Backing-store key of the object.
        size: Size of the object content in bytes.
        mod_time: Modification time of the object.
        sha256: SHA256 of the content (hex), if the backend tracks it.
    """

    key: str
    size: int
    mod_time: datetime
    sha256: str | None = None

    def to_dict(self) -> dict[str, str | int | None]:
        """Convert metadata to a dictionary for JSON serialization."""
        return {
            "key": self.key,
            "size": self.size,
            "mod_time": self.mod_time.isoformat(),
            "sha256": self.sha256,
        }


@dataclass(frozen=True)
class ContainerInfo:
    """Metadata for a container (directory-like key prefix).

    Attributes:
        key: Backing-store key of the container.
        size: Total size of the contents in bytes, -1 if unknown.
        mod_time: Modification time reported by the backend.
        items: Number of direct entries, -1 if unknown.
    """

    key: str
    size: int
    mod_time: datetime
    items: int = -1


@dataclass(frozen=True)
class Usage:
    """Quota information reported by a backing store. None means unknown."""

    total: int | None = None
    used: int | None = None
    free: int | None = None
    objects: int | None = None

    def to_dict(self) -> dict[str, int | None]:
        return {
            "total": self.total,
            "used": self.used,
            "free": self.free,
            "objects": self.objects,
        }


@dataclass(frozen=True)
class StoreFeatures:
    """Optional capabilities of a backing store.

    Attributes:
        move: Server-side move of a container to a new key.
        copy: Server-side copy of an object to a new key.
        purge: Bulk delete of a container and everything beneath it.
        change_notify: Push notifications of key changes.
        about: Usage and quota query.
        cleanup: Emptying trash or old versions.
        set_mod_time: Changing an object's modification time.
        can_have_empty_directories: Containers exist without any objects
            in them, so they have to be created explicitly.
    """

    move: bool = False
    copy: bool = False
    purge: bool = False
    change_notify: bool = False
    about: bool = False
    cleanup: bool = False
    set_mod_time: bool = False
    can_have_empty_directories: bool = False

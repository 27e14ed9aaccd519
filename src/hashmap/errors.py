"""Hashmap error types.

Every failure the overlay can report is a subclass of HashmapError. Errors
raised by a backing store use the same taxonomy so that callers only have to
handle one family of exceptions. Index state that cannot be read is never
repaired silently: it surfaces as BadStateError and the affected node refuses
further mutation.
"""

from __future__ import annotations


class HashmapError(Exception):
    """Base exception for hashmap operations.

    Attributes:
        message: Human-readable error message.
        key: Backing-store key associated with the failure (if applicable).
        path: Logical path associated with the failure (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.key = key
        self.path = path

    def __str__(self) -> str:
        parts = [self.message]
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        if self.key is not None:
            parts.append(f"key={self.key!r}")
        return " ".join(parts)


class ObjectNotFoundError(HashmapError):
    """Raised when a file (or a backing-store object) does not exist."""

    def __init__(
        self,
        message: str = "Object not found",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class DirectoryNotFoundError(HashmapError):
    """Raised when a directory (or a backing-store container) does not exist."""

    def __init__(
        self,
        message: str = "Directory not found",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class IsDirectoryError(HashmapError):
    """Raised when a file operation targets a path that is a directory."""

    def __init__(
        self,
        message: str = "Is a directory",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class IsFileError(HashmapError):
    """Raised when a directory operation targets a path that is a file."""

    def __init__(
        self,
        message: str = "Is a file",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class DirectoryExistsError(HashmapError):
    """Raised when a move destination is already indexed."""

    def __init__(
        self,
        message: str = "Directory already exists",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class DirectoryNotEmptyError(HashmapError):
    """Raised when removing a directory that still has files or children."""

    def __init__(
        self,
        message: str = "Directory not empty",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class UnsupportedOperationError(HashmapError):
    """Raised when the backing store lacks an optional capability.

    Attributes:
        capability: Name of the missing capability (e.g. "move", "purge").
    """

    def __init__(
        self,
        capability: str,
        message: str | None = None,
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message or f"Operation not supported: {capability}", key=key, path=path)
        self.capability = capability


class BadStateError(HashmapError):
    """Raised when a persisted index is unreadable or corrupt.

    The in-memory state is left untouched; callers must not treat the
    affected directory as empty.
    """


class HashCollisionError(BadStateError):
    """Raised when two distinct names hash to the same storage key."""

    def __init__(
        self,
        message: str = "Hash collision",
        *,
        key: str | None = None,
        path: str | None = None,
        existing_path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)
        self.existing_path = existing_path


class InvalidNameError(HashmapError):
    """Raised for names the line-oriented index format cannot represent."""


class InvalidMoveError(HashmapError):
    """Raised when a directory would be moved into its own subtree."""


class PathTraversalError(HashmapError):
    """Raised when a backing-store key would escape the storage sandbox."""

    def __init__(
        self,
        message: str = "Invalid key: path traversal detected",
        *,
        key: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)


class StorageBackendError(HashmapError):
    """Raised when the backing store itself fails (I/O error, disk full).

    Attributes:
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        key: str | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)
        self.cause = cause


class OperationCancelledError(HashmapError):
    """Raised when a deadline expires or the caller cancels an operation."""

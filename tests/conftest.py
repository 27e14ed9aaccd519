"""Pytest configuration and fixtures for hashmap tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from hashmap.backend.filesystem_store import FilesystemObjectStore
from hashmap.backend.memory_store import MemoryObjectStore
from hashmap.fs import HashmapFs

HASHMAP_ENV_VARS = (
    "HASHMAP_NAME",
    "HASHMAP_REMOTE",
    "HASHMAP_HASH_TYPE",
    "HASHMAP_ROOT",
    "HASHMAP_OTEL_ENABLED",
    "HASHMAP_OTEL_TEST_CAPTURE",
    "HASHMAP_REQUIRE_OTEL",
)


@pytest.fixture(autouse=True)
def clean_hashmap_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without HASHMAP_* configuration from the environment."""
    for name in HASHMAP_ENV_VARS:
        if name in os.environ:
            monkeypatch.delenv(name)


@pytest.fixture
def store() -> MemoryObjectStore:
    """Return an empty in-memory store with every capability enabled."""
    return MemoryObjectStore()


@pytest.fixture
def fs(store: MemoryObjectStore) -> HashmapFs:
    """Return an md5 overlay on the in-memory store."""
    return HashmapFs(store, hash_type="md5")


@pytest.fixture
def identity_fs(store: MemoryObjectStore) -> HashmapFs:
    """Return an overlay that stores names unhashed."""
    return HashmapFs(store, hash_type="none")


@pytest.fixture
def storage_dir(tmp_path: Path) -> Iterator[Path]:
    """Return a temporary directory for filesystem store tests."""
    path = tmp_path / "objects"
    path.mkdir()
    yield path


@pytest.fixture
def fs_store(storage_dir: Path) -> FilesystemObjectStore:
    """Return a FilesystemObjectStore rooted at a temp directory."""
    return FilesystemObjectStore(base_dir=storage_dir)

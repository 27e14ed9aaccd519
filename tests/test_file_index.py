"""Tests for the per-directory file index.

Tests cover:
1. Lazy loading; a missing index object means an empty directory
2. A failed load is never cached as empty and is retried
3. Mutation refuses to run on an index that is not loaded
"""

from __future__ import annotations

from typing import BinaryIO

import pytest

from hashmap.backend.memory_store import MemoryObjectStore
from hashmap.deadline import Deadline
from hashmap.errors import BadStateError, HashCollisionError, StorageBackendError
from hashmap.file_index import FileIndex, LoadState


class FlakyStore(MemoryObjectStore):
    """Memory store whose open() fails a set number of times."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.opens = 0

    def open(self, key: str, *, deadline: Deadline | None = None) -> BinaryIO:
        self.opens += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageBackendError("connection reset", key=key)
        return super().open(key, deadline=deadline)


class TestFileIndexLoad:
    """Tests for loading."""

    def test_index_key(self) -> None:
        assert FileIndex("abc").key == "abc/map"
        assert FileIndex("").key == "map"

    def test_missing_object_is_empty(self) -> None:
        index = FileIndex("d")

        assert index.files(MemoryObjectStore()) == {}
        assert index.state is LoadState.LOADED

    def test_loads_entries(self) -> None:
        store = MemoryObjectStore()
        store.put("d/map", [b"k1 a.txt\n", b"k2 b c.txt\n"])

        assert FileIndex("d").files(store) == {"a.txt": "k1", "b c.txt": "k2"}

    def test_not_loaded_until_accessed(self) -> None:
        index = FileIndex("d")

        assert index.state is LoadState.NOT_LOADED
        assert index.cached() is None

    def test_transient_failure_is_retried(self) -> None:
        store = FlakyStore(failures=1)
        store.put("d/map", [b"k1 a.txt\n"])
        index = FileIndex("d")

        with pytest.raises(BadStateError, match="cannot load map file"):
            index.files(store)
        assert index.state is LoadState.LOAD_FAILED
        assert index.cached() is None

        assert index.files(store) == {"a.txt": "k1"}
        assert index.state is LoadState.LOADED
        assert store.opens == 2

    def test_malformed_index_stays_failed(self) -> None:
        store = MemoryObjectStore()
        store.put("d/map", [b"garbage\n"])
        index = FileIndex("d")

        with pytest.raises(BadStateError, match="malformed"):
            index.files(store)

        assert index.state is LoadState.LOAD_FAILED


class TestFileIndexMutation:
    """Tests for add/discard/persist."""

    def test_add_requires_loaded(self) -> None:
        with pytest.raises(BadStateError, match="not loaded"):
            FileIndex("d").add("a", "k")

    def test_add_discard_persist(self) -> None:
        store = MemoryObjectStore()
        index = FileIndex("d")
        index.files(store)

        index.add("b", "kb")
        index.add("a", "ka")
        index.discard("b")
        index.persist(store)

        assert store.read("d/map") == b"ka a\n"

    def test_readding_same_name_is_allowed(self) -> None:
        index = FileIndex("d")
        index.files(MemoryObjectStore())
        index.add("a", "k")

        index.add("a", "k")

        assert index.cached() == {"a": "k"}

    def test_collision_is_refused(self) -> None:
        index = FileIndex("d")
        index.files(MemoryObjectStore())
        index.add("a", "k")

        with pytest.raises(HashCollisionError) as exc_info:
            index.add("b", "k")

        assert exc_info.value.existing_path == "a"

    def test_lookup_name(self) -> None:
        index = FileIndex("d")
        index.files(MemoryObjectStore())
        index.add("a", "k")

        assert index.lookup_name("k") == "a"
        assert index.lookup_name("other") is None

    def test_reset(self) -> None:
        store = MemoryObjectStore()
        store.put("d/map", [b"k a\n"])
        index = FileIndex("d")
        index.files(store)

        index.reset()

        assert index.cached() == {}

    def test_persist_of_failed_index_retries_load_first(self) -> None:
        store = FlakyStore(failures=2)
        store.put("d/map", [b"k a\n"])
        index = FileIndex("d")
        with pytest.raises(BadStateError):
            index.files(store)

        with pytest.raises(BadStateError):
            index.persist(store)

        assert store.read("d/map") == b"k a\n"


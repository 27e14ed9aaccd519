"""Tests for HashmapFs mutations.

Tests cover:
1. Mkdir/Rmdir keep the root index and backing containers in step
2. Put/Copy/Remove write and clean the exact storage layout
3. Purge and DirMove: children first, partial failures, persisted indices
4. Index state survives a restart
"""

from __future__ import annotations

import io
import logging
from datetime import UTC, datetime

import pytest

from hashmap.backend.memory_store import MemoryObjectStore
from hashmap.backend.models import StoreFeatures
from hashmap.deadline import Deadline
from hashmap.errors import (
    BadStateError,
    DirectoryExistsError,
    DirectoryNotEmptyError,
    DirectoryNotFoundError,
    InvalidMoveError,
    InvalidNameError,
    IsDirectoryError,
    IsFileError,
    ObjectNotFoundError,
    StorageBackendError,
    UnsupportedOperationError,
)
from hashmap.fs import HashmapFs
from hashmap.hashing import hash_md5
from hashmap.objects import HashmapObject
from hashmap.tree import DirectoryTree

D_A = hash_md5("a")
F_X = hash_md5("x")


def _persisted_paths(store: MemoryObjectStore) -> list[str]:
    """Directory paths a restarted process would load from the root index."""
    return DirectoryTree.load(store, hash_md5).paths()


class FailingStore(MemoryObjectStore):
    """Memory store that fails selected operations on selected keys."""

    def __init__(self, fail: dict[str, set[str]] | None = None) -> None:
        super().__init__()
        self.fail = fail or {}

    def _check(self, operation: str, key: str) -> None:
        if key in self.fail.get(operation, set()):
            raise StorageBackendError(f"injected {operation} failure", key=key)

    def mkdir(self, key: str, *, deadline: Deadline | None = None) -> None:
        self._check("mkdir", key)
        super().mkdir(key, deadline=deadline)

    def purge(self, key: str, *, deadline: Deadline | None = None) -> None:
        self._check("purge", key)
        super().purge(key, deadline=deadline)

    def move(self, src_key: str, dst_key: str, *, deadline: Deadline | None = None) -> None:
        self._check("move", src_key)
        super().move(src_key, dst_key, deadline=deadline)


class TestMkdir:
    """Tests for directory creation."""

    def test_creates_ancestors_and_persists(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a/b")

        assert fs.tree.paths() == ["", "a", "a/b"]
        assert store.read("map") == (
            f"{hash_md5('')} \n{D_A} a\n{hash_md5('a/b')} a/b\n".encode()
        )
        assert _persisted_paths(store) == ["", "a", "a/b"]

    def test_creates_containers(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a/b")

        keys = {e.key for e in store.list("")}
        assert {D_A, hash_md5("a/b")} <= keys

    def test_existing_is_noop(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        before = store.get("map")

        fs.mkdir("a")
        fs.mkdir("")

        assert store.get("map") == before

    def test_newline_rejected(self, fs: HashmapFs) -> None:
        with pytest.raises(InvalidNameError):
            fs.mkdir("bad\nname")

        assert fs.tree.paths() == [""]

    def test_failed_container_creation_rolls_back(self) -> None:
        store = FailingStore({"mkdir": {hash_md5("a/b")}})
        fs = HashmapFs(store)

        with pytest.raises(StorageBackendError):
            fs.mkdir("a/b")

        assert fs.tree.paths() == [""]
        assert store.keys() == []

    def test_over_existing_file(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"1")
        keys_before = store.keys()

        with pytest.raises(IsFileError):
            fs.mkdir("a/x")
        with pytest.raises(IsFileError):
            fs.mkdir("a/x/y")

        assert fs.tree.paths() == ["", "a"]
        assert store.keys() == keys_before

    def test_refuses_when_parent_index_unreadable(
        self, fs: HashmapFs, store: MemoryObjectStore
    ) -> None:
        fs.mkdir("a")
        store.put(f"{D_A}/map", [b"corrupt\n"])

        with pytest.raises(BadStateError):
            fs.mkdir("a/b")

        assert fs.tree.paths() == ["", "a"]


class TestRmdir:
    """Tests for directory removal."""

    def test_removes_empty_directory(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")

        fs.rmdir("a")

        assert "a" not in fs.tree
        assert D_A not in {e.key for e in store.list("")}
        assert _persisted_paths(store) == [""]

    def test_missing(self, fs: HashmapFs) -> None:
        with pytest.raises(DirectoryNotFoundError):
            fs.rmdir("a")

    def test_with_file(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"1")

        with pytest.raises(DirectoryNotEmptyError):
            fs.rmdir("a")

    def test_with_subdirectory(self, fs: HashmapFs) -> None:
        fs.mkdir("a/b")

        with pytest.raises(DirectoryNotEmptyError):
            fs.rmdir("a")

    def test_unreadable_index_refuses(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        store.put(f"{D_A}/map", [b"corrupt\n"])

        with pytest.raises(BadStateError, match="refusing to modify"):
            fs.rmdir("a")

        assert "a" in fs.tree

    def test_root(self, fs: HashmapFs) -> None:
        with pytest.raises(BadStateError):
            fs.rmdir("")


class TestPut:
    """Tests for writing files."""

    def test_storage_layout(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")

        obj = fs.put("a/x", b"hi")

        assert obj.base_path == f"{D_A}/{F_X}"
        assert store.keys() == sorted(
            ["map", f"{D_A}/map", f"{D_A}/{F_X}/data", f"{D_A}/{F_X}/name"]
        )
        assert store.read(f"{D_A}/map") == f"{F_X} x\n".encode()
        assert store.read(f"{D_A}/{F_X}/name") == b"a/x\n"
        assert store.read(f"{D_A}/{F_X}/data") == b"hi"

    def test_overwrite_keeps_single_entry(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"old")

        fs.put("a/x", b"new")

        assert fs.new_object("a/x").read() == b"new"
        assert store.read(f"{D_A}/map") == f"{F_X} x\n".encode()

    def test_accepts_stream_and_chunks(self, fs: HashmapFs) -> None:
        fs.mkdir("a")

        fs.put_stream("a/s", io.BytesIO(b"streamed"))
        fs.put("a/c", [b"chu", b"nks"])

        assert fs.new_object("a/s").read() == b"streamed"
        assert fs.new_object("a/c").read() == b"chunks"

    def test_mod_time(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        when = datetime(2024, 3, 1, tzinfo=UTC)

        assert fs.put("a/x", b"1", mod_time=when).mod_time == when

    def test_parent_must_exist(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        with pytest.raises(DirectoryNotFoundError):
            fs.put("missing/x", b"1")

        assert store.keys() == []

    def test_onto_directory(self, fs: HashmapFs) -> None:
        fs.mkdir("a/b")

        with pytest.raises(IsDirectoryError):
            fs.put("a/b", b"1")

    def test_newline_in_name(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        keys_before = store.keys()
        paths_before = fs.tree.paths()

        with pytest.raises(InvalidNameError):
            fs.put("a/x\ny", b"1")

        assert store.keys() == keys_before
        assert fs.tree.paths() == paths_before
        assert _persisted_paths(store) == paths_before

    def test_corrupt_index_writes_nothing(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        store.put(f"{D_A}/map", [b"corrupt\n"])
        before = store.keys()

        with pytest.raises(BadStateError):
            fs.put("a/x", b"1")

        assert store.keys() == before

    def test_files_in_root_directory(self, fs: HashmapFs) -> None:
        fs.put("top.txt", b"1")

        assert [e.remote for e in fs.list("")] == ["top.txt"]


class TestObjectMethods:
    """Tests for HashmapObject operations."""

    def test_remove(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        fs.put("a/keep", b"1")
        obj = fs.put("a/x", b"2")

        obj.remove()

        assert not any(k.startswith(obj.base_path) for k in store.keys())
        assert [e.remote for e in fs.list("a")] == ["a/keep"]
        with pytest.raises(ObjectNotFoundError):
            fs.new_object("a/x")

    def test_remove_refuses_on_unreadable_index(
        self, fs: HashmapFs, store: MemoryObjectStore
    ) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"1")
        obj = fs.new_object("a/x")
        store.put(f"{D_A}/map", [b"corrupt\n"])
        entry = DirectoryTree.load(store, hash_md5).get("a")
        assert entry is not None

        with pytest.raises(BadStateError):
            HashmapObject(fs, "a/x", obj.base_path, entry, obj.info).remove()

        assert store.read(obj.data_key) == b"1"

    def test_update_replaces_payload_only(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        obj = fs.put("a/x", b"old")

        obj.update([b"newer"])

        assert obj.size == 5
        assert fs.new_object("a/x").read() == b"newer"
        assert store.read(f"{obj.base_path}/name") == b"a/x\n"

    def test_open(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        obj = fs.put("a/x", b"data")

        with obj.open() as stream:
            assert stream.read() == b"data"

    def test_set_mod_time(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        obj = fs.put("a/x", b"data")
        when = datetime(2020, 1, 1, tzinfo=UTC)

        obj.set_mod_time(when)

        assert obj.mod_time == when
        assert fs.new_object("a/x").mod_time == when

    def test_set_mod_time_unsupported(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures(can_have_empty_directories=True)))
        fs.mkdir("a")
        obj = fs.put("a/x", b"data")

        with pytest.raises(UnsupportedOperationError):
            obj.set_mod_time(datetime(2020, 1, 1, tzinfo=UTC))


class TestCopy:
    """Tests for server-side copy."""

    def test_copy(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        fs.mkdir("b")
        src = fs.put("a/x", b"payload")

        dst = fs.copy(src, "b/y")

        assert dst.remote == "b/y"
        assert fs.new_object("b/y").read() == b"payload"
        assert fs.new_object("a/x").read() == b"payload"
        assert fs.store.read(f"{dst.base_path}/name") == b"b/y\n"

    def test_unsupported(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures(can_have_empty_directories=True)))
        fs.mkdir("a")
        src = fs.put("a/x", b"1")

        with pytest.raises(UnsupportedOperationError) as exc_info:
            fs.copy(src, "a/y")

        assert exc_info.value.capability == "copy"

    def test_different_store(self, fs: HashmapFs) -> None:
        other = HashmapFs(MemoryObjectStore())
        other.mkdir("a")
        src = other.put("a/x", b"1")
        fs.mkdir("a")

        with pytest.raises(UnsupportedOperationError):
            fs.copy(src, "a/x")


class TestPurge:
    """Tests for recursive removal."""

    def test_purge_subtree(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a/b/c")
        fs.mkdir("z")
        fs.put("a/b/f", b"1")

        fs.purge("a")

        assert fs.tree.paths() == ["", "z"]
        assert all(not k.startswith((D_A, hash_md5("a/b"))) for k in store.keys())
        assert _persisted_paths(store) == ["", "z"]

    def test_purge_root_keeps_root(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")
        fs.put("top", b"1")
        fs.put("a/x", b"1")

        fs.purge("")

        assert fs.tree.paths() == [""]
        assert fs.list("") == []
        assert store.keys() == ["map"]

    def test_missing(self, fs: HashmapFs) -> None:
        with pytest.raises(DirectoryNotFoundError):
            fs.purge("a")

    def test_unsupported(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures(can_have_empty_directories=True)))
        fs.mkdir("a")

        with pytest.raises(UnsupportedOperationError):
            fs.purge("a")

    def test_partial_failure_keeps_ancestors(self) -> None:
        store = FailingStore({"purge": {hash_md5("a/bad")}})
        fs = HashmapFs(store)
        for path in ("a/bad", "a/good", "z"):
            fs.mkdir(path)

        with pytest.raises(StorageBackendError, match="injected purge failure"):
            fs.purge("")

        assert fs.tree.paths() == ["", "a", "a/bad"]
        assert _persisted_paths(store) == ["", "a", "a/bad"]


class TestDirMove:
    """Tests for directory moves."""

    def test_move_subtree(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a/b")
        fs.put("a/top", b"t")
        fs.put("a/b/x", b"hi")

        fs.dir_move("a", "c")

        assert fs.tree.paths() == ["", "c", "c/b"]
        assert [e.remote for e in fs.list("c")] == ["c/b", "c/top"]
        moved = fs.new_object("c/b/x")
        assert moved.read() == b"hi"
        assert store.read(f"{moved.base_path}/name") == b"c/b/x\n"
        assert not any(k.startswith((D_A, hash_md5("a/b"))) for k in store.keys())
        assert _persisted_paths(store) == ["", "c", "c/b"]
        with pytest.raises(DirectoryNotFoundError):
            fs.list("a")
        with pytest.raises(DirectoryNotFoundError):
            fs.list("a/b")

    def test_move_into_new_parent(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"1")

        fs.dir_move("a", "p/q/a")

        assert fs.tree.paths() == ["", "p", "p/q", "p/q/a"]
        assert fs.new_object("p/q/a/x").read() == b"1"

    def test_into_itself(self, fs: HashmapFs) -> None:
        fs.mkdir("a")

        with pytest.raises(InvalidMoveError):
            fs.dir_move("a", "a/b")

    def test_destination_exists(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        fs.mkdir("b")

        with pytest.raises(DirectoryExistsError):
            fs.dir_move("a", "b")

    def test_source_missing(self, fs: HashmapFs) -> None:
        with pytest.raises(DirectoryNotFoundError):
            fs.dir_move("a", "b")

    def test_root_cannot_move(self, fs: HashmapFs) -> None:
        with pytest.raises(InvalidMoveError):
            fs.dir_move("", "elsewhere")

    def test_unsupported(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures(can_have_empty_directories=True)))
        fs.mkdir("a")

        with pytest.raises(UnsupportedOperationError):
            fs.dir_move("a", "b")

    def test_between_overlays_on_same_store(self, store: MemoryObjectStore) -> None:
        src = HashmapFs(store, root="src")
        dst = HashmapFs(store, root="dst")
        src.mkdir("album")
        src.put("album/p.jpg", b"jpg")
        dst.mkdir("")

        dst.dir_move("album", "moved", src_fs=src)

        assert "src/album" not in src.tree
        assert dst.new_object("moved/p.jpg").read() == b"jpg"
        with pytest.raises(DirectoryNotFoundError):
            src.list("album")
        assert _persisted_paths(store) == ["", "dst", "dst/moved", "src"]

        restarted = MemoryObjectStore()
        for key in store.keys():
            restarted.put(key, [store.read(key)])
        reopened_src = HashmapFs(restarted, root="src")
        assert reopened_src.list("") == []
        with pytest.raises(DirectoryNotFoundError):
            reopened_src.list("album")
        reopened_dst = HashmapFs(restarted, root="dst")
        assert reopened_dst.new_object("moved/p.jpg").read() == b"jpg"

    def test_overlays_on_same_store_share_the_tree(self, store: MemoryObjectStore) -> None:
        photos = HashmapFs(store, root="photos")
        docs = HashmapFs(store, root="docs")

        photos.mkdir("2024")
        docs.mkdir("letters")

        assert photos.tree is docs.tree
        assert photos.lock is docs.lock
        assert _persisted_paths(store) == ["", "docs", "docs/letters", "photos", "photos/2024"]

    def test_between_different_stores(self, fs: HashmapFs) -> None:
        other = HashmapFs(MemoryObjectStore())
        other.mkdir("a")

        with pytest.raises(UnsupportedOperationError):
            fs.dir_move("a", "b", src_fs=other)

    def test_failed_child_leaves_parent(self) -> None:
        store = FailingStore({"move": {hash_md5("a/bad")}})
        fs = HashmapFs(store)
        fs.mkdir("a/bad")
        fs.mkdir("a/good")

        with pytest.raises(StorageBackendError):
            fs.dir_move("a", "c")

        assert fs.tree.paths() == ["", "a", "a/bad", "c", "c/good"]
        assert _persisted_paths(store) == fs.tree.paths()


class TestIdentityHashing:
    """Tests for overlays that store names unhashed."""

    def test_round_trip_leaves_only_root_entry(
        self, identity_fs: HashmapFs, store: MemoryObjectStore
    ) -> None:
        identity_fs.mkdir("a/b")
        obj = identity_fs.put("a/b/x", b"hi")

        assert obj.base_path == "a/b/x"
        assert [e.remote for e in identity_fs.list("a/b")] == ["a/b/x"]

        obj.remove()
        identity_fs.rmdir("a/b")
        identity_fs.rmdir("a")

        assert store.keys() == ["map"]
        assert store.read("map") == b" \n"

    def test_reserved_names(self, identity_fs: HashmapFs) -> None:
        identity_fs.mkdir("a")

        with pytest.raises(InvalidNameError):
            identity_fs.mkdir("a/map")
        with pytest.raises(InvalidNameError):
            identity_fs.put("a/data", b"1")

    def test_no_files_in_root(self, identity_fs: HashmapFs) -> None:
        with pytest.raises(InvalidNameError, match="root directory"):
            identity_fs.put("top.txt", b"1")

    def test_root_never_reads_root_index_as_file_index(
        self,
        identity_fs: HashmapFs,
        store: MemoryObjectStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        identity_fs.mkdir("a/b")

        with caplog.at_level(logging.WARNING, logger="hashmap"):
            entries = identity_fs.list("")

        assert [e.remote for e in entries] == ["a"]
        assert identity_fs.tree.root.file_index.cached() == {}
        assert caplog.records == []
        identity_fs.purge("")
        assert store.read("map") == b" \n"

    def test_mkdir_over_file_keeps_payload(
        self, identity_fs: HashmapFs, store: MemoryObjectStore
    ) -> None:
        identity_fs.mkdir("a")
        identity_fs.put("a/x", b"1")

        with pytest.raises(IsFileError):
            identity_fs.mkdir("a/x")

        assert "a/x" not in identity_fs.tree
        assert identity_fs.new_object("a/x").read() == b"1"
        assert store.read("a/x/data") == b"1"

    def test_dir_move_nested(self, identity_fs: HashmapFs, store: MemoryObjectStore) -> None:
        identity_fs.mkdir("a/b")
        identity_fs.put("a/f", b"1")
        identity_fs.put("a/b/g", b"2")

        identity_fs.dir_move("a", "c")

        assert identity_fs.new_object("c/f").read() == b"1"
        assert identity_fs.new_object("c/b/g").read() == b"2"
        assert store.read("c/b/g/name") == b"c/b/g\n"
        assert not any(k.startswith("a/") for k in store.keys())


class TestDelegations:
    """Tests for features and pass-through operations."""

    def test_properties(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        assert fs.backend_name == "hashmap:memory"
        assert fs.precision == store.precision
        assert fs.hashes == frozenset({"sha256"})
        assert str(fs) == "Hashmap (md5) 'hashmap:'"

    def test_features_always_keep_empty_directories(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures(move=True)))

        assert fs.features.can_have_empty_directories
        assert fs.features.move
        assert not fs.features.purge

    def test_about_and_cleanup(self, fs: HashmapFs) -> None:
        fs.mkdir("a")
        fs.put("a/x", b"123")

        assert fs.about().objects == 4
        fs.cleanup()

    def test_about_unsupported(self) -> None:
        fs = HashmapFs(MemoryObjectStore(StoreFeatures()))

        with pytest.raises(UnsupportedOperationError):
            fs.about()
        with pytest.raises(UnsupportedOperationError):
            fs.cleanup()

    def test_unknown_hash_type(self, store: MemoryObjectStore) -> None:
        from hashmap.hashing import UnknownHashTypeError

        with pytest.raises(UnknownHashTypeError):
            HashmapFs(store, hash_type="crc32")

    def test_reopen_with_other_hash_type(self, fs: HashmapFs, store: MemoryObjectStore) -> None:
        fs.mkdir("a")

        with pytest.raises(BadStateError, match="already open with hash type md5"):
            HashmapFs(store, hash_type="sha1")

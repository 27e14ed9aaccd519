"""Tests for the persisted index formats.

Tests cover:
1. Entry lines are sorted by name and keep spaces in names
2. Malformed entries and invalid UTF-8 are refused
3. Name records are a single newline-terminated line
"""

from __future__ import annotations

import io

import pytest

from hashmap.codec import (
    decode_entries,
    decode_name_record,
    encode_entries,
    encode_name_record,
    name_record_size,
)
from hashmap.errors import BadStateError


class TestEncodeEntries:
    """Tests for encoding name -> key tables."""

    def test_lines_are_sorted_by_name(self) -> None:
        lines = list(encode_entries({"b": "k2", "a": "k1", "c d": "k3"}))

        assert lines == [b"k1 a\n", b"k2 b\n", b"k3 c d\n"]

    def test_empty_mapping_encodes_to_nothing(self) -> None:
        assert list(encode_entries({})) == []

    def test_identity_root_entry_is_a_lone_space(self) -> None:
        assert b"".join(encode_entries({"": ""})) == b" \n"


class TestDecodeEntries:
    """Tests for decoding name -> key tables."""

    def test_decodes_stream(self) -> None:
        stream = io.BytesIO(b"k1 a\nk2 with space\n")

        assert list(decode_entries(stream, source="map")) == [("k1", "a"), ("k2", "with space")]

    def test_blank_lines_are_skipped(self) -> None:
        assert list(decode_entries([b"\n", b"k a\n", b""], source="map")) == [("k", "a")]

    def test_root_entry_with_empty_path(self) -> None:
        assert list(decode_entries([b"d41d8cd98f00b204e9800998ecf8427e \n"], source="map")) == [
            ("d41d8cd98f00b204e9800998ecf8427e", "")
        ]

    def test_entry_without_separator_is_refused(self) -> None:
        with pytest.raises(BadStateError, match="malformed map file"):
            list(decode_entries([b"k1 a\n", b"garbage\n"], source="dir/map"))

    def test_invalid_utf8_is_refused(self) -> None:
        with pytest.raises(BadStateError) as exc_info:
            list(decode_entries([b"k \xff\xfe\n"], source="dir/map"))

        assert exc_info.value.key == "dir/map"


class TestNameRecord:
    """Tests for name records."""

    def test_encode_and_size_agree(self) -> None:
        data = b"".join(encode_name_record("photos/été.jpg"))

        assert data == "photos/été.jpg\n".encode()
        assert name_record_size("photos/été.jpg") == len(data)

    def test_decode(self) -> None:
        assert decode_name_record(b"a/b/c\n", source="k/name") == "a/b/c"

    @pytest.mark.parametrize("data", [b"a/b", b"a\nb\n", b"\xff\n"])
    def test_malformed_record_is_refused(self, data: bytes) -> None:
        with pytest.raises(BadStateError, match="malformed name file"):
            decode_name_record(data, source="k/name")

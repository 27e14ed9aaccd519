"""Persisted index formats.

All index objects are UTF-8, newline-terminated lines:

    map                         "<storageKey> <logicalPath>\\n", sorted by path
    <dirKey>/map                "<fileKey> <filename>\\n", sorted by filename
    <dirKey>/<fileKey>/name     "<logicalPath>\\n"

Encoders are generators: they emit one encoded line at a time and the
backing store's put() consumes them, so an index is never materialised as a
single buffer. Decoders accept any iterable of byte lines (a binary stream
works) and refuse malformed input.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

from hashmap.errors import BadStateError


def encode_entries(entries: Mapping[str, str]) -> Iterator[bytes]:
    """Encode a name -> key mapping as sorted "<key> <name>" lines.

    Args:
        entries: Mapping from logical path (or filename) to storage key.

    Yields:
        One encoded line per entry, ascending by name.
    """
    for name in sorted(entries):
        yield f"{entries[name]} {name}\n".encode()


def decode_entries(lines: Iterable[bytes], *, source: str) -> Iterator[tuple[str, str]]:
    """Decode "<key> <name>" lines into (key, name) pairs.

    Blank lines are skipped. The name is everything after the first space,
    so names may themselves contain spaces.

    Args:
        lines: Byte lines, e.g. an open binary stream.
        source: Object key being decoded, for error messages.

    Raises:
        BadStateError: If a line is not valid UTF-8 or has no separator.
    """
    for raw in lines:
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BadStateError("malformed map file, refusing to load: invalid UTF-8", key=source) from e
        line = line.removesuffix("\n")
        if not line:
            continue
        key, sep, name = line.partition(" ")
        if not sep:
            raise BadStateError(
                f"malformed map file, refusing to load: invalid entry {line!r}", key=source
            )
        yield key, name


def encode_name_record(path: str) -> Iterator[bytes]:
    """Encode a name record holding a file's full logical path."""
    yield f"{path}\n".encode()


def name_record_size(path: str) -> int:
    return len(path.encode()) + 1


def decode_name_record(data: bytes, *, source: str) -> str:
    """Decode a name record.

    Raises:
        BadStateError: If the record is not a single newline-terminated line.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BadStateError("malformed name file: invalid UTF-8", key=source) from e
    if not text.endswith("\n") or "\n" in text[:-1]:
        raise BadStateError("malformed name file", key=source)
    return text[:-1]

"""Tests for the streaming MD5 checksum engine."""

import hashlib
from pathlib import Path

import pytest

from saturn_link.sdcp.checksum import (
    async_file_md5,
    digest,
    file_md5,
    iter_file_chunks,
)

# ruff: noqa: PLR2004  # Magic values in tests are expected


def test_digest_of_known_value() -> None:
    """Test the digest of a well known input."""
    assert digest([b"hello ", b"world"]).hex() == hashlib.md5(b"hello world").hexdigest()  # noqa: S324


def test_digest_of_empty_sequence() -> None:
    """Test that no chunks give the MD5 of the empty string."""
    assert digest([]).hex() == "d41d8cd98f00b204e9800998ecf8427e"


def test_digest_does_not_depend_on_chunking() -> None:
    """Test that the digest is the same however the bytes are split."""
    data = bytes(range(256)) * 40
    whole = digest([data])
    assert digest([data[:1], data[1:]]) == whole
    assert digest(data[i : i + 7] for i in range(0, len(data), 7)) == whole
    assert len(whole) == 16


def test_iter_file_chunks_bounds_reads(tmp_path: Path) -> None:
    """Test that the file is read in windows of at most the given size."""
    path = tmp_path / "model.goo"
    path.write_bytes(b"x" * 2500)

    chunks = list(iter_file_chunks(str(path), window=1000))

    assert [len(c) for c in chunks] == [1000, 1000, 500]


def test_iter_file_chunks_rejects_bad_window(tmp_path: Path) -> None:
    """Test that a non-positive window is refused."""
    path = tmp_path / "model.goo"
    path.write_bytes(b"x")
    with pytest.raises(ValueError, match="window"):
        list(iter_file_chunks(str(path), window=0))


def test_file_md5_matches_hashlib(tmp_path: Path) -> None:
    """Test that file_md5 is deterministic and matches hashlib."""
    data = b"\x00\x01resin" * 10_000
    path = tmp_path / "model.ctb"
    path.write_bytes(data)

    expected = hashlib.md5(data).hexdigest()  # noqa: S324
    assert file_md5(str(path), window=4096) == expected
    assert file_md5(str(path)) == expected


@pytest.mark.anyio
async def test_async_file_md5(tmp_path: Path) -> None:
    """Test the executor-backed variant."""
    path = tmp_path / "model.goo"
    path.write_bytes(b"layer data")
    assert await async_file_md5(str(path)) == hashlib.md5(b"layer data").hexdigest()  # noqa: S324

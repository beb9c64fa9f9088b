"""Streaming MD5 digests for print files."""

from __future__ import annotations

import asyncio
import hashlib
from functools import reduce
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

DIGEST_WINDOW = 1024 * 1024


def iter_file_chunks(path: str, window: int = DIGEST_WINDOW) -> Iterator[bytes]:
    """Yield the contents of path in reads of at most window bytes."""
    if window <= 0:
        msg = "window must be a positive integer"
        raise ValueError(msg)
    with open(path, "rb") as f:  # noqa: PTH123
        yield from iter(lambda: f.read(window), b"")


def _fold(md5: hashlib._Hash, chunk: bytes) -> hashlib._Hash:
    md5.update(chunk)
    return md5


def digest(chunks: Iterable[bytes]) -> bytes:
    """
    Return the 16-byte MD5 of a sequence of byte chunks.

    Only one chunk is held at a time, so memory use does not depend on the
    total length.
    """
    return reduce(_fold, chunks, hashlib.md5()).digest()  # noqa: S324


def file_md5(path: str, window: int = DIGEST_WINDOW) -> str:
    """Return the hex MD5 of the file at path."""
    return digest(iter_file_chunks(path, window)).hex()


async def async_file_md5(path: str, window: int = DIGEST_WINDOW) -> str:
    """Compute file_md5 in the default executor."""
    return await asyncio.get_running_loop().run_in_executor(
        None, file_md5, path, window
    )

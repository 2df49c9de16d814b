"""Stream copying and I/O error translation shared by the filesystem writers."""

from __future__ import annotations

import errno
from typing import BinaryIO

from embroidery_buddy.exceptions import BackendError, InsufficientSpaceError, StorageError

COPY_CHUNK_SIZE = 1024 * 1024


def is_out_of_space_error(error: BaseException | None) -> bool:
    """Check whether an error is a "no space left on device" condition."""
    if error is None:
        return False
    if isinstance(error, InsufficientSpaceError):
        return True
    return isinstance(error, OSError) and error.errno in (errno.ENOSPC, errno.EFBIG)


def translate_os_error(error: OSError, path: str, action: str) -> StorageError:
    """Map an ``OSError`` raised while ``action``-ing ``path`` to a storage error."""
    if is_out_of_space_error(error):
        return InsufficientSpaceError(path)
    return BackendError(f"Failed to {action} {path}: {error}", path)


def copy_stream(
    source: BinaryIO,
    target: BinaryIO,
    size: int | None,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Copy up to ``size`` bytes from ``source`` to ``target``.

    Stops early, without error, when the source runs out; uploads whose exact
    length is unknown up front rely on this. A ``size`` of ``None`` or less
    than zero copies until the source is exhausted.

    Returns:
        Number of bytes copied
    """
    copied = 0
    unlimited = size is None or size < 0
    while unlimited or copied < size:
        want = chunk_size if unlimited else min(chunk_size, size - copied)
        chunk = source.read(want)
        if not chunk:
            break
        target.write(chunk)
        copied += len(chunk)
    return copied

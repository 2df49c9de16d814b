"""Path handling for files stored on the virtual disk.

Paths on the disk are always absolute, "/"-separated and free of "." and ".."
components. Normalization is purely lexical: it never looks at the disk.
"""

from __future__ import annotations

import posixpath

from embroidery_buddy.exceptions import InvalidPathError


def normalize_path(path: str) -> str:
    """Normalize ``path`` into an absolute, traversal-free disk path.

    >>> normalize_path("a/b")
    '/a/b'
    >>> normalize_path("/a/../b")
    '/b'

    Raises:
        InvalidPathError: If the path is empty or contains a NUL byte
    """
    if not isinstance(path, str) or not path:
        raise InvalidPathError(str(path), "empty path")
    if "\x00" in path:
        raise InvalidPathError(path, "contains NUL byte")

    if not path.startswith("/"):
        path = "/" + path

    cleaned = posixpath.normpath(path)
    # POSIX keeps exactly two leading slashes; the disk has a single root
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def split_path(path: str) -> list[str]:
    """Components of a normalized path, without the root."""
    return [part for part in normalize_path(path).split("/") if part]


def parent_dir(path: str) -> str:
    return posixpath.dirname(normalize_path(path))


def normalize_file_path(path: str) -> str:
    """Like :func:`normalize_path` but rejects paths that resolve to the root."""
    normalized = normalize_path(path)
    if normalized == "/":
        raise InvalidPathError(path, "resolves to the root directory")
    return normalized

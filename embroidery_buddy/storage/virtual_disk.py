"""The backing disk image and the FAT filesystem handle opened on it.

The image is memory-mapped read/write with ``nobodd.disk.DiskImage`` and its
first partition is opened with ``nobodd.fs.FatFileSystem``. All paths passed
in are normalized first, so callers may hand over upload names verbatim.
"""

from __future__ import annotations

import mmap
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

from nobodd.disk import DiskImage
from nobodd.fs import FatFileSystem

from embroidery_buddy.exceptions import (
    BackendError,
    DiskFileNotFoundError,
    DiskImageError,
    DiskNotInitializedError,
    StorageError,
)
from embroidery_buddy.logging import LoggerFactory
from embroidery_buddy.storage.file_utils import translate_os_error
from embroidery_buddy.storage.image import DEFAULT_LABEL, Partition, find_partition, format_partition
from embroidery_buddy.storage.paths import normalize_path, split_path


log = LoggerFactory.for_disk()

FAT_PARTITION_NUMBER = 1


class VirtualDisk:
    def __init__(self, image_path: Path | str):
        self.image_path = Path(image_path)
        self._image: DiskImage | None = None
        self._filesystem: FatFileSystem | None = None
        self._partition: Partition | None = None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<VirtualDisk {str(self.image_path)!r} {state}>"

    @property
    def filesystem(self) -> FatFileSystem | None:
        return self._filesystem

    @property
    def is_open(self) -> bool:
        return self._filesystem is not None

    @property
    def size_bytes(self) -> int:
        return self.image_path.stat().st_size

    @property
    def partition(self) -> Partition:
        if self._partition is None:
            self._partition = find_partition(self.image_path)
        return self._partition

    def open(self) -> None:
        """Map the image and open its FAT partition.

        Raises:
            DiskImageError: If the image is missing or holds no readable FAT
        """
        if self.is_open:
            return
        if not self.image_path.exists():
            raise DiskImageError(
                f"Disk image {self.image_path} doesn't exist", str(self.image_path)
            )
        self._partition = find_partition(self.image_path)

        try:
            image = DiskImage(str(self.image_path), access=mmap.ACCESS_WRITE)
        except (OSError, ValueError) as error:
            raise DiskImageError(
                f"Failed to open disk {self.image_path}: {error}", str(self.image_path)
            ) from error

        try:
            filesystem = FatFileSystem(image.partitions[FAT_PARTITION_NUMBER].data)
        except (OSError, ValueError, KeyError) as error:
            image.close()
            raise DiskImageError(
                f"Failed to get filesystem from {self.image_path}: {error}",
                str(self.image_path),
            ) from error

        self._image = image
        self._filesystem = filesystem
        log.debug(f"Opened {filesystem.fat_type} filesystem on {self.image_path}")

    def close(self) -> None:
        """Release the filesystem handle and the image mapping. Idempotent."""
        filesystem, image = self._filesystem, self._image
        self._filesystem = None
        self._image = None
        try:
            if filesystem is not None:
                filesystem.close()
        finally:
            if image is not None:
                image.close()
        if filesystem is not None:
            log.debug(f"Closed filesystem on {self.image_path}")

    def detach(self) -> None:
        """Release the image so another writer (the kernel) can own it."""
        if self.is_open:
            log.debug(f"Detaching {self.image_path}")
        self.close()

    def attach(self) -> None:
        """Reopen the image after :meth:`detach`."""
        self.open()

    def _require_filesystem(self) -> FatFileSystem:
        if self._filesystem is None:
            raise DiskNotInitializedError()
        return self._filesystem

    def _resolve(self, path: str):
        target = self._require_filesystem().root
        for part in split_path(path):
            target = target / part
        return target

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def make_dirs(self, path: str) -> None:
        """Create ``path`` and any missing parents. Existing directories are fine."""
        current = self._require_filesystem().root
        built = ""
        for part in split_path(path):
            current = current / part
            built += "/" + part
            try:
                if current.exists():
                    if not current.is_dir():
                        raise BackendError(f"{built} exists and is not a directory", built)
                    continue
                current.mkdir()
            except FileExistsError:
                continue
            except OSError as error:
                raise translate_os_error(error, built, "create directory") from error

    @contextmanager
    def open_write(self, path: str) -> Iterator[BinaryIO]:
        """Create or truncate ``path`` and yield a binary writer for it."""
        normalized = normalize_path(path)
        target = self._resolve(normalized)
        try:
            handle = target.open("wb")
        except OSError as error:
            raise translate_os_error(error, normalized, "create file") from error
        try:
            try:
                yield handle
            finally:
                handle.close()
        except StorageError:
            raise
        except OSError as error:
            raise translate_os_error(error, normalized, "write file") from error

    def read_bytes(self, path: str) -> bytes:
        """Read the whole file at ``path``.

        Raises:
            DiskFileNotFoundError: If nothing exists at ``path``
        """
        normalized = normalize_path(path)
        target = self._resolve(normalized)
        try:
            if not target.exists():
                raise DiskFileNotFoundError(normalized)
            if target.is_dir():
                raise BackendError(f"{normalized} is a directory", normalized)
            with target.open("rb") as handle:
                return handle.read()
        except FileNotFoundError as error:
            raise DiskFileNotFoundError(normalized) from error
        except OSError as error:
            raise translate_os_error(error, normalized, "open file") from error

    def reformat(self, label: str = DEFAULT_LABEL) -> None:
        """Recreate an empty filesystem on the partition and reopen it."""
        self._require_filesystem()
        partition = self.partition
        self.close()
        try:
            format_partition(self.image_path, partition, label)
        finally:
            self.open()
        log.info(f"Recreated filesystem on {self.image_path}")

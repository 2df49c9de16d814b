"""Filesystem writers: how uploaded bytes get onto the virtual disk.

Two strategies exist:

    direct:   Edit the FAT structures in the image through nobodd. Works
              anywhere, needs no privileges.
    mounted:  Loop-mount the image and write with ordinary buffered file I/O.
              Much faster for large files, requires root and a Linux kernel.

A writer is created once per disk manager from the configured mode and is
bracketed by ``begin()``/``end()`` around every transaction.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

from embroidery_buddy.exceptions import ConfigError, DiskNotInitializedError
from embroidery_buddy.logging import LoggerFactory
from embroidery_buddy.storage import mount
from embroidery_buddy.storage.file_utils import copy_stream, translate_os_error
from embroidery_buddy.storage.image import find_partition
from embroidery_buddy.storage.paths import normalize_file_path, parent_dir
from embroidery_buddy.storage.virtual_disk import VirtualDisk


log = LoggerFactory.for_disk()

WRITE_BUFFER_SIZE = 1024 * 1024
MOUNT_DIR_PREFIX = "embroidery-mount-"


class FilesystemWriter(ABC):
    # True when the writer needs the library handle on the image released
    requires_exclusive_image = False

    @abstractmethod
    def begin(self) -> None:
        """Prepare for a burst of writes."""

    @abstractmethod
    def write_file(self, path: str, source: BinaryIO, size: int | None) -> int:
        """Create or truncate ``path`` and copy up to ``size`` bytes into it.

        Missing parent directories are created. Running out of source data
        before ``size`` bytes is not an error.

        Returns:
            Number of bytes written

        Raises:
            InsufficientSpaceError: If the disk is full
            BackendError: On any other I/O failure
        """

    @abstractmethod
    def end(self) -> None:
        """Finish the burst of writes."""

    @property
    def holds_image(self) -> bool:
        """True while the image is held outside the library handle, e.g. mounted."""
        return False


class DirectFilesystemWriter(FilesystemWriter):
    def __init__(self, disk: VirtualDisk):
        self.disk = disk

    def begin(self) -> None:
        if not self.disk.is_open:
            raise DiskNotInitializedError()

    def write_file(self, path: str, source: BinaryIO, size: int | None) -> int:
        if not self.disk.is_open:
            raise DiskNotInitializedError()
        normalized = normalize_file_path(path)

        directory = parent_dir(normalized)
        if directory != "/":
            self.disk.make_dirs(directory)

        with self.disk.open_write(normalized) as handle:
            written = copy_stream(source, handle, size)
        log.debug(f"Wrote {written} bytes to {normalized}")
        return written

    def end(self) -> None:
        pass


class MountedFilesystemWriter(FilesystemWriter):
    requires_exclusive_image = True

    def __init__(self, image_path: Path | str):
        self.image_path = Path(image_path)
        self._mount_dir: Path | None = None

    @property
    def mount_dir(self) -> Path | None:
        return self._mount_dir

    def begin(self) -> None:
        if self._mount_dir is not None:
            return
        offset = find_partition(self.image_path).offset
        mount_dir = Path(tempfile.mkdtemp(prefix=MOUNT_DIR_PREFIX))
        try:
            mount.mount_loop(self.image_path, mount_dir, offset)
        except Exception:
            shutil.rmtree(mount_dir, ignore_errors=True)
            raise
        self._mount_dir = mount_dir
        log.debug(f"Mounted {self.image_path} at {mount_dir}")

    def write_file(self, path: str, source: BinaryIO, size: int | None) -> int:
        if self._mount_dir is None:
            raise DiskNotInitializedError("filesystem not mounted")
        normalized = normalize_file_path(path)
        target = self._mount_dir / normalized.lstrip("/")

        try:
            os.makedirs(target.parent, mode=0o755, exist_ok=True)
        except OSError as error:
            raise translate_os_error(error, parent_dir(normalized), "create directory") from error

        try:
            with open(target, "wb", buffering=WRITE_BUFFER_SIZE) as handle:
                written = copy_stream(source, handle, size)
                handle.flush()
        except OSError as error:
            raise translate_os_error(error, normalized, "write file") from error
        log.debug(f"Wrote {written} bytes to {normalized}")
        return written

    @property
    def holds_image(self) -> bool:
        return self._mount_dir is not None

    def end(self) -> None:
        """Flush and unmount the image.

        Unmounting is attempted even when the flush fails. If unmounting
        fails the mount is kept on record, so a later ``end()`` retries it.
        """
        if self._mount_dir is None:
            return
        try:
            mount.sync()
        finally:
            mount.unmount(self._mount_dir)
            self._forget_mount()

    def _forget_mount(self) -> None:
        try:
            self._mount_dir.rmdir()
        except OSError as error:
            log.warning(f"Failed to remove temp mount directory {self._mount_dir}: {error}")
        log.debug(f"Unmounted {self.image_path}")
        self._mount_dir = None


def new_filesystem_writer(mode: str, disk: VirtualDisk) -> FilesystemWriter:
    """Create the writer selected by the ``disk.writer`` setting."""
    if mode == "direct":
        return DirectFilesystemWriter(disk)
    if mode == "mounted":
        return MountedFilesystemWriter(disk.image_path)
    raise ConfigError(f"Unknown filesystem writer {mode!r}", key="disk.writer")

"""Transactional access to the virtual disk shared with a USB host.

The USB host sees the disk image as a mass storage device and caches its
view of the filesystem. Modifying the image while the host is attached
corrupts that view, so every mutation goes through
:meth:`DiskManager.begin_transaction`:

    1. take the exclusive lock (blocks until no reader or writer is active)
    2. disconnect the USB gadget; if that fails nothing is written
    3. run the caller's function with a :class:`Transaction`
    4. reconnect the USB gadget, always, even if step 3 raised
    5. release the lock

Reads only take the shared lock, so they run concurrently with each other
but never while a transaction is writing.

Example:
    >>> gadget = new_usb_gadget(descriptor, use_simulated=True)
    >>> with DiskManager(DiskManagerConfig("/tmp/embroidery.img"), gadget) as manager:
    ...     def upload(tx):
    ...         tx.write_file("/designs/rose.pes", stream, size)
    ...     manager.begin_transaction(upload)
    ...     data = manager.read_file("/designs/rose.pes").read()
"""

from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Callable, TypeVar

from embroidery_buddy.exceptions import DiskImageError, DiskNotInitializedError
from embroidery_buddy.logging import LoggerFactory, operation_context
from embroidery_buddy.storage.paths import normalize_file_path, normalize_path
from embroidery_buddy.storage.rwlock import ReadWriteLock
from embroidery_buddy.storage.virtual_disk import VirtualDisk
from embroidery_buddy.storage.writers import FilesystemWriter, new_filesystem_writer

if TYPE_CHECKING:
    from loguru import Logger

    from embroidery_buddy.config.settings import DiskSettings
    from embroidery_buddy.hardware.usb_gadget import UsbGadget


log = LoggerFactory.for_disk()

T = TypeVar("T")


@dataclass(frozen=True)
class DiskManagerConfig:
    disk_path: Path | str
    writer: str = "direct"

    @classmethod
    def from_settings(cls, settings: DiskSettings) -> DiskManagerConfig:
        return cls(disk_path=settings.path, writer=settings.writer)


class Transaction:
    """Handle passed to a transaction function; valid only while it runs."""

    def __init__(self, writer: FilesystemWriter, log: Logger):
        self._writer = writer
        self._log = log
        self._active = True
        self.files_written: list[str] = []

    @property
    def active(self) -> bool:
        return self._active

    def _finish(self) -> None:
        self._active = False

    def write_file(self, path: str, source: BinaryIO, size: int | None = None) -> int:
        """Write ``source`` to ``path``, creating parent directories.

        Copies until ``size`` bytes are written or the source is exhausted.

        Returns:
            Number of bytes written

        Raises:
            InvalidPathError: If ``path`` cannot be normalized to a file path
            InsufficientSpaceError: If the disk is full
            BackendError: On any other write failure
        """
        if not self._active:
            raise DiskNotInitializedError("transaction is no longer active")
        normalized = normalize_file_path(path)
        self._log.debug(f"Writing {normalized}")
        written = self._writer.write_file(normalized, source, size)
        self.files_written.append(normalized)
        return written

    def write_bytes(self, path: str, data: bytes) -> int:
        return self.write_file(path, io.BytesIO(data), len(data))


class DiskManager:
    def __init__(self, config: DiskManagerConfig, gadget: UsbGadget):
        """Open the disk image and bring up the USB gadget.

        The image must already exist (see ``storage.image.create_disk_image``).
        The caller is responsible for calling :meth:`close`.

        Raises:
            DiskImageError: If the image is missing or unreadable
            ConfigError: If the configured writer is unknown
            GadgetError: If the gadget cannot be initialized
        """
        self.config = config
        self._lock = ReadWriteLock()
        self._gadget = gadget
        self._disk = VirtualDisk(config.disk_path)
        self._writer = new_filesystem_writer(config.writer, self._disk)

        if not self._disk.image_path.exists():
            raise DiskImageError(
                f"Disk image {self._disk.image_path} doesn't exist",
                str(self._disk.image_path),
            )
        self._disk.open()

        try:
            self._gadget.initialize()
        except Exception:
            self.close()
            raise

        log.info(f"Disk manager initialized with disk: {self._disk.image_path}")

    def __enter__(self) -> DiskManager:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def gadget(self) -> UsbGadget:
        return self._gadget

    @property
    def disk(self) -> VirtualDisk:
        return self._disk

    @property
    def writer(self) -> FilesystemWriter:
        return self._writer

    @contextmanager
    def _host_detached(self, op_log: Logger):
        """Keep the gadget disconnected for the duration of the block.

        A failed disconnect propagates before the block runs. Reconnecting is
        always attempted afterwards; its failure is only logged.
        """
        self._gadget.disconnect()
        try:
            yield
        finally:
            try:
                self._gadget.reconnect()
            except Exception as error:
                op_log.warning(f"Failed to reconnect USB gadget: {error}")

    def _end_writer_quietly(self, op_log: Logger) -> None:
        try:
            self._writer.end()
        except Exception as error:
            op_log.warning(f"Failed to finish filesystem writes: {error}")

    def _run_transaction(self, fn: Callable[[Transaction], T], op_log: Logger) -> T:
        exclusive = self._writer.requires_exclusive_image
        if exclusive:
            self._disk.detach()
        try:
            self._writer.begin()
            tx = Transaction(self._writer, op_log)
            try:
                result = fn(tx)
            except BaseException:
                tx._finish()
                self._end_writer_quietly(op_log)
                raise
            tx._finish()
            self._writer.end()
            op_log.debug(f"Transaction wrote {len(tx.files_written)} file(s)")
            return result
        finally:
            if exclusive:
                self._reattach_disk(op_log)

    def _reattach_disk(self, op_log: Logger) -> None:
        # Never map the image while the kernel may still write to it
        if self._writer.holds_image:
            op_log.error(
                f"{self._disk.image_path} is still mounted; "
                "the disk stays unavailable until the manager is closed"
            )
            return
        self._disk.attach()

    def begin_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` with the USB gadget disconnected from the host.

        Blocks until no other transaction or read is in progress. The gadget
        is reconnected after ``fn`` returns or raises; a failed reconnect is
        logged as a warning and does not change the outcome.

        Files are committed one at a time: if ``fn`` fails after writing some
        files, those files stay on the disk. Nothing is rolled back.

        Returns:
            Whatever ``fn`` returns

        Raises:
            DiskNotInitializedError: If the disk is not open
            GadgetError: If the gadget could not be disconnected (``fn`` is not run)
            Exception: Anything raised by ``fn``
        """
        with self._lock.write_locked():
            if not self._disk.is_open:
                raise DiskNotInitializedError()
            with operation_context("transaction", disk=str(self._disk.image_path)) as op_log:
                with self._host_detached(op_log):
                    return self._run_transaction(fn, op_log)

    def read_file(self, path: str) -> io.BytesIO:
        """Return the contents of ``path`` as a readable binary stream.

        Raises:
            DiskNotInitializedError: If the disk is not open
            InvalidPathError: If ``path`` is empty
            DiskFileNotFoundError: If ``path`` does not exist
        """
        with self._lock.read_locked():
            if not self._disk.is_open:
                raise DiskNotInitializedError()
            normalized = normalize_path(path)
            return io.BytesIO(self._disk.read_bytes(normalized))

    def clear_files(self) -> None:
        """Delete every file by recreating the filesystem.

        Runs under the same exclusive lock and gadget disconnect as a
        transaction.
        """
        with self._lock.write_locked():
            if not self._disk.is_open:
                raise DiskNotInitializedError()
            with operation_context("clear", disk=str(self._disk.image_path)) as op_log:
                with self._host_detached(op_log):
                    self._disk.reformat()

    def close(self) -> None:
        """Release the writer, destroy the USB gadget and release the disk. Safe to call twice."""
        with self._lock.write_locked():
            try:
                self._writer.end()
            except Exception as error:
                log.warning(f"Failed to release filesystem writer: {error}")
            try:
                self._gadget.destroy()
            except Exception as error:
                log.warning(f"Failed to destroy USB gadget: {error}")
            try:
                self._disk.close()
            except Exception as error:
                log.warning(f"Failed to close disk {self._disk.image_path}: {error}")

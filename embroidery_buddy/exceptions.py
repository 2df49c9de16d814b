"""Custom exceptions for disk manager and USB gadget operations.

Every public operation either returns normally or raises one of the
exceptions below, so callers (the upload layer, the service entry point) can
react to the actionable kinds such as a full disk separately from generic
failures.

Exception Hierarchy:
    DiskManagerError (base)
        ├── StorageError
        │   ├── DiskNotInitializedError
        │   ├── DiskFileNotFoundError
        │   ├── InsufficientSpaceError
        │   ├── InvalidPathError
        │   ├── DiskImageError
        │   └── BackendError
        ├── GadgetError
        │   ├── GadgetConflictError
        │   ├── GadgetUnavailableError
        │   └── GadgetControlError
        └── ConfigError

Usage:
    from embroidery_buddy.exceptions import InsufficientSpaceError

    try:
        tx.write_file("/designs/rose.pes", stream, size)
    except InsufficientSpaceError:
        ...
"""

from __future__ import annotations


class DiskManagerError(Exception):
    """Base exception for everything raised by embroidery_buddy."""


class StorageError(DiskManagerError):
    """Base exception for virtual disk and filesystem errors."""


class DiskNotInitializedError(StorageError):
    """The filesystem handle is not open."""

    def __init__(self, message: str = "disk not initialized"):
        super().__init__(message)


class DiskFileNotFoundError(StorageError):
    """A file requested from the virtual disk does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class InsufficientSpaceError(StorageError):
    """The virtual disk has no room left for the data being written."""

    def __init__(self, path: str | None = None):
        self.path = path
        msg = "Disk full"
        if path:
            msg += f" while writing {path}"
        super().__init__(msg)


class InvalidPathError(StorageError):
    """A path could not be normalized into a safe absolute path."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        msg = f"Invalid path: {path!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class DiskImageError(StorageError):
    """Creating, opening or formatting the backing image failed."""

    def __init__(self, message: str, image_path: str | None = None):
        self.image_path = image_path
        super().__init__(message)


class BackendError(StorageError):
    """Opaque I/O failure from a filesystem writer, wrapped with context."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class GadgetError(DiskManagerError):
    """Base exception for USB gadget errors."""


class GadgetConflictError(GadgetError):
    """A gadget with the same short name is already configured."""

    def __init__(self, short_name: str):
        self.short_name = short_name
        super().__init__(f"Gadget {short_name} already configured")


class GadgetUnavailableError(GadgetError):
    """The kernel facilities or UDC needed to drive the gadget are missing."""

    def __init__(self, message: str, short_name: str | None = None):
        self.short_name = short_name
        super().__init__(message)


class GadgetControlError(GadgetError):
    """Writing to or removing an entry of the gadget control surface failed."""

    def __init__(self, message: str, attribute_path: str | None = None):
        self.attribute_path = attribute_path
        super().__init__(message)


class ConfigError(DiskManagerError):
    """A configuration value is missing or malformed."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)

"""Narrow access layer over the configfs attribute tree.

The configfs gadget only ever creates directories, writes attribute files,
links a function into a configuration, removes those entries again and lists
the available UDCs. Keeping those operations behind :class:`ControlPort`
lets tests swap in an in-memory tree without touching gadget logic.

All paths are relative to the gadget root
(``/sys/kernel/config/usb_gadget`` on a real system).
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path

from embroidery_buddy.exceptions import GadgetControlError
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_configfs()

DEFAULT_GADGET_ROOT = Path("/sys/kernel/config/usb_gadget")
DEFAULT_UDC_ROOT = Path("/sys/class/udc")
DIRECTORY_MODE = 0o775


class ControlPort(ABC):
    @abstractmethod
    def is_available(self) -> bool:
        """True when the gadget root exists (configfs mounted, libcomposite loaded)."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def make_dir(self, path: str) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def write_attribute(self, path: str, value: str) -> None:
        ...

    @abstractmethod
    def read_attribute(self, path: str) -> str:
        ...

    @abstractmethod
    def symlink(self, target: str, link: str) -> None:
        ...

    @abstractmethod
    def remove_link(self, path: str) -> None:
        """Remove a symlink; an absent link is not an error."""

    @abstractmethod
    def remove_dir(self, path: str) -> None:
        """Remove an empty directory; an absent directory is not an error."""

    @abstractmethod
    def list_controllers(self) -> list[str]:
        """Names of the UDCs currently present, sorted."""


class ConfigfsControlPort(ControlPort):
    """Control port backed by the real configfs and sysfs trees."""

    def __init__(
        self,
        gadget_root: Path | str = DEFAULT_GADGET_ROOT,
        udc_root: Path | str = DEFAULT_UDC_ROOT,
    ):
        self.gadget_root = Path(gadget_root)
        self.udc_root = Path(udc_root)

    def _resolve(self, path: str) -> Path:
        return self.gadget_root / path

    def is_available(self) -> bool:
        return self.gadget_root.is_dir()

    def exists(self, path: str) -> bool:
        return os.path.lexists(self._resolve(path))

    def make_dir(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
        except OSError as error:
            raise GadgetControlError(
                f"Could not create directory {target}: {error}", str(target)
            ) from error
        log.trace(f"mkdir {target}")

    def write_attribute(self, path: str, value: str) -> None:
        target = self._resolve(path)
        try:
            with open(target, "w", encoding="utf-8") as handle:
                handle.write(value)
        except OSError as error:
            raise GadgetControlError(
                f"Failed to write {value!r} to {target}: {error}", str(target)
            ) from error
        log.trace(f"{target} <- {value!r}")

    def read_attribute(self, path: str) -> str:
        target = self._resolve(path)
        try:
            return target.read_text(encoding="utf-8").strip()
        except OSError as error:
            raise GadgetControlError(
                f"Failed to read {target}: {error}", str(target)
            ) from error

    def symlink(self, target: str, link: str) -> None:
        source = self._resolve(target)
        destination = self._resolve(link)
        try:
            os.symlink(source, destination)
        except OSError as error:
            raise GadgetControlError(
                f"Failed to link {source} to {destination}: {error}", str(destination)
            ) from error
        log.trace(f"ln -s {source} {destination}")

    def remove_link(self, path: str) -> None:
        target = self._resolve(path)
        try:
            os.unlink(target)
        except FileNotFoundError:
            return
        except OSError as error:
            raise GadgetControlError(
                f"Failed to remove {target}: {error}", str(target)
            ) from error

    def remove_dir(self, path: str) -> None:
        target = self._resolve(path)
        try:
            os.rmdir(target)
        except FileNotFoundError:
            return
        except OSError as error:
            raise GadgetControlError(
                f"Failed to remove {target}: {error}", str(target)
            ) from error

    def list_controllers(self) -> list[str]:
        try:
            return sorted(os.listdir(self.udc_root))
        except FileNotFoundError:
            return []
        except OSError as error:
            raise GadgetControlError(
                f"Failed to read UDC directory {self.udc_root}: {error}",
                str(self.udc_root),
            ) from error

"""
Pytest configuration and shared fixtures for embroidery-buddy tests.

This module provides common fixtures and utilities used across all test modules.
"""

from pathlib import Path
from typing import Dict, List
from unittest.mock import Mock

import pytest
from loguru import logger

from embroidery_buddy.exceptions import GadgetControlError
from embroidery_buddy.hardware.control_port import ControlPort
from embroidery_buddy.hardware.usb_gadget import GadgetDescriptor
from embroidery_buddy.hardware.virtual_gadget import VirtualUsbGadget
from embroidery_buddy.storage.disk_manager import DiskManager, DiskManagerConfig
from embroidery_buddy.storage.image import create_disk_image
from embroidery_buddy.storage.virtual_disk import VirtualDisk


TEST_IMAGE_SIZE_MB = 10


# ==============================================================================
# Disk Fixtures
# ==============================================================================


@pytest.fixture
def disk_image(tmp_path) -> Path:
    """
    Fixture providing a freshly created 10MB (FAT16) disk image.

    Returns:
        Path to the image inside pytest's temporary directory.
    """
    image_path = tmp_path / "embroidery.img"
    create_disk_image(image_path, TEST_IMAGE_SIZE_MB)
    return image_path


@pytest.fixture
def virtual_disk(disk_image):
    """Fixture providing an opened VirtualDisk, closed after the test."""
    disk = VirtualDisk(disk_image)
    disk.open()
    yield disk
    disk.close()


@pytest.fixture
def virtual_gadget() -> VirtualUsbGadget:
    """Fixture providing an uninitialized simulated USB gadget."""
    return VirtualUsbGadget()


@pytest.fixture
def manager(disk_image, virtual_gadget):
    """
    Fixture providing a DiskManager over the test image and a simulated gadget.

    The manager is closed after the test (closing twice is harmless).
    """
    disk_manager = DiskManager(DiskManagerConfig(disk_image), virtual_gadget)
    yield disk_manager
    disk_manager.close()


# ==============================================================================
# USB Gadget Fixtures
# ==============================================================================


class FakeControlPort(ControlPort):
    """In-memory stand-in for the configfs tree.

    Removing a directory also drops everything below it, as configfs does
    for the attribute files it creates itself.
    """

    def __init__(self, controllers=("fe980000.usb",), available=True):
        self.available = available
        self.controllers = list(controllers)
        self.dirs: set = set()
        self.attributes: Dict[str, str] = {}
        self.links: Dict[str, str] = {}
        self.writes: List[tuple] = []
        # path -> exception raised by write_attribute
        self.fail_writes: Dict[str, Exception] = {}

    def is_available(self) -> bool:
        return self.available

    def exists(self, path: str) -> bool:
        return path in self.dirs or path in self.attributes or path in self.links

    def make_dir(self, path: str) -> None:
        parts = path.split("/")
        for index in range(1, len(parts) + 1):
            self.dirs.add("/".join(parts[:index]))

    def write_attribute(self, path: str, value: str) -> None:
        if path in self.fail_writes:
            raise self.fail_writes[path]
        self.attributes[path] = value
        self.writes.append((path, value))

    def read_attribute(self, path: str) -> str:
        if path not in self.attributes:
            raise GadgetControlError(f"No such attribute {path}", path)
        return self.attributes[path].strip()

    def symlink(self, target: str, link: str) -> None:
        self.links[link] = target

    def remove_link(self, path: str) -> None:
        self.links.pop(path, None)

    def remove_dir(self, path: str) -> None:
        prefix = path + "/"
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(prefix)}
        self.attributes = {
            key: value for key, value in self.attributes.items() if not key.startswith(prefix)
        }
        self.links = {key: value for key, value in self.links.items() if not key.startswith(prefix)}

    def list_controllers(self) -> List[str]:
        return sorted(self.controllers)


@pytest.fixture
def fake_port() -> FakeControlPort:
    """Fixture providing an in-memory configfs tree with one UDC."""
    return FakeControlPort()


@pytest.fixture
def gadget_descriptor() -> GadgetDescriptor:
    """Fixture providing a typical gadget descriptor with a fixed serial number."""
    return GadgetDescriptor(
        short_name="embroidery",
        vendor_id=0x1D6B,
        product_id=0x0104,
        bcd_device=0x0100,
        bcd_usb=0x0200,
        manufacturer="Embroidery Buddy",
        product="Embroidery USB Storage",
        backing_file="/var/lib/embroidery-buddy/disk.img",
        serial_number="b827eb000001",
    )


# ==============================================================================
# Subprocess and Logging Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """
    Fixture providing a mocked subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run as used by the mount helpers.
    """
    mock_run = mocker.patch("embroidery_buddy.storage.mount.subprocess.run")
    mock_run.return_value = Mock(returncode=0, stdout="", stderr="")
    return mock_run


@pytest.fixture
def log_records():
    """
    Fixture capturing loguru records emitted during the test.

    Returns:
        List of loguru record dicts, appended to as messages are logged.
    """
    records: List[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def make_port():
    """Fixture providing the FakeControlPort class for custom UDC/availability setups."""
    return FakeControlPort

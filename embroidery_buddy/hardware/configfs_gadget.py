"""Mass storage USB gadget driven through Linux configfs.

Layout created under ``/sys/kernel/config/usb_gadget/<short_name>``::

    idVendor, idProduct, bcdDevice, bcdUSB      0x%04x
    strings/0x409/{serialnumber,manufacturer,product}
    configs/c.1/strings/0x409/configuration     "Mass Storage"
    configs/c.1/MaxPower                        250
    functions/mass_storage.usb0/stall           1
    functions/mass_storage.usb0/lun.0/{cdrom,ro,nofua}  0
    functions/mass_storage.usb0/lun.0/file      backing disk image
    configs/c.1/mass_storage.usb0 -> functions/mass_storage.usb0
    UDC                                         UDC name, or "\\n" when disconnected

Writing a UDC name to ``UDC`` makes the device appear on the host; writing an
empty line removes it without tearing down the configuration.
"""

from __future__ import annotations

from typing import Callable

from embroidery_buddy.exceptions import (
    GadgetConflictError,
    GadgetControlError,
    GadgetUnavailableError,
)
from embroidery_buddy.hardware.control_port import ConfigfsControlPort, ControlPort
from embroidery_buddy.hardware.network import usb_serial_number
from embroidery_buddy.hardware.usb_gadget import (
    ConnectionState,
    GadgetDescriptor,
    UsbGadget,
)
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_gadget()

LANG_EN_US = "0x409"
CONFIG_NAME = "c.1"
FUNCTION_NAME = "mass_storage.usb0"
MAX_POWER_MA = 250


def format_usb_id(value: int) -> str:
    return f"0x{value:04x}"


class ConfigfsUsbGadget(UsbGadget):
    def __init__(self, descriptor: GadgetDescriptor, port: ControlPort | None = None):
        super().__init__(descriptor)
        self.port = port or ConfigfsControlPort()
        # Only tear down a tree this instance created
        self._created = False

    def _path(self, *parts: str) -> str:
        return "/".join((self.descriptor.short_name, *parts))

    def _write(self, value: str, *parts: str) -> None:
        self.port.write_attribute(self._path(*parts), value)

    def initialize(self) -> None:
        name = self.descriptor.short_name
        if self._state is ConnectionState.DESTROYED:
            raise GadgetUnavailableError(f"Gadget {name} was destroyed", name)
        if self._state is not ConnectionState.UNINITIALIZED:
            raise GadgetConflictError(name)
        if not self.port.is_available():
            raise GadgetUnavailableError(
                "USB gadget configfs is not available (is libcomposite loaded?)", name
            )
        if self.port.exists(self._path()):
            raise GadgetConflictError(name)

        log.info(f"Creating USB gadget {name}")
        self.port.make_dir(self._path())
        self._created = True

        descriptor = self.descriptor
        self._write(format_usb_id(descriptor.vendor_id), "idVendor")
        self._write(format_usb_id(descriptor.product_id), "idProduct")
        self._write(format_usb_id(descriptor.bcd_device), "bcdDevice")
        self._write(format_usb_id(descriptor.bcd_usb), "bcdUSB")

        self.port.make_dir(self._path("strings", LANG_EN_US))
        serial_number = descriptor.serial_number or usb_serial_number()
        self._write(serial_number, "strings", LANG_EN_US, "serialnumber")
        self._write(descriptor.manufacturer, "strings", LANG_EN_US, "manufacturer")
        self._write(descriptor.product, "strings", LANG_EN_US, "product")

        self.port.make_dir(self._path("configs", CONFIG_NAME, "strings", LANG_EN_US))
        self._write("Mass Storage", "configs", CONFIG_NAME, "strings", LANG_EN_US, "configuration")
        self._write(str(MAX_POWER_MA), "configs", CONFIG_NAME, "MaxPower")

        self.port.make_dir(self._path("functions", FUNCTION_NAME))
        self._write("1", "functions", FUNCTION_NAME, "stall")
        self._write("0", "functions", FUNCTION_NAME, "lun.0", "cdrom")
        self._write("0", "functions", FUNCTION_NAME, "lun.0", "ro")
        self._write("0", "functions", FUNCTION_NAME, "lun.0", "nofua")
        self._write(descriptor.backing_file, "functions", FUNCTION_NAME, "lun.0", "file")

        self.port.symlink(
            self._path("functions", FUNCTION_NAME),
            self._path("configs", CONFIG_NAME, FUNCTION_NAME),
        )

        controllers = self.port.list_controllers()
        if not controllers:
            raise GadgetUnavailableError("No UDC available", name)
        if self._udc_name is None:
            self._udc_name = controllers[0]
        log.debug(f"Using UDC {self._udc_name} for gadget {name}")

        self._state = ConnectionState.DISCONNECTED
        self.reconnect()

    def disconnect(self) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return

        try:
            self._write("\n", "UDC")
        except GadgetControlError as error:
            raise GadgetControlError(
                f"Failed to disconnect gadget {self.descriptor.short_name}: {error}",
                error.attribute_path,
            ) from error

        self._state = ConnectionState.DISCONNECTED
        log.debug(f"Gadget {self.descriptor.short_name} disconnected")

    def reconnect(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return
        if self._state is ConnectionState.DESTROYED:
            raise GadgetUnavailableError(
                f"Gadget {self.descriptor.short_name} was destroyed",
                self.descriptor.short_name,
            )
        if self._udc_name is None:
            raise GadgetUnavailableError(
                "No UDC name available, gadget may not have been initialized",
                self.descriptor.short_name,
            )

        try:
            self._write(self._udc_name, "UDC")
        except GadgetControlError as error:
            raise GadgetControlError(
                f"Failed to reconnect gadget {self.descriptor.short_name}: {error}",
                error.attribute_path,
            ) from error

        self._state = ConnectionState.CONNECTED
        log.debug(f"Gadget {self.descriptor.short_name} connected to {self._udc_name}")

    def _best_effort(self, action: Callable[[str], None], *parts: str) -> None:
        path = self._path(*parts)
        try:
            action(path)
        except GadgetControlError as error:
            log.debug(f"Ignoring teardown error for {path}: {error}")

    def destroy(self) -> None:
        if self._state is ConnectionState.DESTROYED:
            return
        if not self._created or not self.port.exists(self._path()):
            if self._state is not ConnectionState.UNINITIALIZED:
                self._state = ConnectionState.DESTROYED
            return

        try:
            self.disconnect()
        except GadgetControlError as error:
            log.warning(f"Disconnect during teardown failed: {error}")

        # Reverse order of creation
        self._best_effort(self.port.remove_link, "configs", CONFIG_NAME, FUNCTION_NAME)
        self._best_effort(self.port.remove_dir, "configs", CONFIG_NAME, "strings", LANG_EN_US)
        self._best_effort(self.port.remove_dir, "configs", CONFIG_NAME)
        self._best_effort(self.port.remove_dir, "functions", FUNCTION_NAME)
        self._best_effort(self.port.remove_dir, "strings", LANG_EN_US)
        self._best_effort(self.port.remove_dir)

        self._created = False
        self._state = ConnectionState.DESTROYED
        log.info(f"USB gadget {self.descriptor.short_name} removed")

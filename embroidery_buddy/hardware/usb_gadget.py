"""USB gadget contract shared by the configfs and virtual implementations.

The disk manager only talks to a :class:`UsbGadget`. Which concrete gadget it
gets is decided once at startup (see ``gadget_factory.new_usb_gadget``), so
the manager's disconnect/reconnect discipline is identical on a Raspberry Pi
and on a development machine.

State machine::

    UNINITIALIZED --initialize--> CONNECTED
    CONNECTED     --disconnect--> DISCONNECTED
    DISCONNECTED  --reconnect-->  CONNECTED
    any           --destroy-->    DESTROYED (terminal)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from embroidery_buddy.config.settings import MAX_USB_ID, parse_hex
from embroidery_buddy.exceptions import ConfigError

if TYPE_CHECKING:
    from embroidery_buddy.config.settings import UsbGadgetSettings


class ConnectionState(Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class GadgetDescriptor:
    """Identity of the emulated mass storage device as seen by the USB host."""

    short_name: str  # configfs directory name, e.g. "embroidery"
    vendor_id: int
    product_id: int
    bcd_device: int
    bcd_usb: int
    manufacturer: str
    product: str
    backing_file: str  # disk image exposed through lun.0
    serial_number: str | None = None  # None derives one from the WiFi MAC

    def __post_init__(self) -> None:
        if not self.short_name or "/" in self.short_name or self.short_name in (".", ".."):
            raise ConfigError(f"Invalid gadget short name: {self.short_name!r}")
        for name in ("vendor_id", "product_id", "bcd_device", "bcd_usb"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer", key=name)
            if not 0 <= value <= MAX_USB_ID:
                raise ConfigError(f"{name}={value:#x} does not fit in 16 bits", key=name)

    @classmethod
    def from_settings(
        cls, settings: UsbGadgetSettings, backing_file: str
    ) -> GadgetDescriptor:
        """Convert the ``usb_gadget`` settings section into a descriptor.

        Raises:
            ConfigError: If any identifier is not a 16-bit hex value
        """
        return cls(
            short_name=settings.short_name,
            vendor_id=parse_hex(settings.vendor_id, key="vendor_id"),
            product_id=parse_hex(settings.product_id, key="product_id"),
            bcd_device=parse_hex(settings.bcd_device, key="bcd_device"),
            bcd_usb=parse_hex(settings.bcd_usb, key="bcd_usb"),
            manufacturer=settings.manufacturer,
            product=settings.product_name,
            backing_file=str(backing_file),
            serial_number=settings.serial_number,
        )


class UsbGadget(ABC):
    """Lifecycle of the USB mass storage gadget presenting the disk image."""

    def __init__(self, descriptor: GadgetDescriptor):
        self.descriptor = descriptor
        self._state = ConnectionState.UNINITIALIZED
        self._udc_name: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def udc_name(self) -> str | None:
        """UDC the gadget binds to; fixed once the first connect succeeds."""
        return self._udc_name

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @abstractmethod
    def initialize(self) -> None:
        """Create the gadget, bind it to a UDC and connect it to the host.

        Raises:
            GadgetConflictError: A gadget with the same short name exists
            GadgetUnavailableError: configfs or a UDC is not available
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Hide the gadget from the host. No-op when not connected."""

    @abstractmethod
    def reconnect(self) -> None:
        """Show the gadget to the host again. No-op when already connected.

        Raises:
            GadgetUnavailableError: The gadget was never bound to a UDC
        """

    @abstractmethod
    def destroy(self) -> None:
        """Best-effort teardown of everything ``initialize`` created.

        Never raises and is safe to call repeatedly or before ``initialize``.
        """

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} name={self.descriptor.short_name!r} "
            f"state={self._state.value} udc={self._udc_name!r}>"
        )

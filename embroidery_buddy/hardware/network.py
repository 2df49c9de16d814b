"""Network interface identity used to derive the USB serial number."""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence

import psutil

from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_system()

COMMON_WIFI_INTERFACES = ("wlan0", "wlan1", "wlp2s0", "wlp3s0")
DEFAULT_SERIAL_NUMBER = "000000000000"


class MacFormat(Enum):
    COLON = "colon"  # aa:bb:cc:dd:ee:ff
    HYPHEN = "hyphen"  # aa-bb-cc-dd-ee-ff
    NONE = "none"  # aabbccddeeff
    USB_SERIAL = "usb_serial"  # aabbccddeeff, as written to strings/0x409/serialnumber


def _interface_addresses() -> Mapping[str, Sequence]:
    return psutil.net_if_addrs()


def get_mac_address(interface: str, addresses: Mapping[str, Sequence] | None = None) -> str:
    """Return the hardware address of ``interface``.

    Raises:
        RuntimeError: If the interface does not exist or has no MAC address
    """
    if addresses is None:
        addresses = _interface_addresses()
    if interface not in addresses:
        raise RuntimeError(f"Failed to get interface {interface}")
    for address in addresses[interface]:
        if address.family == psutil.AF_LINK and address.address:
            return address.address
    raise RuntimeError(f"No MAC address found for interface {interface}")


def find_wifi_interface() -> tuple[str, str]:
    """Find the WiFi interface and its MAC address.

    Common names are tried first, then any interface whose name starts
    with ``wl``.

    Raises:
        RuntimeError: If no WiFi interface with a MAC address is present
    """
    addresses = _interface_addresses()

    for name in COMMON_WIFI_INTERFACES:
        try:
            return name, get_mac_address(name, addresses)
        except RuntimeError:
            continue

    for name in sorted(addresses):
        if name.startswith("wl"):
            try:
                return name, get_mac_address(name, addresses)
            except RuntimeError:
                continue

    raise RuntimeError("No WiFi interface found")


def format_mac(mac: str, fmt: MacFormat = MacFormat.COLON) -> str:
    cleaned = mac.replace(":", "").replace("-", "")

    if fmt is MacFormat.HYPHEN:
        return mac.replace(":", "-")
    if fmt in (MacFormat.NONE, MacFormat.USB_SERIAL):
        return cleaned
    if len(cleaned) == 12:
        return ":".join(cleaned[i : i + 2] for i in range(0, 12, 2))
    return mac


def usb_serial_number() -> str:
    """Serial number for the gadget, based on the WiFi MAC address.

    Falls back to a fixed serial if the MAC cannot be determined.
    """
    try:
        _, mac = find_wifi_interface()
    except RuntimeError as error:
        log.warning(f"Could not get WiFi MAC address: {error}, using default serial number")
        return DEFAULT_SERIAL_NUMBER
    return format_mac(mac, MacFormat.USB_SERIAL)

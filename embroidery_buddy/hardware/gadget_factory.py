"""Pick the USB gadget implementation for this machine."""

from __future__ import annotations

import sys

from embroidery_buddy.hardware.configfs_gadget import ConfigfsUsbGadget
from embroidery_buddy.hardware.control_port import ControlPort
from embroidery_buddy.hardware.usb_gadget import GadgetDescriptor, UsbGadget
from embroidery_buddy.hardware.virtual_gadget import VirtualUsbGadget
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_gadget()


def new_usb_gadget(
    descriptor: GadgetDescriptor,
    use_simulated: bool,
    *,
    port: ControlPort | None = None,
) -> UsbGadget:
    """Return a virtual gadget when asked (or off Linux), else a configfs gadget."""
    if use_simulated:
        return VirtualUsbGadget(descriptor)
    if not sys.platform.startswith("linux"):
        log.warning("Linux USB gadget not available on this platform, using virtual gadget")
        return VirtualUsbGadget(descriptor)
    return ConfigfsUsbGadget(descriptor, port=port)

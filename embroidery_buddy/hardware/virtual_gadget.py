"""In-memory USB gadget for development machines and tests.

Behaves like the configfs gadget (same state machine, same idempotency) but
never touches the system. It additionally counts disconnect/reconnect calls,
records timestamped events so tests can check that transactions never
overlap, and can be told to fail the next disconnect or reconnect.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from embroidery_buddy.exceptions import GadgetConflictError, GadgetUnavailableError
from embroidery_buddy.hardware.usb_gadget import (
    ConnectionState,
    GadgetDescriptor,
    UsbGadget,
)
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_gadget()

VIRTUAL_UDC_NAME = "dummy_udc.0"


@dataclass(frozen=True)
class GadgetEvent:
    name: str  # "initialize", "disconnect", "reconnect" or "destroy"
    timestamp: float  # time.monotonic()
    thread: str


def _default_descriptor() -> GadgetDescriptor:
    return GadgetDescriptor(
        short_name="virtual",
        vendor_id=0x1D6B,
        product_id=0x0104,
        bcd_device=0x0100,
        bcd_usb=0x0200,
        manufacturer="Embroidery Buddy",
        product="Virtual USB Storage",
        backing_file="",
    )


class VirtualUsbGadget(UsbGadget):
    def __init__(self, descriptor: GadgetDescriptor | None = None):
        super().__init__(descriptor or _default_descriptor())
        self.disconnect_calls = 0
        self.reconnect_calls = 0
        self.events: list[GadgetEvent] = []
        # Raised (once) by the next disconnect/reconnect when set
        self.disconnect_error: Exception | None = None
        self.reconnect_error: Exception | None = None
        self._events_lock = threading.Lock()

    def _record(self, name: str) -> None:
        with self._events_lock:
            self.events.append(
                GadgetEvent(name, time.monotonic(), threading.current_thread().name)
            )

    def initialize(self) -> None:
        if self._state is ConnectionState.DESTROYED:
            raise GadgetUnavailableError(
                f"Gadget {self.descriptor.short_name} was destroyed",
                self.descriptor.short_name,
            )
        if self._state is not ConnectionState.UNINITIALIZED:
            raise GadgetConflictError(self.descriptor.short_name)
        self._udc_name = VIRTUAL_UDC_NAME
        self._state = ConnectionState.CONNECTED
        self._record("initialize")
        log.debug(f"Virtual gadget {self.descriptor.short_name} initialized")

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_error is not None:
            error, self.disconnect_error = self.disconnect_error, None
            raise error
        if self._state is not ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        self._record("disconnect")

    def reconnect(self) -> None:
        self.reconnect_calls += 1
        if self.reconnect_error is not None:
            error, self.reconnect_error = self.reconnect_error, None
            raise error
        if self._state is ConnectionState.CONNECTED:
            return
        if self._state is ConnectionState.DESTROYED or self._udc_name is None:
            raise GadgetUnavailableError(
                "No UDC name available, gadget may not have been initialized",
                self.descriptor.short_name,
            )
        self._state = ConnectionState.CONNECTED
        self._record("reconnect")

    def destroy(self) -> None:
        if self._state in (ConnectionState.UNINITIALIZED, ConnectionState.DESTROYED):
            return
        self._state = ConnectionState.DESTROYED
        self._record("destroy")
        log.debug(f"Virtual gadget {self.descriptor.short_name} destroyed")

    def reset_counts(self) -> None:
        self.disconnect_calls = 0
        self.reconnect_calls = 0

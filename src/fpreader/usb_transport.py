"""
USB bulk transport for the fingerprint reader.

The reader is a vendor-specific interface with one bulk IN and one bulk OUT
endpoint.  Commands and status frames travel over the same pair as the
image payload.

The ``UsbTransport`` ABC abstracts the raw USB I/O so that:
  • Tests can inject a mock transport (no real hardware needed).
  • ``PyUsbTransport`` provides real USB via pyusb (libusb backend).

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1 - ``apt install libusb-1.0-0``)
  • a udev rule granting access to 05ba:000a, or root
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from .core.errors import (
    AccessDenied,
    DeviceNotFound,
    EndpointsUnavailable,
    TransferError,
)
from .core.models import (
    DEFAULT_TRANSFER_TIMEOUT_MS,
    USB_CONFIGURATION,
    USB_INTERFACE,
    DeviceHandle,
)

log = logging.getLogger(__name__)

# bEndpointAddress / bmAttributes masks (USB 2.0 spec, table 9-13)
_ENDPOINT_DIR_MASK = 0x80
_ENDPOINT_IN = 0x80
_TRANSFER_TYPE_MASK = 0x03
_TRANSFER_TYPE_BULK = 0x02


# =========================================================================
# Endpoint helpers
# =========================================================================

def pick_bulk_endpoints(endpoints: Iterable) -> Tuple[Optional[int], Optional[int]]:
    """Return the first bulk (IN, OUT) endpoint addresses among *endpoints*.

    Each item needs ``bEndpointAddress`` and ``bmAttributes`` (pyusb
    endpoint descriptors qualify).  Interrupt/isochronous endpoints are
    skipped.
    """
    ep_in = ep_out = None
    for ep in endpoints:
        if ep.bmAttributes & _TRANSFER_TYPE_MASK != _TRANSFER_TYPE_BULK:
            continue
        addr = ep.bEndpointAddress
        if addr & _ENDPOINT_DIR_MASK == _ENDPOINT_IN:
            if ep_in is None:
                ep_in = addr
        elif ep_out is None:
            ep_out = addr
    return ep_in, ep_out


# =========================================================================
# Abstract USB transport
# =========================================================================

class UsbTransport(ABC):
    """Abstract USB bulk transport - mockable for testing."""

    @abstractmethod
    def open(self) -> DeviceHandle:
        """Find the device, select configuration, claim interface."""

    @abstractmethod
    def discover_endpoints(self) -> Tuple[int, int]:
        """Return the (IN, OUT) bulk endpoint addresses of the claimed interface."""

    @abstractmethod
    def close(self) -> None:
        """Release interface and close.  No-op if already closed."""

    @abstractmethod
    def write(self, endpoint: int, data: bytes,
              timeout: int = DEFAULT_TRANSFER_TIMEOUT_MS) -> int:
        """Bulk write to endpoint.  Returns bytes transferred."""

    @abstractmethod
    def read(self, endpoint: int, length: int,
             timeout: int = DEFAULT_TRANSFER_TIMEOUT_MS) -> bytes:
        """Bulk read of at most *length* bytes from endpoint."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================

class PyUsbTransport(UsbTransport):
    """Real USB transport using pyusb (libusb backend).

    Sequence:
    1. Find device by VID/PID
    2. Detach kernel driver if one is bound
    3. SetConfiguration(1) unless already active
    4. ClaimInterface(0)
    5. Bulk read/write to the discovered endpoints

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, vid: int, pid: int,
                 interface: int = USB_INTERFACE,
                 configuration: int = USB_CONFIGURATION):
        self._vid = vid
        self._pid = pid
        self._interface = interface
        self._configuration = configuration
        self._device = None
        self._handle: Optional[DeviceHandle] = None

    @property
    def handle(self) -> Optional[DeviceHandle]:
        return self._handle

    def open(self) -> DeviceHandle:
        import usb.core
        import usb.util

        try:
            dev = usb.core.find(idVendor=self._vid, idProduct=self._pid)
        except (usb.core.USBError, usb.core.NoBackendError) as e:
            # NoBackendError: libusb itself is missing
            raise AccessDenied(self._vid, self._pid, str(e)) from e
        if dev is None:
            raise DeviceNotFound(self._vid, self._pid)

        try:
            # Linux: usbhid or a stale driver may have bound the interface
            if dev.is_kernel_driver_active(self._interface):
                dev.detach_kernel_driver(self._interface)
                log.debug("Detached kernel driver from interface %d", self._interface)

            try:
                cfg = dev.get_active_configuration()
            except usb.core.USBError:
                cfg = None
            if cfg is None or cfg.bConfigurationValue != self._configuration:
                dev.set_configuration(self._configuration)

            usb.util.claim_interface(dev, self._interface)
        except (usb.core.USBError, NotImplementedError) as e:
            usb.util.dispose_resources(dev)
            raise AccessDenied(self._vid, self._pid, str(e)) from e

        self._device = dev
        self._handle = DeviceHandle(vid=self._vid, pid=self._pid,
                                    interface=self._interface)
        log.info("Opened reader %s (configuration %d, interface %d)",
                 self._handle.usb_id, self._configuration, self._interface)
        return self._handle

    def discover_endpoints(self) -> Tuple[int, int]:
        if self._device is None or self._handle is None:
            raise TransferError("Transport not open")

        import usb.core

        try:
            cfg = self._device.get_active_configuration()
            intf = cfg[(self._interface, 0)]
            ep_in, ep_out = pick_bulk_endpoints(intf)
        except (usb.core.USBError, KeyError, IndexError) as e:
            raise EndpointsUnavailable(
                None, None, f"interface {self._interface}: {e}") from e
        if ep_in is None or ep_out is None:
            raise EndpointsUnavailable(ep_in, ep_out)

        self._handle.ep_in = ep_in
        self._handle.ep_out = ep_out
        log.info("Bulk endpoints: IN=0x%02x OUT=0x%02x", ep_in, ep_out)
        return ep_in, ep_out

    def close(self) -> None:
        """Release interface and dispose libusb resources.

        The transport is marked closed before anything can fail, so a
        second call is always a no-op.  A dispose failure is raised as
        TransferError for the caller to report.
        """
        dev = self._device
        if dev is None:
            return
        self._device = None
        self._handle = None

        import usb.core
        import usb.util

        try:
            usb.util.release_interface(dev, self._interface)
        except usb.core.USBError as e:
            log.debug("release_interface failed: %s", e)
        try:
            usb.util.dispose_resources(dev)
        except usb.core.USBError as e:
            raise TransferError(f"Failed to close device: {e}") from e
        log.info("Reader %04x:%04x closed", self._vid, self._pid)

    def write(self, endpoint: int, data: bytes,
              timeout: int = DEFAULT_TRANSFER_TIMEOUT_MS) -> int:
        if self._device is None:
            raise TransferError("Transport not open", endpoint, "out")

        import usb.core

        try:
            written = self._device.write(endpoint, data, timeout=timeout)
        except usb.core.USBError as e:
            raise TransferError(
                f"Bulk write to 0x{endpoint:02x} failed: {e}", endpoint, "out"
            ) from e
        if written != len(data):
            raise TransferError(
                f"Short write to 0x{endpoint:02x}: {written}/{len(data)} bytes",
                endpoint, "out",
            )
        return written

    def read(self, endpoint: int, length: int,
             timeout: int = DEFAULT_TRANSFER_TIMEOUT_MS) -> bytes:
        if self._device is None:
            raise TransferError("Transport not open", endpoint, "in")

        import usb.core

        try:
            data = self._device.read(endpoint, length, timeout=timeout)
        except usb.core.USBError as e:
            raise TransferError(
                f"Bulk read from 0x{endpoint:02x} failed: {e}", endpoint, "in"
            ) from e
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._device is not None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Device discovery helper
# =========================================================================

def find_readers(vid: int, pid: int) -> List[dict]:
    """List attached readers matching VID/PID.

    Returns:
        List of dicts with keys: vid, pid, bus, address, serial
    """
    import usb.core
    import usb.util

    devices = []
    for dev in usb.core.find(find_all=True, idVendor=vid, idProduct=pid):
        serial = ""
        if dev.iSerialNumber:
            try:
                serial = usb.util.get_string(dev, dev.iSerialNumber) or ""
            except (usb.core.USBError, ValueError) as e:
                # No permission to read string descriptors without udev rule
                log.debug("Cannot read serial of %d:%d: %s", dev.bus, dev.address, e)
        devices.append({
            'vid': vid,
            'pid': pid,
            'bus': dev.bus,
            'address': dev.address,
            'serial': serial,
        })
    log.debug("find_readers(%04x:%04x): %d found", vid, pid, len(devices))
    return devices

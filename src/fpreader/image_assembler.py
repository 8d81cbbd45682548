"""
Chunked bulk-read reassembly of the raw sensor image.

After GET_IMAGE the device streams ``width * height`` single-byte samples
on the bulk IN endpoint.  The host pulls them in chunks (1024 bytes by
default) and copies each one at the running offset.  A transfer may
return fewer bytes than asked; only a zero-length read is treated as a
stall, since retrying it would spin forever.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .core.errors import CaptureCancelled, ShortTransfer
from .core.models import DEFAULT_CHUNK_SIZE, DEFAULT_TRANSFER_TIMEOUT_MS
from .usb_transport import UsbTransport

log = logging.getLogger(__name__)


class ImageAssembler:
    """Fills a fixed-size sample buffer from bounded bulk reads."""

    def __init__(self, transport: UsbTransport, ep_in: int,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 timeout_ms: int = DEFAULT_TRANSFER_TIMEOUT_MS):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.ep_in = ep_in
        self.chunk_size = chunk_size
        self.timeout_ms = timeout_ms

    def fill(self, total_length: int,
             should_cancel: Optional[Callable[[], bool]] = None) -> bytes:
        """Read until exactly *total_length* bytes have arrived.

        Raises:
            ShortTransfer: A read returned zero bytes before completion.
            TransferError: The underlying transfer failed.
            CaptureCancelled: Cancellation was requested between chunks.
        """
        buf = bytearray(total_length)
        view = memoryview(buf)
        offset = 0
        chunks = 0

        while offset < total_length:
            if should_cancel is not None and should_cancel():
                raise CaptureCancelled()

            want = min(self.chunk_size, total_length - offset)
            chunk = self.transport.read(self.ep_in, want, self.timeout_ms)
            if not chunk:
                log.warning("Image read stalled at %d/%d bytes", offset, total_length)
                raise ShortTransfer(offset, total_length, self.ep_in)

            # Never write past the end, even if the device over-delivers
            n = min(len(chunk), total_length - offset)
            view[offset:offset + n] = chunk[:n]
            offset += n
            chunks += 1

        log.debug("Image assembled: %d bytes in %d chunks", total_length, chunks)
        return bytes(buf)

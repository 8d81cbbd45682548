"""
Command/response layer on top of the bulk transport.

Every command is one bulk OUT transfer: the opcode byte followed by its
payload.  Commands that the device acknowledges are followed by a fixed
64-byte status frame on the IN endpoint whose first byte is the status.

The device has no other error signalling, so ``send_and_expect`` is the
only way to tell an acknowledged step from one that silently failed.
"""
from __future__ import annotations

import logging

from .core.errors import CommandFailed, TransferError, UnexpectedResponse
from .core.models import (
    DEFAULT_TRANSFER_TIMEOUT_MS,
    STATUS_FRAME_SIZE,
    Command,
    ResponseFrame,
)
from .usb_transport import UsbTransport

log = logging.getLogger(__name__)


class CommandChannel:
    """Encodes commands onto a transport and validates status frames."""

    def __init__(self, transport: UsbTransport, ep_in: int, ep_out: int,
                 timeout_ms: int = DEFAULT_TRANSFER_TIMEOUT_MS):
        self.transport = transport
        self.ep_in = ep_in
        self.ep_out = ep_out
        self.timeout_ms = timeout_ms

    def send(self, command: Command) -> None:
        """Write ``[opcode] ++ payload`` to the OUT endpoint.

        Raises:
            CommandFailed: The transfer failed (cause chained).
        """
        packet = command.to_bytes()
        log.debug("-> %s [%s]", command, packet.hex())
        try:
            self.transport.write(self.ep_out, packet, self.timeout_ms)
        except TransferError as e:
            raise CommandFailed(command.opcode, str(e)) from e

    def read_frame(self, command: Command) -> ResponseFrame:
        """Read one status frame answering *command*."""
        try:
            raw = self.transport.read(self.ep_in, STATUS_FRAME_SIZE, self.timeout_ms)
        except TransferError as e:
            raise CommandFailed(command.opcode, str(e)) from e
        if not raw:
            raise CommandFailed(command.opcode, "empty status frame")
        frame = ResponseFrame(bytes(raw))
        log.debug("<- %s status=0x%02x (%d bytes)",
                  command.opcode.name, frame.status, len(frame))
        return frame

    def query(self, command: Command) -> ResponseFrame:
        """Send *command* and return its status frame unvalidated.

        Used by the polling steps, where every status value is meaningful.
        """
        self.send(command)
        return self.read_frame(command)

    def send_and_expect(self, command: Command, expected_status: int) -> ResponseFrame:
        """Send *command* and require byte 0 of the reply to be *expected_status*.

        Raises:
            CommandFailed: Write or read failed.
            UnexpectedResponse: Device answered with a different status.
        """
        frame = self.query(command)
        if frame.status != expected_status:
            raise UnexpectedResponse(command.opcode, expected_status, frame.status)
        return frame

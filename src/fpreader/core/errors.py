"""Exception hierarchy for the reader stack.

Every layer raises one of these (chaining the underlying cause with
``raise ... from exc``) so callers can render a precise message without
parsing strings.
"""
from __future__ import annotations

from typing import Optional

from .models import Opcode


class ReaderError(Exception):
    """Base class for all fpreader errors."""


# ── Connect ──────────────────────────────────────────────────────────

class ConnectError(ReaderError):
    """The reader could not be brought to the Connected state."""


class DeviceNotFound(ConnectError):
    def __init__(self, vid: int, pid: int):
        self.vid = vid
        self.pid = pid
        super().__init__(f"USB device not found: VID={vid:#06x} PID={pid:#06x}")


class AccessDenied(ConnectError):
    def __init__(self, vid: int, pid: int, reason: str = ""):
        self.vid = vid
        self.pid = pid
        msg = f"Cannot claim {vid:04x}:{pid:04x}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EndpointsUnavailable(ConnectError):
    def __init__(self, ep_in: Optional[int], ep_out: Optional[int], reason: str = ""):
        self.ep_in = ep_in
        self.ep_out = ep_out
        missing = [name for name, ep in (("IN", ep_in), ("OUT", ep_out)) if ep is None]
        msg = f"No bulk {'/'.join(missing)} endpoint on interface"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InitRejected(ConnectError):
    """RESET or SET_PARAMS was not acknowledged."""


# ── Transfer ─────────────────────────────────────────────────────────

class TransferError(ReaderError):
    def __init__(self, message: str, endpoint: Optional[int] = None,
                 direction: str = ""):
        self.endpoint = endpoint
        self.direction = direction
        super().__init__(message)


class ShortTransfer(TransferError):
    """Bulk read stalled (zero-length) before the image was complete."""

    def __init__(self, received: int, expected: int, endpoint: Optional[int] = None):
        self.received = received
        self.expected = expected
        super().__init__(
            f"Image transfer stalled after {received}/{expected} bytes",
            endpoint=endpoint, direction="in",
        )


# ── Command ──────────────────────────────────────────────────────────

class CommandError(ReaderError):
    def __init__(self, message: str, opcode: int):
        self.opcode = opcode
        super().__init__(message)


class CommandFailed(CommandError):
    def __init__(self, opcode: int, reason: str = ""):
        name = _opcode_name(opcode)
        msg = f"Command {name} failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, opcode)


class UnexpectedResponse(CommandError):
    def __init__(self, opcode: int, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{_opcode_name(opcode)}: expected status 0x{expected:02x}, "
            f"got 0x{actual:02x}",
            opcode,
        )


# ── Capture ──────────────────────────────────────────────────────────

class CaptureError(ReaderError):
    """A capture could not produce an image."""


class NotConnected(CaptureError):
    def __init__(self, operation: str = "capture"):
        super().__init__(f"Cannot {operation}: reader not connected")


class CaptureAlreadyInProgress(CaptureError):
    def __init__(self):
        super().__init__("A capture is already in progress")


class _WaitTimeout(CaptureError):
    what = "wait"

    def __init__(self, timeout_ms: int, elapsed_ms: float):
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"Timed out {self.what} after {elapsed_ms:.0f} ms (limit {timeout_ms} ms)"
        )


class FingerTimeout(_WaitTimeout):
    what = "waiting for finger"


class CaptureTimeout(_WaitTimeout):
    what = "waiting for capture to complete"


class CaptureFailed(CaptureError):
    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Device reported capture failure (status 0x{status:02x})")


class CaptureCancelled(CaptureError):
    def __init__(self):
        super().__init__("Capture cancelled")


# ── Image ────────────────────────────────────────────────────────────

class ImageError(ReaderError):
    """Post-processing of raw samples failed."""


class DegenerateImage(ImageError):
    def __init__(self, value: int):
        self.value = value
        super().__init__(f"Flat image: every sample is {value}")


class UnsupportedFormat(ImageError):
    def __init__(self, fmt: str, supported=()):
        self.format = fmt
        msg = f"Unsupported image format: {fmt!r}"
        if supported:
            msg += f" (supported: {', '.join(supported)})"
        super().__init__(msg)


# ── Disconnect ───────────────────────────────────────────────────────

class DisconnectError(ReaderError):
    """Releasing or closing the device failed."""


def _opcode_name(opcode: int) -> str:
    try:
        return Opcode(opcode).name
    except ValueError:
        return f"0x{opcode:02x}"

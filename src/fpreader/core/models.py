"""
fpreader Models - Pure data classes shared by every layer.

No USB or GUI dependencies: these can be built and inspected in tests
without a device attached.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from typing import Optional, Tuple

# =============================================================================
# Device constants (U.are.U 4500 class reader)
# =============================================================================

READER_VID = 0x05BA
READER_PID = 0x000A

USB_CONFIGURATION = 1
USB_INTERFACE = 0

SENSOR_WIDTH = 384
SENSOR_HEIGHT = 290

STATUS_FRAME_SIZE = 64
DEFAULT_CHUNK_SIZE = 1024
DEFAULT_POLL_INTERVAL_MS = 100
DEFAULT_TRANSFER_TIMEOUT_MS = 1000
DEFAULT_CAPTURE_TIMEOUT_MS = 10000

# SET_PARAMS payload sent after RESET (opcode is prefixed by the channel)
DEFAULT_PARAMS = (0x01, 0x02, 0x03)


# =============================================================================
# Protocol enums
# =============================================================================

class Opcode(IntEnum):
    """Single-byte command opcodes."""
    RESET = 0x01
    GET_STATUS = 0x02
    SET_PARAMS = 0x03
    CAPTURE = 0x04
    GET_IMAGE = 0x05
    CHECK_FINGER = 0x06
    CANCEL = 0x07
    LED = 0x08


class Status(IntEnum):
    """Leading byte of a status frame.

    Meaning depends on the command: IDLE acknowledges RESET/SET_PARAMS/
    CAPTURE and marks capture completion; READY reports a finger on the
    sensor. Any other value from GET_STATUS means the device is busy.
    """
    IDLE = 0x00
    READY = 0x01
    FAILURE = 0xFF


class SessionState(Enum):
    """Lifecycle phase of a reader session."""
    DISCONNECTED = auto()
    CONNECTED = auto()
    CAPTURING = auto()


# =============================================================================
# Wire objects
# =============================================================================

@dataclass(frozen=True)
class Command:
    """Opcode plus optional parameter payload."""
    opcode: Opcode
    payload: bytes = b""

    def to_bytes(self) -> bytes:
        """Serialize for a bulk OUT transfer: opcode first, then payload."""
        return bytes([int(self.opcode)]) + bytes(self.payload)

    @classmethod
    def led(cls, on: bool) -> 'Command':
        return cls(Opcode.LED, b'\x01' if on else b'\x00')

    def __str__(self) -> str:
        if self.payload:
            return f"{self.opcode.name}({self.payload.hex()})"
        return self.opcode.name


@dataclass(frozen=True)
class ResponseFrame:
    """A status frame read back from the IN endpoint."""
    raw: bytes

    @property
    def status(self) -> int:
        """Byte 0 of the frame."""
        return self.raw[0]

    @property
    def payload(self) -> bytes:
        return self.raw[1:]

    def __len__(self) -> int:
        return len(self.raw)


@dataclass
class DeviceHandle:
    """An opened, configured, interface-claimed reader."""
    vid: int
    pid: int
    interface: int = USB_INTERFACE
    ep_in: Optional[int] = None
    ep_out: Optional[int] = None

    @property
    def usb_id(self) -> str:
        return f"{self.vid:04x}:{self.pid:04x}"


# =============================================================================
# Capture options and output
# =============================================================================

@dataclass
class CaptureOptions:
    """Per-capture settings supplied by the caller."""
    timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS
    wait_for_finger: bool = True
    enhance: bool = True
    format: str = "png"

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        self.format = self.format.lower()


@dataclass(frozen=True)
class EncodedImage:
    """Encoded capture result handed back to the caller."""
    data: bytes
    media_type: str
    width: int
    height: int
    format: str

    def __len__(self) -> int:
        return len(self.data)


# =============================================================================
# Reader configuration
# =============================================================================

@dataclass
class ReaderConfig:
    """Device constants that may be overridden from the config file.

    Several reader firmware revisions disagree on sensor size and timings,
    so none of these are hard-wired into the protocol code.
    """
    vid: int = READER_VID
    pid: int = READER_PID
    interface: int = USB_INTERFACE
    configuration: int = USB_CONFIGURATION
    width: int = SENSOR_WIDTH
    height: int = SENSOR_HEIGHT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    transfer_timeout_ms: int = DEFAULT_TRANSFER_TIMEOUT_MS
    capture_timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS
    params: Tuple[int, ...] = field(default=DEFAULT_PARAMS)

    @property
    def image_size(self) -> int:
        """Number of single-byte samples in one raw image."""
        return self.width * self.height

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def params_payload(self) -> bytes:
        return bytes(self.params)

"""
fpreader - USB fingerprint reader capture

Drives a U.are.U 4500 class fingerprint reader over libusb and turns the
raw sensor read-out into a PNG/BMP/TIFF/JPEG image.

Features:
- Device claim and bulk endpoint discovery via pyusb
- Validated command/response protocol
- Finger-presence polling and capture with timeouts and cancellation
- Contrast normalization and image encoding (numpy + Pillow)

Usage:
    # As a library
    from fpreader import CaptureOptions, ReaderSession
    with ReaderSession() as reader:
        image = reader.capture(CaptureOptions(timeout_ms=10000))
        open('finger.png', 'wb').write(image.data)

    # Command line
    fpreader detect           # List attached readers
    fpreader capture          # Capture to fingerprint.png
    fpreader serve            # REST API
"""

from fpreader.__version__ import __version__
from fpreader.core.errors import ReaderError
from fpreader.core.models import CaptureOptions, EncodedImage, ReaderConfig, SessionState
from fpreader.services import ImageService, ReaderSession

__all__ = [
    # Version
    "__version__",
    # Session
    "ReaderSession",
    "CaptureOptions",
    "EncodedImage",
    "ReaderConfig",
    "SessionState",
    "ReaderError",
    # Image pipeline
    "ImageService",
]

"""
fpreader Core - models and errors shared by every layer.

Transport, command channel and services all import from here; nothing in
core imports back out of the package.
"""

from .models import (
    CaptureOptions,
    Command,
    DeviceHandle,
    EncodedImage,
    Opcode,
    ReaderConfig,
    ResponseFrame,
    SessionState,
    Status,
)

__all__ = [
    'CaptureOptions',
    'Command',
    'DeviceHandle',
    'EncodedImage',
    'Opcode',
    'ReaderConfig',
    'ResponseFrame',
    'SessionState',
    'Status',
]

"""Reader session: connect, capture, disconnect.

Pure Python, no GUI dependencies.  Drives the command channel through the
reader's lifecycle::

    DISCONNECTED --connect--> CONNECTED --capture--> CAPTURING
         ^                        ^                      |
         |                        +----------------------+
         +-------disconnect-------+

Only one capture may run per session.  Waits are bounded by the capture
timeout and checked for cancellation at every poll and chunk boundary.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ..command_channel import CommandChannel
from ..core.errors import (
    CaptureAlreadyInProgress,
    CaptureCancelled,
    CaptureFailed,
    CaptureTimeout,
    CommandError,
    DisconnectError,
    FingerTimeout,
    InitRejected,
    NotConnected,
    ReaderError,
    TransferError,
    UnsupportedFormat,
)
from ..core.models import (
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
from ..image_assembler import ImageAssembler
from ..polling import PollTimeout, poll_until
from ..usb_transport import PyUsbTransport, UsbTransport
from .image import FORMATS, ImageService

log = logging.getLogger(__name__)


def _default_transport(config: ReaderConfig) -> UsbTransport:
    return PyUsbTransport(config.vid, config.pid,
                          interface=config.interface,
                          configuration=config.configuration)


class ReaderSession:
    """One fingerprint reader and its lifecycle.

    Observer callbacks (advisory only, never part of success/failure):
        on_progress(message: str) - human-readable step notifications
        on_state_changed(state: SessionState) - lifecycle transitions
        on_error(message: str) - failures of best-effort cleanup steps
    """

    def __init__(
        self,
        config: Optional[ReaderConfig] = None,
        transport_factory: Optional[Callable[[ReaderConfig], UsbTransport]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or ReaderConfig()
        self._transport_factory = transport_factory or _default_transport
        self._clock = clock
        self._sleep = sleep

        self._transport: Optional[UsbTransport] = None
        self._channel: Optional[CommandChannel] = None
        self._handle: Optional[DeviceHandle] = None
        self._state = SessionState.DISCONNECTED

        self._capture_lock = threading.Lock()
        self._io_lock = threading.RLock()
        self._cancel = threading.Event()

        self.on_progress: Optional[Callable[[str], None]] = None
        self.on_state_changed: Optional[Callable[[SessionState], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    # ── State ────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is not SessionState.DISCONNECTED

    @property
    def is_capturing(self) -> bool:
        return self._state is SessionState.CAPTURING

    @property
    def handle(self) -> Optional[DeviceHandle]:
        return self._handle

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        log.debug("Session: %s -> %s", self._state.name, state.name)
        self._state = state
        if self.on_state_changed:
            self.on_state_changed(state)

    def _progress(self, message: str) -> None:
        log.info("%s", message)
        if self.on_progress:
            self.on_progress(message)

    def _notify_error(self, message: str) -> None:
        if self.on_error:
            self.on_error(message)

    # ── Connect / disconnect ─────────────────────────────────────────

    def connect(self) -> None:
        """Open the reader, RESET it and load parameters.

        Any failure closes the transport again; the session stays
        DISCONNECTED.

        Raises:
            DeviceNotFound, AccessDenied, EndpointsUnavailable, InitRejected
        """
        with self._io_lock:
            if self._state is not SessionState.DISCONNECTED:
                log.debug("connect: already connected")
                return

            cfg = self.config
            transport = self._transport_factory(cfg)
            try:
                handle = transport.open()
                ep_in, ep_out = transport.discover_endpoints()
                handle.ep_in, handle.ep_out = ep_in, ep_out
                channel = CommandChannel(transport, ep_in, ep_out,
                                         cfg.transfer_timeout_ms)
                self._progress(f"device {handle.usb_id} opened")

                try:
                    channel.send_and_expect(Command(Opcode.RESET), Status.IDLE)
                    channel.send_and_expect(
                        Command(Opcode.SET_PARAMS, cfg.params_payload), Status.IDLE)
                except CommandError as e:
                    raise InitRejected(f"Device initialization failed: {e}") from e
            except Exception:
                self._close_quietly(transport)
                raise

            self._transport = transport
            self._channel = channel
            self._handle = handle
            self._set_state(SessionState.CONNECTED)
        self._progress("device initialized")

    def disconnect(self) -> None:
        """Cancel any running capture and release the reader.

        Idempotent.  The session is DISCONNECTED when this returns, even
        if closing the device failed.

        Raises:
            DisconnectError: Releasing the device failed.
        """
        if self._state is SessionState.DISCONNECTED:
            return
        # Let a running capture bail out at its next boundary
        self._cancel.set()

        with self._io_lock:
            if self._state is SessionState.DISCONNECTED:
                return
            if self._state is SessionState.CAPTURING:
                self._send_cancel_best_effort()

            transport = self._transport
            self._transport = None
            self._channel = None
            self._handle = None
            self._set_state(SessionState.DISCONNECTED)

            try:
                if transport is not None:
                    transport.close()
            except ReaderError as e:
                raise DisconnectError(f"Failed to release reader: {e}") from e
        self._progress("device disconnected")

    @staticmethod
    def _close_quietly(transport: UsbTransport) -> None:
        try:
            transport.close()
        except ReaderError as e:
            log.warning("Rollback close failed: %s", e)

    # ── Capture ──────────────────────────────────────────────────────

    def capture(self, options: Optional[CaptureOptions] = None) -> EncodedImage:
        """Capture one fingerprint image.

        Raises:
            NotConnected: Session is DISCONNECTED.
            CaptureAlreadyInProgress: Another capture holds the session.
            FingerTimeout, CaptureTimeout, CaptureFailed, CaptureCancelled
            CommandError, TransferError: Device step failed.
            DegenerateImage, UnsupportedFormat: Post-processing failed.
        """
        if options is None:
            options = CaptureOptions(timeout_ms=self.config.capture_timeout_ms)
        if self._state is SessionState.DISCONNECTED:
            raise NotConnected()
        if not ImageService.supports(options.format):
            raise UnsupportedFormat(options.format, sorted(FORMATS))
        if not self._capture_lock.acquire(blocking=False):
            raise CaptureAlreadyInProgress()

        try:
            with self._io_lock:
                if self._state is not SessionState.CONNECTED:
                    raise NotConnected()
                self._cancel.clear()
                self._set_state(SessionState.CAPTURING)

            try:
                samples = self._run_capture(options)
            except CaptureCancelled:
                self._send_cancel_best_effort()
                raise
            finally:
                self._led_off_best_effort()
                with self._io_lock:
                    if self._state is SessionState.CAPTURING:
                        self._set_state(SessionState.CONNECTED)
        finally:
            self._capture_lock.release()

        cfg = self.config
        image = ImageService.process(samples, cfg.width, cfg.height,
                                     enhance=options.enhance, fmt=options.format)
        self._progress(f"fingerprint captured ({image.format}, {len(image)} bytes)")
        return image

    def cancel(self) -> None:
        """Ask a running capture to stop at its next poll or transfer."""
        if self._state is SessionState.CAPTURING:
            self._cancel.set()
            self._progress("cancel requested")

    def set_led(self, on: bool) -> None:
        """Toggle the sensor LED outside of a capture."""
        if self._state is SessionState.DISCONNECTED:
            raise NotConnected("set LED")
        if not self._capture_lock.acquire(blocking=False):
            raise CaptureAlreadyInProgress()
        try:
            self._exchange(Command.led(on), Status.IDLE, check_cancel=False)
        finally:
            self._capture_lock.release()
        self._progress("LED activated" if on else "LED deactivated")

    def _run_capture(self, options: CaptureOptions) -> bytes:
        cfg = self.config
        interval_s = cfg.poll_interval_ms / 1000.0
        timeout_s = options.timeout_ms / 1000.0

        self._exchange(Command.led(True), Status.IDLE)
        self._progress("LED activated")

        if options.wait_for_finger:
            self._progress("waiting for finger")
            try:
                self._poll(self._finger_present, timeout_s, interval_s)
            except PollTimeout as e:
                raise FingerTimeout(options.timeout_ms, e.elapsed_s * 1000) from e
            self._progress("finger detected")

        self._exchange(Command(Opcode.CAPTURE), Status.IDLE)
        self._progress("capture started")

        try:
            self._poll(self._capture_done, timeout_s, interval_s)
        except PollTimeout as e:
            raise CaptureTimeout(options.timeout_ms, e.elapsed_s * 1000) from e
        self._progress("capture complete, reading image")

        with self._io_lock:
            channel = self._checked_channel()
            channel.send(Command(Opcode.GET_IMAGE))
            assembler = ImageAssembler(channel.transport, channel.ep_in,
                                       cfg.chunk_size, cfg.transfer_timeout_ms)
            return assembler.fill(cfg.image_size, should_cancel=self._cancel.is_set)

    def _poll(self, check, timeout_s: float, interval_s: float):
        return poll_until(check, timeout_s, interval_s,
                          clock=self._clock, sleep=self._sleep,
                          should_cancel=self._cancel.is_set)

    def _finger_present(self) -> Optional[ResponseFrame]:
        frame = self._query(Command(Opcode.CHECK_FINGER))
        return frame if frame.status == Status.READY else None

    def _capture_done(self) -> Optional[ResponseFrame]:
        frame = self._query(Command(Opcode.GET_STATUS))
        if frame.status == Status.IDLE:
            return frame
        if frame.status == Status.FAILURE:
            raise CaptureFailed(frame.status)
        return None

    # ── Device I/O (serialised) ──────────────────────────────────────

    def _checked_channel(self, check_cancel: bool = True) -> CommandChannel:
        if check_cancel and self._cancel.is_set():
            raise CaptureCancelled()
        if self._channel is None:
            raise NotConnected()
        return self._channel

    def _query(self, command: Command) -> ResponseFrame:
        with self._io_lock:
            return self._checked_channel().query(command)

    def _exchange(self, command: Command, expected: int,
                  check_cancel: bool = True) -> ResponseFrame:
        with self._io_lock:
            return self._checked_channel(check_cancel).send_and_expect(command, expected)

    def _led_off_best_effort(self) -> None:
        with self._io_lock:
            if self._channel is None:
                return
            try:
                self._channel.send_and_expect(Command.led(False), Status.IDLE)
            except (CommandError, TransferError) as e:
                log.warning("LED off failed: %s", e)
                self._notify_error(f"LED off failed: {e}")
            else:
                self._progress("LED deactivated")

    def _send_cancel_best_effort(self) -> None:
        with self._io_lock:
            if self._channel is None:
                return
            try:
                self._channel.send_and_expect(Command(Opcode.CANCEL), Status.IDLE)
            except (CommandError, TransferError) as e:
                log.warning("CANCEL failed: %s", e)
                self._notify_error(f"Cancel failed: {e}")

    # ── Context manager ──────────────────────────────────────────────

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.disconnect()

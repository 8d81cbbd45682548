"""FastAPI REST API - Driving adapter for browser/remote capture.

Endpoints:
    GET  /health       - Server status
    GET  /status       - Session state and device details
    POST /connect      - Open and initialize the reader
    POST /disconnect   - Release the reader (idempotent)
    POST /capture      - Capture a fingerprint, returns the encoded image
    POST /cancel       - Cancel a running capture
    POST /led          - Switch the sensor LED
    GET  /events       - Recent progress/error messages (newest last)

Security:
    - Localhost-only by default (bind 127.0.0.1)
    - Optional token auth via --token flag (X-API-Token header)
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from fpreader.__version__ import __version__
from fpreader.conf import get_reader_config
from fpreader.core.errors import (
    AccessDenied,
    CaptureAlreadyInProgress,
    CaptureCancelled,
    CaptureTimeout,
    DeviceNotFound,
    FingerTimeout,
    ImageError,
    NotConnected,
    ReaderError,
)
from fpreader.core.models import CaptureOptions, SessionState
from fpreader.services import ReaderSession

log = logging.getLogger(__name__)

MAX_EVENTS = 200

app = FastAPI(title="fpreader", version=__version__)

# ── Shared session and event log ──────────────────────────────────────

_session = ReaderSession(get_reader_config())
_events: deque = deque(maxlen=MAX_EVENTS)


def _record(level: str):
    def _append(message) -> None:
        if isinstance(message, SessionState):
            message = f"state: {message.name.lower()}"
        _events.append({
            "time": datetime.now().isoformat(timespec="milliseconds"),
            "level": level,
            "message": message,
        })
    return _append


_session.on_progress = _record("info")
_session.on_error = _record("error")
_session.on_state_changed = _record("state")

# ── Token auth middleware (optional, enabled via --token) ─────────────

_api_token: str | None = None


def configure_auth(token: str | None) -> None:
    """Set the API token. Called by CLI serve command."""
    global _api_token  # noqa: PLW0603
    _api_token = token


@app.middleware("http")
async def check_token(request: Request, call_next):
    """Reject requests without valid token (if token is configured)."""
    if _api_token and request.url.path != "/health":
        if request.headers.get("X-API-Token") != _api_token:
            return JSONResponse(status_code=401, content={"detail": "Invalid token"})
    return await call_next(request)


# ── Pydantic models ──────────────────────────────────────────────────

class StatusResponse(BaseModel):
    connected: bool
    state: str
    capturing: bool
    device: Optional[str] = None
    ep_in: Optional[int] = None
    ep_out: Optional[int] = None
    resolution: tuple[int, int]


class EventResponse(BaseModel):
    time: str
    level: str
    message: str


# ── Helpers ───────────────────────────────────────────────────────────

def _status() -> StatusResponse:
    handle = _session.handle
    return StatusResponse(
        connected=_session.is_connected,
        state=_session.state.name.lower(),
        capturing=_session.is_capturing,
        device=handle.usb_id if handle else None,
        ep_in=handle.ep_in if handle else None,
        ep_out=handle.ep_out if handle else None,
        resolution=_session.config.resolution,
    )


def _http_error(exc: ReaderError) -> HTTPException:
    """Map a reader error onto an HTTP status code."""
    if isinstance(exc, DeviceNotFound):
        code = 404
    elif isinstance(exc, AccessDenied):
        code = 403
    elif isinstance(exc, (NotConnected, CaptureAlreadyInProgress, CaptureCancelled)):
        code = 409
    elif isinstance(exc, (FingerTimeout, CaptureTimeout)):
        code = 504
    elif isinstance(exc, ImageError):
        code = 422
    else:
        code = 502
    log.info("Request failed (%d): %s", code, exc)
    return HTTPException(status_code=code, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────

@app.get("/health")
def health() -> dict:
    """Health check (always accessible, no auth required)."""
    return {"status": "ok", "version": __version__}


@app.get("/status")
def status() -> StatusResponse:
    return _status()


@app.post("/connect")
def connect() -> StatusResponse:
    """Open and initialize the reader. No-op if already connected."""
    try:
        _session.connect()
    except ReaderError as e:
        raise _http_error(e)
    return _status()


@app.post("/disconnect")
def disconnect() -> StatusResponse:
    """Release the reader. Succeeds when already disconnected."""
    try:
        _session.disconnect()
    except ReaderError as e:
        raise _http_error(e)
    return _status()


@app.post("/capture")
def capture(timeout_ms: Optional[int] = None, wait_for_finger: bool = True,
            enhance: bool = True, format: str = "png") -> Response:
    """Capture a fingerprint and return it in the requested format.

    A second capture while one is running is rejected with 409.
    """
    try:
        options = CaptureOptions(
            timeout_ms=(timeout_ms if timeout_ms is not None
                        else _session.config.capture_timeout_ms),
            wait_for_finger=wait_for_finger,
            enhance=enhance,
            format=format,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        image = _session.capture(options)
    except ReaderError as e:
        raise _http_error(e)

    return Response(
        content=image.data,
        media_type=image.media_type,
        headers={
            "X-Image-Width": str(image.width),
            "X-Image-Height": str(image.height),
        },
    )


@app.post("/cancel")
def cancel() -> StatusResponse:
    _session.cancel()
    return _status()


@app.post("/led")
def led(on: bool = True) -> dict:
    try:
        _session.set_led(on)
    except ReaderError as e:
        raise _http_error(e)
    return {"led": on}


@app.get("/events")
def events(limit: int = 50) -> list[EventResponse]:
    """Most recent progress messages, oldest first."""
    items = list(_events)
    if limit > 0:
        items = items[-limit:]
    return [EventResponse(**e) for e in items]

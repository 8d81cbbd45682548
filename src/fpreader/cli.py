#!/usr/bin/env python3
"""
fpreader - Command Line Interface

Entry point for the fpreader package.
"""

import argparse
import logging
import sys
import warnings

from fpreader.__version__ import __version__


def _setup_logging(verbose=0):
    """Map -v count to a log level."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('PIL').setLevel(logging.WARNING)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING)
    # pyusb still imports a deprecated setuptools API on some versions
    warnings.filterwarnings('ignore', category=DeprecationWarning, module='usb')


def _make_session():
    """Build a ReaderSession from the saved reader config."""
    from fpreader.conf import get_reader_config
    from fpreader.services import ReaderSession

    session = ReaderSession(get_reader_config())
    session.on_progress = lambda msg: print(f"[*] {msg}", file=sys.stderr)
    session.on_error = lambda msg: print(f"[!] {msg}", file=sys.stderr)
    return session


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="fpreader",
        description="USB fingerprint reader capture tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    fpreader detect                       List attached readers
    fpreader status                       Connect, initialize, report endpoints
    fpreader capture -o finger.png        Wait for a finger and save the image
    fpreader capture --no-wait -f bmp     Capture immediately as BMP
    fpreader led on                       Turn the sensor LED on
    fpreader config --set width=355       Override a device constant
    fpreader serve --port 8000            Start the REST API
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Detect command
    subparsers.add_parser("detect", help="List attached readers")

    # Status command
    subparsers.add_parser("status", help="Connect to the reader and show its endpoints")

    # Capture command
    capture_parser = subparsers.add_parser("capture", help="Capture a fingerprint image")
    capture_parser.add_argument("-o", "--output", help="Output file (default: fingerprint.<format>)")
    capture_parser.add_argument("-f", "--format", default="png", help="png, bmp, tiff or jpeg")
    capture_parser.add_argument("-t", "--timeout", type=int, default=None,
                                help="Timeout per wait in milliseconds")
    capture_parser.add_argument("--no-wait", action="store_true",
                                help="Trigger capture without waiting for a finger")
    capture_parser.add_argument("--no-enhance", action="store_true",
                                help="Skip contrast normalization")

    # LED command
    led_parser = subparsers.add_parser("led", help="Switch the sensor LED")
    led_parser.add_argument("state", choices=["on", "off"])

    # Config command
    config_parser = subparsers.add_parser("config", help="Show or change device settings")
    config_parser.add_argument("--set", action="append", default=[], metavar="KEY=VALUE",
                               dest="assignments", help="Override a setting (repeatable)")
    config_parser.add_argument("--reset", action="store_true", help="Restore built-in defaults")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the REST API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--token", help="Require X-API-Token header")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(args.verbose)

    if args.command == "detect":
        return detect()
    elif args.command == "status":
        return show_status()
    elif args.command == "capture":
        return capture(output=args.output, fmt=args.format, timeout=args.timeout,
                       wait_for_finger=not args.no_wait, enhance=not args.no_enhance)
    elif args.command == "led":
        return set_led(args.state == "on")
    elif args.command == "config":
        return configure(assignments=args.assignments, reset=args.reset)
    elif args.command == "serve":
        return serve(host=args.host, port=args.port, token=args.token)

    return 0


def detect():
    """List readers matching the configured VID/PID."""
    from fpreader.conf import get_reader_config
    from fpreader.usb_transport import find_readers

    cfg = get_reader_config()
    try:
        readers = find_readers(cfg.vid, cfg.pid)
    except Exception as e:
        # usb.core.NoBackendError when libusb is missing
        print(f"Error scanning USB: {e}", file=sys.stderr)
        return 1

    if not readers:
        print(f"No reader found ({cfg.vid:04x}:{cfg.pid:04x})")
        return 1

    for i, r in enumerate(readers):
        serial = f" serial={r['serial']}" if r['serial'] else ""
        print(f"[{i}] {r['vid']:04x}:{r['pid']:04x} bus {r['bus']} address {r['address']}{serial}")
    return 0


def show_status():
    """Connect, print the negotiated handle, disconnect."""
    from fpreader.core.errors import ReaderError

    session = _make_session()
    try:
        session.connect()
        handle = session.handle
        cfg = session.config
        print(f"Reader:     {handle.usb_id}")
        print(f"Interface:  {handle.interface}")
        print(f"Endpoints:  IN=0x{handle.ep_in:02x} OUT=0x{handle.ep_out:02x}")
        print(f"Sensor:     {cfg.width}x{cfg.height}")
        session.disconnect()
    except ReaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def capture(output=None, fmt="png", timeout=None, wait_for_finger=True, enhance=True):
    """Capture one image and write it to *output*."""
    from fpreader.core.errors import ReaderError
    from fpreader.core.models import CaptureOptions

    session = _make_session()
    try:
        options = CaptureOptions(
            timeout_ms=timeout if timeout is not None else session.config.capture_timeout_ms,
            wait_for_finger=wait_for_finger,
            enhance=enhance,
            format=fmt,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        with session:
            image = session.capture(options)
    except KeyboardInterrupt:
        print("Cancelled", file=sys.stderr)
        return 130
    except ReaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    path = output or f"fingerprint.{image.format}"
    with open(path, 'wb') as f:
        f.write(image.data)
    print(f"Saved {image.width}x{image.height} {image.media_type} to {path}")
    return 0


def set_led(on):
    """Switch the LED on or off."""
    from fpreader.core.errors import ReaderError

    session = _make_session()
    try:
        session.connect()
        session.set_led(on)
        session.disconnect()
    except ReaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def configure(assignments=(), reset=False):
    """Apply KEY=VALUE overrides, then print the effective settings."""
    from fpreader.conf import get_reader_config, reset_reader_settings, save_reader_setting

    if reset:
        reset_reader_settings()

    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep:
            print(f"Error: expected KEY=VALUE, got {item!r}", file=sys.stderr)
            return 2
        try:
            save_reader_setting(key.strip(), value.strip())
        except KeyError:
            print(f"Error: unknown setting {key!r}", file=sys.stderr)
            return 2
        except ValueError as e:
            print(f"Error: {key}: {e}", file=sys.stderr)
            return 2

    cfg = get_reader_config()
    print(f"vid                 0x{cfg.vid:04x}")
    print(f"pid                 0x{cfg.pid:04x}")
    print(f"interface           {cfg.interface}")
    print(f"configuration       {cfg.configuration}")
    print(f"width x height      {cfg.width} x {cfg.height}")
    print(f"chunk_size          {cfg.chunk_size}")
    print(f"poll_interval_ms    {cfg.poll_interval_ms}")
    print(f"transfer_timeout_ms {cfg.transfer_timeout_ms}")
    print(f"capture_timeout_ms  {cfg.capture_timeout_ms}")
    print(f"params              {' '.join(f'{p:02x}' for p in cfg.params)}")
    return 0


def serve(host="127.0.0.1", port=8000, token=None):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    from fpreader.api import app, configure_auth

    configure_auth(token)
    if host not in ("127.0.0.1", "localhost") and not token:
        print("[!] Serving on a public address without --token", file=sys.stderr)
    uvicorn.run(app, host=host, port=port)
    return 0


if __name__ == "__main__":
    sys.exit(main())

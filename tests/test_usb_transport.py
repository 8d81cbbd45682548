"""
Tests for usb_transport -- bulk endpoint discovery and the pyusb transport.

No real USB hardware required: the ``usb`` package is replaced in
sys.modules with MagicMocks.

Tests cover:
- pick_bulk_endpoints() filtering by transfer type and direction
- PyUsbTransport.open(): not found, missing backend, claim failure, configuration handling
- discover_endpoints() success, missing endpoints, pyusb lookup errors
- write()/read() error translation and short writes
- close() idempotence and dispose failure
- find_readers() listing
"""

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from fpreader.core.errors import (
    AccessDenied,
    ConnectError,
    DeviceNotFound,
    EndpointsUnavailable,
    TransferError,
)
from fpreader.core.models import ReaderConfig, SessionState
from fpreader.services import ReaderSession
from fpreader.usb_transport import PyUsbTransport, find_readers, pick_bulk_endpoints

VID, PID = 0x05BA, 0x000A


class FakeUSBError(Exception):
    pass


class FakeNoBackendError(ValueError):
    pass


def _ep(address, attributes=0x02):
    return SimpleNamespace(bEndpointAddress=address, bmAttributes=attributes)


def _usb_modules():
    """Mocked usb package with a real exception type for USBError."""
    usb_mod = MagicMock()
    usb_mod.core.USBError = FakeUSBError
    usb_mod.core.NoBackendError = FakeNoBackendError
    return usb_mod, {'usb': usb_mod, 'usb.core': usb_mod.core, 'usb.util': usb_mod.util}


def _mock_device(active_config=1, endpoints=(_ep(0x81), _ep(0x02))):
    dev = MagicMock()
    dev.is_kernel_driver_active.return_value = False
    cfg = MagicMock()
    cfg.bConfigurationValue = active_config
    cfg.__getitem__.return_value = list(endpoints)
    dev.get_active_configuration.return_value = cfg
    return dev


class TestPickBulkEndpoints(unittest.TestCase):

    def test_in_and_out(self):
        self.assertEqual(pick_bulk_endpoints([_ep(0x81), _ep(0x02)]), (0x81, 0x02))

    def test_skips_interrupt_endpoints(self):
        eps = [_ep(0x83, attributes=0x03), _ep(0x82), _ep(0x01)]
        self.assertEqual(pick_bulk_endpoints(eps), (0x82, 0x01))

    def test_first_of_each_direction_wins(self):
        eps = [_ep(0x81), _ep(0x82), _ep(0x02), _ep(0x03)]
        self.assertEqual(pick_bulk_endpoints(eps), (0x81, 0x02))

    def test_missing(self):
        self.assertEqual(pick_bulk_endpoints([_ep(0x81)]), (0x81, None))
        self.assertEqual(pick_bulk_endpoints([]), (None, None))


class TestPyUsbTransportOpen(unittest.TestCase):

    def setUp(self):
        self.usb_mod, self.modules = _usb_modules()
        self.patcher = patch.dict('sys.modules', self.modules)
        self.patcher.start()

    def tearDown(self):
        self.patcher.stop()

    def test_device_not_found(self):
        self.usb_mod.core.find.return_value = None
        with self.assertRaises(DeviceNotFound) as ctx:
            PyUsbTransport(VID, PID).open()
        self.assertEqual((ctx.exception.vid, ctx.exception.pid), (VID, PID))

    def test_open_claims_interface(self):
        dev = _mock_device()
        self.usb_mod.core.find.return_value = dev
        transport = PyUsbTransport(VID, PID)

        handle = transport.open()

        self.assertEqual(handle.usb_id, '05ba:000a')
        self.assertTrue(transport.is_open)
        self.usb_mod.util.claim_interface.assert_called_once_with(dev, 0)
        # Configuration 1 already active -> not re-selected
        dev.set_configuration.assert_not_called()

    def test_selects_configuration_when_different(self):
        dev = _mock_device(active_config=2)
        self.usb_mod.core.find.return_value = dev
        PyUsbTransport(VID, PID).open()
        dev.set_configuration.assert_called_once_with(1)

    def test_detaches_kernel_driver(self):
        dev = _mock_device()
        dev.is_kernel_driver_active.return_value = True
        self.usb_mod.core.find.return_value = dev
        PyUsbTransport(VID, PID).open()
        dev.detach_kernel_driver.assert_called_once_with(0)

    def test_claim_failure_is_access_denied(self):
        dev = _mock_device()
        self.usb_mod.core.find.return_value = dev
        self.usb_mod.util.claim_interface.side_effect = FakeUSBError("Access denied")
        transport = PyUsbTransport(VID, PID)

        with self.assertRaises(AccessDenied) as ctx:
            transport.open()

        self.assertIn("Access denied", str(ctx.exception))
        self.assertFalse(transport.is_open)
        self.usb_mod.util.dispose_resources.assert_called_once_with(dev)

    def test_discover_endpoints(self):
        self.usb_mod.core.find.return_value = _mock_device()
        transport = PyUsbTransport(VID, PID)
        transport.open()
        self.assertEqual(transport.discover_endpoints(), (0x81, 0x02))
        self.assertEqual(transport.handle.ep_in, 0x81)

    def test_discover_endpoints_missing_out(self):
        self.usb_mod.core.find.return_value = _mock_device(endpoints=(_ep(0x81),))
        transport = PyUsbTransport(VID, PID)
        transport.open()
        with self.assertRaises(EndpointsUnavailable) as ctx:
            transport.discover_endpoints()
        self.assertIsNone(ctx.exception.ep_out)
        self.assertIn("OUT", str(ctx.exception))

    def test_missing_libusb_backend(self):
        self.usb_mod.core.find.side_effect = FakeNoBackendError("No backend available")
        with self.assertRaises(AccessDenied) as ctx:
            PyUsbTransport(VID, PID).open()
        self.assertIsInstance(ctx.exception.__cause__, FakeNoBackendError)

    def test_discover_interface_lookup_error(self):
        dev = _mock_device()
        dev.get_active_configuration.return_value.__getitem__.side_effect = \
            FakeUSBError("no such interface")
        self.usb_mod.core.find.return_value = dev
        transport = PyUsbTransport(VID, PID)
        transport.open()

        with self.assertRaises(EndpointsUnavailable) as ctx:
            transport.discover_endpoints()
        self.assertIsInstance(ctx.exception.__cause__, FakeUSBError)
        self.assertIn("no such interface", str(ctx.exception))

    def test_discover_missing_interface_index(self):
        dev = _mock_device()
        dev.get_active_configuration.return_value.__getitem__.side_effect = IndexError(0)
        self.usb_mod.core.find.return_value = dev
        transport = PyUsbTransport(VID, PID)
        transport.open()
        with self.assertRaises(EndpointsUnavailable):
            transport.discover_endpoints()

    def test_discover_active_configuration_error(self):
        dev = _mock_device()
        self.usb_mod.core.find.return_value = dev
        transport = PyUsbTransport(VID, PID)
        transport.open()
        dev.get_active_configuration.side_effect = FakeUSBError("pipe")
        with self.assertRaises(EndpointsUnavailable):
            transport.discover_endpoints()

    def test_session_connect_wraps_discovery_error(self):
        """A pyusb failure during discovery surfaces as a ConnectError and rolls back."""
        dev = _mock_device()
        dev.get_active_configuration.return_value.__getitem__.side_effect = \
            FakeUSBError("no such interface")
        self.usb_mod.core.find.return_value = dev
        session = ReaderSession(ReaderConfig())

        with self.assertRaises(ConnectError):
            session.connect()

        self.assertEqual(session.state, SessionState.DISCONNECTED)
        self.usb_mod.util.dispose_resources.assert_called_with(dev)


class TestPyUsbTransportIO(unittest.TestCase):

    def setUp(self):
        self.usb_mod, self.modules = _usb_modules()
        self.patcher = patch.dict('sys.modules', self.modules)
        self.patcher.start()
        self.dev = _mock_device()
        self.usb_mod.core.find.return_value = self.dev
        self.transport = PyUsbTransport(VID, PID)
        self.transport.open()

    def tearDown(self):
        self.patcher.stop()

    def test_write(self):
        self.dev.write.return_value = 2
        self.assertEqual(self.transport.write(0x02, b'\x08\x01', timeout=500), 2)
        self.dev.write.assert_called_once_with(0x02, b'\x08\x01', timeout=500)

    def test_write_error(self):
        self.dev.write.side_effect = FakeUSBError("pipe")
        with self.assertRaises(TransferError) as ctx:
            self.transport.write(0x02, b'\x01')
        self.assertEqual(ctx.exception.endpoint, 0x02)
        self.assertEqual(ctx.exception.direction, 'out')

    def test_short_write(self):
        self.dev.write.return_value = 1
        with self.assertRaises(TransferError):
            self.transport.write(0x02, b'\x03\x01\x02\x03')

    def test_read_returns_bytes(self):
        self.dev.read.return_value = bytearray(b'\x00\x01')
        data = self.transport.read(0x81, 64)
        self.assertIsInstance(data, bytes)
        self.assertEqual(data, b'\x00\x01')

    def test_read_error(self):
        self.dev.read.side_effect = FakeUSBError("timeout")
        with self.assertRaises(TransferError) as ctx:
            self.transport.read(0x81, 64)
        self.assertEqual(ctx.exception.direction, 'in')

    def test_close_is_idempotent(self):
        self.transport.close()
        self.transport.close()
        self.assertFalse(self.transport.is_open)
        self.usb_mod.util.release_interface.assert_called_once_with(self.dev, 0)
        self.usb_mod.util.dispose_resources.assert_called_once_with(self.dev)

    def test_close_release_failure_still_disposes(self):
        self.usb_mod.util.release_interface.side_effect = FakeUSBError("gone")
        self.transport.close()
        self.usb_mod.util.dispose_resources.assert_called_once_with(self.dev)

    def test_close_dispose_failure(self):
        self.usb_mod.util.dispose_resources.side_effect = FakeUSBError("busy")
        with self.assertRaises(TransferError):
            self.transport.close()
        # Marked closed regardless
        self.assertFalse(self.transport.is_open)
        self.transport.close()

    def test_io_after_close(self):
        self.transport.close()
        with self.assertRaises(TransferError):
            self.transport.write(0x02, b'\x01')
        with self.assertRaises(TransferError):
            self.transport.read(0x81, 64)


class TestFindReaders(unittest.TestCase):

    def test_lists_devices(self):
        usb_mod, modules = _usb_modules()
        dev = MagicMock(bus=1, address=7, iSerialNumber=3)
        usb_mod.core.find.return_value = [dev]
        usb_mod.util.get_string.return_value = "SN123"

        with patch.dict('sys.modules', modules):
            readers = find_readers(VID, PID)

        self.assertEqual(readers, [
            {'vid': VID, 'pid': PID, 'bus': 1, 'address': 7, 'serial': 'SN123'},
        ])

    def test_serial_unreadable(self):
        usb_mod, modules = _usb_modules()
        dev = MagicMock(bus=2, address=3, iSerialNumber=3)
        usb_mod.core.find.return_value = [dev]
        usb_mod.util.get_string.side_effect = FakeUSBError("permission")

        with patch.dict('sys.modules', modules):
            readers = find_readers(VID, PID)

        self.assertEqual(readers[0]['serial'], '')


if __name__ == '__main__':
    unittest.main()

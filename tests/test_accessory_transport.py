"""Unit tests for AccessoryTransport (USB accessory role)."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from accessory_kit.errors import (
    AccessoryNotFoundError,
    PermissionRequiredError,
    TransportFailure,
)
from accessory_kit.models import DEFAULT_IDENTITY
from accessory_kit.transport.accessory import (
    ACCESSORY_GET_STRING_MANUFACTURER,
    ACCESSORY_GET_STRING_DESCRIPTION,
    ACCESSORY_GET_STRING_MODEL,
    ACCESSORY_GET_STRING_SERIAL,
    ACCESSORY_GET_STRING_URI,
    ACCESSORY_GET_STRING_VERSION,
    AccessoryTransport,
)


class TestIoctlNumbers(unittest.TestCase):

    def test_request_codes(self):
        """Values match _IOW('M', nr, char[256]) from f_accessory.h."""
        self.assertEqual(ACCESSORY_GET_STRING_MANUFACTURER, 0x41004D01)
        self.assertEqual(ACCESSORY_GET_STRING_MODEL, 0x41004D02)
        self.assertEqual(ACCESSORY_GET_STRING_VERSION, 0x41004D03)
        self.assertEqual(ACCESSORY_GET_STRING_URI, 0x41004D04)
        self.assertEqual(ACCESSORY_GET_STRING_SERIAL, 0x41004D05)
        self.assertEqual(ACCESSORY_GET_STRING_DESCRIPTION, 0x41004D06)


class TestAccessoryTransport(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir)
        self.path = os.path.join(self.tmpdir, "usb_accessory")

    def make_node(self, content=b""):
        with open(self.path, "wb") as f:
            f.write(content)

    def test_not_supervised(self):
        self.assertFalse(AccessoryTransport(self.path).supervised)

    def test_missing_node(self):
        transport = AccessoryTransport(self.path)
        with self.assertRaises(AccessoryNotFoundError):
            transport.open()
        self.assertFalse(transport.is_open())

    def test_permission_required(self):
        self.make_node()
        transport = AccessoryTransport(self.path)
        with patch('builtins.open', side_effect=PermissionError(13, "Permission denied")):
            with self.assertRaises(PermissionRequiredError):
                transport.open()
        self.assertFalse(transport.is_open())

    def test_other_os_error(self):
        self.make_node()
        transport = AccessoryTransport(self.path)
        with patch('builtins.open', side_effect=OSError(5, "I/O error")):
            with self.assertRaises(TransportFailure):
                transport.open()

    def test_read_then_end_of_file(self):
        self.make_node(b"\x01\x00\x02hi\x04")
        with AccessoryTransport(self.path) as transport:
            self.assertTrue(transport.is_open())
            self.assertEqual(transport.read(0.1), b"\x01\x00\x02hi\x04")
            with self.assertRaises(TransportFailure):
                transport.read(0.1)
        self.assertFalse(transport.is_open())

    def test_read_size_limit(self):
        self.make_node(b"abcdef")
        transport = AccessoryTransport(self.path, read_size=4)
        transport.open()
        self.assertEqual(transport.read(0.1), b"abcd")
        self.assertEqual(transport.read(0.1), b"ef")
        transport.close()

    def test_write(self):
        self.make_node()
        transport = AccessoryTransport(self.path)
        transport.open()
        self.assertEqual(transport.write(b"\x01\x00\x01x\x04"), 5)
        transport.close()
        transport.close()

        with open(self.path, "rb") as f:
            self.assertEqual(f.read(), b"\x01\x00\x01x\x04")

    @unittest.skipUnless(hasattr(os, "mkfifo"), "needs named pipes")
    def test_read_timeout_is_no_data(self):
        os.mkfifo(self.path)
        transport = AccessoryTransport(self.path)
        transport.open()
        try:
            self.assertIsNone(transport.read(0.05))
        finally:
            transport.close()

    def test_io_when_closed(self):
        transport = AccessoryTransport(self.path)
        with self.assertRaises(TransportFailure):
            transport.write(b"x")
        with self.assertRaises(TransportFailure):
            transport.read(0.1)

    @patch('accessory_kit.transport.accessory.read_accessory_string')
    def test_identity_filter_match(self, mock_read):
        self.make_node()
        values = {
            ACCESSORY_GET_STRING_MANUFACTURER: DEFAULT_IDENTITY.manufacturer,
            ACCESSORY_GET_STRING_MODEL: DEFAULT_IDENTITY.model,
        }
        mock_read.side_effect = lambda fd, request: values.get(request, DEFAULT_IDENTITY.version)

        transport = AccessoryTransport(self.path, identity_filter=DEFAULT_IDENTITY)
        transport.open()
        self.assertTrue(transport.is_open())
        self.assertEqual(mock_read.call_count, 3)
        transport.close()

    @patch('accessory_kit.transport.accessory.read_accessory_string')
    def test_identity_filter_mismatch(self, mock_read):
        self.make_node()
        mock_read.return_value = "SomeoneElse"

        transport = AccessoryTransport(self.path, identity_filter=DEFAULT_IDENTITY)
        with self.assertRaises(AccessoryNotFoundError):
            transport.open()
        self.assertFalse(transport.is_open())

    @patch('accessory_kit.transport.accessory.read_accessory_string')
    def test_identity_unreadable_is_accepted(self, mock_read):
        self.make_node()
        mock_read.side_effect = OSError(25, "Inappropriate ioctl for device")

        transport = AccessoryTransport(self.path, identity_filter=DEFAULT_IDENTITY)
        transport.open()
        self.assertTrue(transport.is_open())
        transport.close()


if __name__ == '__main__':
    unittest.main()

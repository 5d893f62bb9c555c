"""USB accessory role: the pre-negotiated accessory stream.

On this side the platform has already answered the AOA handshake. The Linux
``f_accessory`` gadget function exposes the result as a single character
device; opening it yields one duplex stream. There is nothing to discover
and no control transfer to send.

Detach is reported by the platform as an event, so this transport is not
supervised by the channel's reconnect loop.
"""
from __future__ import annotations

import logging
import os
import select
from typing import Optional

from ..errors import (
    AccessoryNotFoundError,
    PermissionRequiredError,
    TransportFailure,
)
from ..models import DeviceIdentity
from .base import Transport

logger = logging.getLogger(__name__)

ACCESSORY_DEVICE_PATH = "/dev/usb_accessory"
READ_SIZE = 16384  # bytes

ACCESSORY_STRING_SIZE = 256


def _iow(nr: int, size: int = ACCESSORY_STRING_SIZE) -> int:
    # _IOW('M', nr, char[size]) from linux/usb/f_accessory.h
    return (1 << 30) | (size << 16) | (ord("M") << 8) | nr


ACCESSORY_GET_STRING_MANUFACTURER = _iow(1)
ACCESSORY_GET_STRING_MODEL = _iow(2)
ACCESSORY_GET_STRING_VERSION = _iow(3)
ACCESSORY_GET_STRING_URI = _iow(4)
ACCESSORY_GET_STRING_SERIAL = _iow(5)
ACCESSORY_GET_STRING_DESCRIPTION = _iow(6)

# Fields the platform matches an accessory filter on
FILTER_FIELDS = {
    "manufacturer": ACCESSORY_GET_STRING_MANUFACTURER,
    "model": ACCESSORY_GET_STRING_MODEL,
    "version": ACCESSORY_GET_STRING_VERSION,
}


def read_accessory_string(fd: int, request: int) -> str:
    """Fetch one string the host sent during negotiation."""
    import fcntl

    buf = bytearray(ACCESSORY_STRING_SIZE)
    fcntl.ioctl(fd, request, buf, True)
    return bytes(buf).split(b"\0", 1)[0].decode("utf-8", errors="replace")


class AccessoryTransport(Transport):
    """Accessory side of the link over the platform's accessory stream."""

    supervised = False

    def __init__(
        self,
        path: str = ACCESSORY_DEVICE_PATH,
        *,
        identity_filter: Optional[DeviceIdentity] = None,
        read_size: int = READ_SIZE,
    ):
        """Initialize accessory transport.

        Args:
            path: Accessory device node
            identity_filter: Accept only hosts advertising this manufacturer,
                model and version
            read_size: Largest single read in bytes
        """
        self._path = path
        self._identity_filter = identity_filter
        self._read_size = read_size
        self._stream = None

    @property
    def path(self) -> str:
        return self._path

    def set_identity(self, identity: DeviceIdentity) -> None:
        self._identity_filter = identity

    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Open the accessory stream.

        Raises:
            AccessoryNotFoundError: no accessory, or one that does not match the filter
            PermissionRequiredError: the node exists but access is not granted
            TransportFailure: any other OS error
        """
        if self.is_open():
            return

        if not os.path.exists(self._path):
            raise AccessoryNotFoundError(f"No accessory at {self._path}")

        try:
            stream = open(self._path, "r+b", buffering=0)
        except PermissionError as e:
            raise PermissionRequiredError(f"Access to {self._path} not granted: {e}") from e
        except FileNotFoundError as e:
            raise AccessoryNotFoundError(f"No accessory at {self._path}") from e
        except OSError as e:
            raise TransportFailure(f"Failed to open {self._path}: {e}") from e

        if self._identity_filter is not None:
            try:
                self._check_identity(stream.fileno())
            except Exception:
                stream.close()
                raise

        self._stream = stream
        logger.info(f"Accessory stream opened at {self._path}")

    def _check_identity(self, fd: int) -> None:
        try:
            advertised = {
                name: read_accessory_string(fd, request)
                for name, request in FILTER_FIELDS.items()
            }
        except OSError as e:
            # Node does not answer the f_accessory ioctls
            logger.debug(f"Cannot read advertised identity: {e}")
            return

        expected = self._identity_filter.to_dict()
        for name, value in advertised.items():
            if value != expected[name]:
                raise AccessoryNotFoundError(
                    f"Host advertises {name}={value!r}, expected {expected[name]!r}"
                )

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.close()
        except OSError as e:
            logger.error(f"Error closing accessory stream: {e}")
        logger.info("Accessory stream closed")

    def write(self, data: bytes) -> int:
        stream = self._require_open()
        view = memoryview(bytes(data))
        total = 0
        try:
            while total < len(view):
                written = stream.write(view[total:])
                if not written:
                    raise TransportFailure(
                        f"Accessory stream accepted no data after {total}/{len(view)} bytes"
                    )
                total += written
        except OSError as e:
            raise TransportFailure(f"Accessory write failed: {e}") from e
        return total

    def read(self, timeout: float) -> Optional[bytes]:
        stream = self._require_open()
        try:
            ready, _, _ = select.select([stream], [], [], timeout)
            if not ready:
                return None
            data = stream.read(self._read_size)
        except (OSError, ValueError) as e:
            raise TransportFailure(f"Accessory read failed: {e}") from e

        if data is None:
            return None
        if not data:
            raise TransportFailure("Accessory stream reached end of file")
        return data

    def _require_open(self):
        stream = self._stream
        if stream is None:
            raise TransportFailure("Accessory stream is not open")
        return stream

"""Abstract base class for the byte-level accessory transports.

Both USB roles expose the same narrow interface so the message channel is
written once:

- open()/close() manage the device or stream handle
- write(data) pushes raw bytes, read(timeout) pulls whatever arrived
- a read timeout is the normal idle condition and returns None

Transports do not frame, queue or retry. Faults on an open handle are
raised as TransportFailure and the caller decides what to do.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..models import DeviceIdentity


class Transport(ABC):
    """Raw duplex byte pipe to the other USB role."""

    # True when the message channel should run its reconnect supervisor.
    # Transports that learn about detach from platform events set False.
    supervised: bool = True

    @abstractmethod
    def open(self) -> None:
        """Acquire the device or stream handle.

        Raises:
            DeviceNotFoundError: nothing to connect to (not fatal)
            PermissionDeniedError: access refused
            PermissionRequiredError: access needs consent first
            UnsupportedDeviceError: device cannot speak AOA
            TransportFailure: any other I/O failure
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the handle.

        Should be safe to call multiple times.
        """
        pass

    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write all bytes.

        Returns:
            Number of bytes written (len(data) on success)

        Raises:
            TransportFailure: the handle failed
        """
        pass

    @abstractmethod
    def read(self, timeout: float) -> Optional[bytes]:
        """Read one chunk.

        Args:
            timeout: Seconds to wait for data

        Returns:
            The bytes read, or None if nothing arrived in time

        Raises:
            TransportFailure: the handle failed
        """
        pass

    def set_identity(self, identity: DeviceIdentity) -> None:
        """Replace the identity used for the next open, where applicable."""
        pass

    @property
    def name(self) -> str:
        return type(self).__name__

    def __enter__(self) -> Transport:
        """Context manager support - open on enter."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager support - close on exit."""
        self.close()

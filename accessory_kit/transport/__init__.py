"""Byte-level transports for the two USB roles."""

from .base import Transport
from .host import HostState, HostTransport
from .accessory import AccessoryTransport

__all__ = ["Transport", "HostState", "HostTransport", "AccessoryTransport"]

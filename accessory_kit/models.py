"""Immutable data models shared by the transports and the message channel.

All records are frozen dataclasses so they can be passed between the
worker threads without copying or locking.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

# AOA string index order
IDENTITY_FIELDS = ("manufacturer", "model", "description", "version", "uri", "serial")


@dataclass(frozen=True)
class DeviceIdentity:
    """Accessory identity advertised to the phone during negotiation.

    The accessory-side platform only routes the device to an application
    whose filter matches these strings, so both roles must agree on them.

    Attributes:
        manufacturer: AOA string index 0
        model: AOA string index 1
        description: AOA string index 2
        version: AOA string index 3
        uri: AOA string index 4
        serial: AOA string index 5
    """
    manufacturer: str
    model: str
    description: str
    version: str
    uri: str
    serial: str

    def as_strings(self) -> Tuple[str, ...]:
        """Return the six strings in AOA index order."""
        return tuple(getattr(self, name) for name in IDENTITY_FIELDS)

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in IDENTITY_FIELDS}

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> DeviceIdentity:
        """Build an identity from a mapping holding the six field names.

        Raises:
            ValueError: if a field is missing or not a string
        """
        values = {}
        for name in IDENTITY_FIELDS:
            value = data.get(name)
            if not isinstance(value, str):
                raise ValueError(f"Device identity field '{name}' must be a string")
            values[name] = value
        return cls(**values)


DEFAULT_IDENTITY = DeviceIdentity(
    manufacturer="StiffSockets",
    model="USBDataExchange",
    description="USB Data Exchange Accessory",
    version="1.0",
    uri="https://github.com/StiffSockets",
    serial="0000000012345678",
)


class ConnectionState(Enum):
    """Lifecycle of a message channel.

    Values are the names the bridge layer uses on the wire.
    """
    DISCONNECTED = "disconnected"
    SEARCHING = "searching"
    PERMISSION_REQUESTED = "permissionRequested"
    CONNECTED = "connected"
    ERROR = "error"

    @classmethod
    def parse(cls, name: str) -> ConnectionState:
        """Map a wire name to a state; unknown names read as DISCONNECTED."""
        for state in cls:
            if state.value == name:
                return state
        return cls.DISCONNECTED


@dataclass(frozen=True)
class EndpointPair:
    """Bulk endpoints chosen during host-side discovery.

    Only valid while the device handle that produced it is open.

    Attributes:
        in_address: bEndpointAddress of the bulk IN endpoint (device -> host)
        out_address: bEndpointAddress of the bulk OUT endpoint (host -> device)
        interface: bInterfaceNumber that owns both endpoints
        max_packet_size: wMaxPacketSize of the bulk OUT endpoint
    """
    in_address: int
    out_address: int
    interface: int
    max_packet_size: int = 512


class UsbEventType(Enum):
    """Platform notifications fed into a channel."""
    DEVICE_ATTACHED = "attached"
    DEVICE_DETACHED = "detached"
    PERMISSION_GRANTED = "permissionGranted"
    PERMISSION_DENIED = "permissionDenied"


@dataclass(frozen=True)
class UsbEvent:
    """A platform USB notification.

    Attributes:
        kind: What happened
        timestamp: When the event was produced
        detail: Optional free-form description for logs
    """
    kind: UsbEventType
    timestamp: float = field(default_factory=time.time)
    detail: Optional[str] = None

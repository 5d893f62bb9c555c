"""accessory_kit - text messages over an Android Open Accessory USB link."""

from .models import (
    DEFAULT_IDENTITY,
    ConnectionState,
    DeviceIdentity,
    EndpointPair,
    UsbEvent,
    UsbEventType,
)
from .errors import (
    AccessoryKitError,
    AccessoryNotFoundError,
    ChannelDisposedError,
    DecodeError,
    DeviceNotFoundError,
    FramingError,
    PayloadTooLargeError,
    PermissionDeniedError,
    PermissionRequiredError,
    TransportFailure,
    UnsupportedDeviceError,
)
from .protocol import FrameDecoder, encode_frame, MAX_PAYLOAD_SIZE
from .transport import Transport, HostTransport, AccessoryTransport
from .channel import MessageChannel

__version__ = "1.1.31"

__all__ = [
    "DEFAULT_IDENTITY",
    "ConnectionState",
    "DeviceIdentity",
    "EndpointPair",
    "UsbEvent",
    "UsbEventType",
    "AccessoryKitError",
    "AccessoryNotFoundError",
    "ChannelDisposedError",
    "DecodeError",
    "DeviceNotFoundError",
    "FramingError",
    "PayloadTooLargeError",
    "PermissionDeniedError",
    "PermissionRequiredError",
    "TransportFailure",
    "UnsupportedDeviceError",
    "FrameDecoder",
    "encode_frame",
    "MAX_PAYLOAD_SIZE",
    "Transport",
    "HostTransport",
    "AccessoryTransport",
    "MessageChannel",
]

class AccessoryKitError(RuntimeError):
    """Base class for every error raised by accessory_kit."""
    pass


class DeviceNotFoundError(AccessoryKitError):
    """Raised when no candidate device could be found or reacquired."""
    pass


class AccessoryNotFoundError(DeviceNotFoundError):
    """Raised when the accessory node is absent or advertises another identity."""
    pass


class PermissionDeniedError(AccessoryKitError):
    """Raised when the OS or the user refused access to the device."""
    pass


class PermissionRequiredError(AccessoryKitError):
    """Raised when access needs consent that has not been given yet."""
    pass


class UnsupportedDeviceError(AccessoryKitError):
    """Raised when a device reports AOA protocol version 0."""
    def __init__(self, message, version=0):
        super().__init__(message)
        self.version = version


class PayloadTooLargeError(AccessoryKitError, ValueError):
    """Raised when a payload does not fit in one frame."""
    def __init__(self, message, size, limit):
        super().__init__(message)
        self.size = size
        self.limit = limit


class FramingError(AccessoryKitError):
    """A malformed frame was discarded by the decoder."""
    pass


class TransportFailure(AccessoryKitError):
    """I/O error on an open device or stream handle."""
    pass


class DecodeError(AccessoryKitError):
    """A complete payload was not valid UTF-8."""
    pass


class ChannelDisposedError(AccessoryKitError):
    """Raised when a disposed channel is asked to do work."""
    pass

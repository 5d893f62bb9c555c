"""Android Open Accessory mode switch.

The host reads the protocol version, sends the six identity strings by
index, then asks the phone to restart its USB stack as an accessory. The
handle used here is dead once START_ACCESSORY is accepted.
"""
from __future__ import annotations

import logging
import struct

import usb.core
import usb.util

from ..errors import TransportFailure, UnsupportedDeviceError
from ..models import DeviceIdentity
from .constants import (
    AOA_GET_PROTOCOL,
    AOA_SEND_STRING,
    AOA_START_ACCESSORY,
    CONTROL_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)

VENDOR_IN = usb.util.CTRL_TYPE_VENDOR | usb.util.CTRL_IN | usb.util.CTRL_RECIPIENT_DEVICE
VENDOR_OUT = usb.util.CTRL_TYPE_VENDOR | usb.util.CTRL_OUT | usb.util.CTRL_RECIPIENT_DEVICE


def get_protocol_version(device, timeout: int = CONTROL_TIMEOUT_MS) -> int:
    """Read the AOA protocol version (0 means AOA is not supported)."""
    buf = device.ctrl_transfer(VENDOR_IN, AOA_GET_PROTOCOL, 0, 0, 2, timeout=timeout)
    if len(buf) != 2:
        return 0
    # version comes as little endian short
    return struct.unpack("<H", bytes(buf))[0]


def send_identity(device, identity: DeviceIdentity, timeout: int = CONTROL_TIMEOUT_MS) -> None:
    """Send the identity strings, index 0..5, NUL-terminated."""
    for index, value in enumerate(identity.as_strings()):
        data = value.encode("utf-8") + b"\0"
        written = device.ctrl_transfer(
            VENDOR_OUT, AOA_SEND_STRING, 0, index, data, timeout=timeout
        )
        if written != len(data):
            raise TransportFailure(
                f"Short write for identity string {index}: {written}/{len(data)} bytes"
            )


def start_accessory(device, timeout: int = CONTROL_TIMEOUT_MS) -> None:
    device.ctrl_transfer(VENDOR_OUT, AOA_START_ACCESSORY, 0, 0, None, timeout=timeout)


def negotiate_accessory_mode(device, identity: DeviceIdentity,
                             timeout: int = CONTROL_TIMEOUT_MS) -> int:
    """Switch a phone into accessory mode.

    The device resources are released before returning, whether or not the
    switch succeeded.

    Returns:
        The protocol version the phone reported

    Raises:
        UnsupportedDeviceError: protocol version 0
        TransportFailure: a control transfer failed
    """
    try:
        version = get_protocol_version(device, timeout)
        if version == 0:
            raise UnsupportedDeviceError(
                f"Device {device.idVendor:04X}:{device.idProduct:04X} does not support AOA",
                version=version,
            )
        logger.info(f"AOA protocol version {version}")

        send_identity(device, identity, timeout)
        start_accessory(device, timeout)
        logger.info(f"Requested accessory mode as {identity.manufacturer}/{identity.model}")
        return version

    except usb.core.USBError as e:
        raise TransportFailure(f"Accessory negotiation failed: {e}") from e

    finally:
        usb.util.dispose_resources(device)

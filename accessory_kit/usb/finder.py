"""Host-side USB enumeration.

Finds phones that can be switched into accessory mode and phones that
already enumerate as accessories, and prepares their handles for raw
transfers.
"""
from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import usb.core
import usb.util

from ..errors import DeviceNotFoundError, PermissionDeniedError
from .constants import ACCESSORY_PIDS, ACCESSORY_VID, ANDROID_VENDOR_IDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """Snapshot of one enumerated USB device.

    Attributes:
        vid: USB Vendor ID
        pid: USB Product ID
        bus: Bus number, if known
        address: Device address on the bus, if known
    """
    vid: int
    pid: int
    bus: Optional[int] = None
    address: Optional[int] = None

    @property
    def is_accessory(self) -> bool:
        return is_accessory_ids(self.vid, self.pid)

    @classmethod
    def from_device(cls, device) -> DeviceInfo:
        return cls(
            vid=device.idVendor,
            pid=device.idProduct,
            bus=getattr(device, "bus", None),
            address=getattr(device, "address", None),
        )

    def __str__(self) -> str:
        return f"{self.vid:04X}:{self.pid:04X} (bus {self.bus}, address {self.address})"


def is_accessory_ids(vid: int, pid: int) -> bool:
    """True if the IDs are those of a phone already in accessory mode."""
    return vid == ACCESSORY_VID and pid in ACCESSORY_PIDS


def is_permission_error(error: Exception) -> bool:
    return getattr(error, "errno", None) in (errno.EACCES, errno.EPERM)


def find_candidates(
    vendor_ids: Iterable[int] = ANDROID_VENDOR_IDS,
    *,
    matcher: Optional[Callable[[object], bool]] = None,
) -> List[object]:
    """List attached devices whose vendor ID is in vendor_ids.

    Args:
        vendor_ids: Vendor IDs to accept
        matcher: Extra predicate on the pyusb device, AND-combined

    Returns:
        pyusb devices in enumeration order (may be empty)
    """
    wanted = frozenset(vendor_ids)

    def _match(device) -> bool:
        if device.idVendor not in wanted:
            return False
        return matcher(device) if matcher is not None else True

    return list(usb.core.find(find_all=True, custom_match=_match) or [])


def find_accessory(product_ids: Iterable[int] = ACCESSORY_PIDS):
    """Return the first device enumerated in accessory mode, or None."""
    wanted = frozenset(product_ids)
    return usb.core.find(
        custom_match=lambda d: d.idVendor == ACCESSORY_VID and d.idProduct in wanted
    )


def detach_kernel_drivers(device, interfaces: Optional[Iterable[int]] = None) -> None:
    """Release kernel driver claims so raw transfers are possible.

    Raises:
        usb.core.USBError: if the device cannot be opened
    """
    if interfaces is None:
        interfaces = interface_numbers(device)

    for number in interfaces:
        try:
            if device.is_kernel_driver_active(number):
                device.detach_kernel_driver(number)
                logger.debug(f"Detached kernel driver from interface {number}")
        except NotImplementedError:
            # Backend (e.g. WinUSB) has no kernel driver notion
            return


def interface_numbers(device) -> List[int]:
    """Interface numbers of the active (or first) configuration."""
    try:
        config = device.get_active_configuration()
    except usb.core.USBError:
        config = None
    if config is None:
        config = next(iter(device), None)
    if config is None:
        return []
    return sorted({intf.bInterfaceNumber for intf in config})


def open_first(devices: Iterable[object]):
    """Open the first device that allows raw access.

    Returns:
        The prepared pyusb device

    Raises:
        DeviceNotFoundError: no device could be opened
        PermissionDeniedError: every failure was an access refusal
    """
    denied = 0
    tried = 0
    for device in devices:
        tried += 1
        info = DeviceInfo.from_device(device)
        try:
            detach_kernel_drivers(device)
        except usb.core.USBError as e:
            if is_permission_error(e):
                denied += 1
                logger.warning(f"Access to {info} denied: {e}")
            else:
                logger.warning(f"Could not open {info}: {e}")
            usb.util.dispose_resources(device)
            continue
        logger.info(f"Opened USB device {info}")
        return device

    if tried and denied == tried:
        raise PermissionDeniedError(f"Access denied to {denied} candidate device(s)")
    raise DeviceNotFoundError("No openable Android device found")

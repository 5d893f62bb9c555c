"""Host-side USB plumbing: enumeration and the AOA mode switch."""

from .constants import (
    ACCESSORY_PIDS,
    ACCESSORY_VID,
    ANDROID_VENDOR_IDS,
    AOA_GET_PROTOCOL,
    AOA_SEND_STRING,
    AOA_START_ACCESSORY,
)
from .finder import (
    DeviceInfo,
    detach_kernel_drivers,
    find_accessory,
    find_candidates,
    is_accessory_ids,
    open_first,
)
from .negotiation import negotiate_accessory_mode

__all__ = [
    "ACCESSORY_PIDS",
    "ACCESSORY_VID",
    "ANDROID_VENDOR_IDS",
    "AOA_GET_PROTOCOL",
    "AOA_SEND_STRING",
    "AOA_START_ACCESSORY",
    "DeviceInfo",
    "detach_kernel_drivers",
    "find_accessory",
    "find_candidates",
    "is_accessory_ids",
    "open_first",
    "negotiate_accessory_mode",
]

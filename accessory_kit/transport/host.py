"""USB host role: switch a phone into accessory mode and talk bulk to it.

Sequence driven by open():

    IDLE -> DISCOVERING -> NEGOTIATING -> AWAITING_REENUMERATION
         -> DISCOVERING_ENDPOINTS -> READY

A phone that already enumerates as an accessory skips straight to
AWAITING_REENUMERATION. Any failure lands in IDLE (nothing found) or
ERROR (everything else) and is raised to the caller.

Steady-state I/O is a thin wrapper over pyusb bulk transfers. A read
timeout is not an error. Any other USBError marks the transport failed and
raises TransportFailure; there is no internal retry.
"""
from __future__ import annotations

import errno
import logging
import threading
import time
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

import usb.core
import usb.util

from ..errors import (
    AccessoryKitError,
    DeviceNotFoundError,
    PermissionDeniedError,
    TransportFailure,
)
from ..models import DEFAULT_IDENTITY, DeviceIdentity, EndpointPair
from ..usb.constants import ACCESSORY_PIDS, ANDROID_VENDOR_IDS
from ..usb.finder import (
    DeviceInfo,
    detach_kernel_drivers,
    find_accessory,
    find_candidates,
    is_permission_error,
    open_first,
)
from ..usb.negotiation import negotiate_accessory_mode
from .base import Transport

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096  # bytes per bulk transfer
WRITE_TIMEOUT = 1.0  # seconds
REACQUIRE_ATTEMPTS = 10
REACQUIRE_DELAY = 0.5  # seconds


class HostState(Enum):
    """Progress of the host-side connection sequence."""
    IDLE = "idle"
    DISCOVERING = "discovering"
    NEGOTIATING = "negotiating"
    AWAITING_REENUMERATION = "awaiting_reenumeration"
    DISCOVERING_ENDPOINTS = "discovering_endpoints"
    READY = "ready"
    ERROR = "error"


def find_bulk_endpoints(device) -> Optional[EndpointPair]:
    """Walk every configuration, interface and endpoint for a bulk IN/OUT pair.

    Each candidate interface is claimed while it is inspected and released
    again unless it yields both directions.

    Returns:
        The endpoint pair (its interface stays claimed), or None
    """
    for config in device:
        for intf in config:
            number = intf.bInterfaceNumber
            try:
                usb.util.claim_interface(device, number)
            except usb.core.USBError as e:
                logger.debug(f"Cannot claim interface {number}: {e}")
                continue

            in_address = None
            out_endpoint = None
            for endpoint in intf:
                if usb.util.endpoint_type(endpoint.bmAttributes) != usb.util.ENDPOINT_TYPE_BULK:
                    continue
                direction = usb.util.endpoint_direction(endpoint.bEndpointAddress)
                if direction == usb.util.ENDPOINT_IN and in_address is None:
                    in_address = endpoint.bEndpointAddress
                elif direction == usb.util.ENDPOINT_OUT and out_endpoint is None:
                    out_endpoint = endpoint

            if in_address is not None and out_endpoint is not None:
                if intf.bAlternateSetting != 0:
                    try:
                        intf.set_altsetting()
                    except usb.core.USBError:
                        _release_interface(device, number)
                        raise
                return EndpointPair(
                    in_address=in_address,
                    out_address=out_endpoint.bEndpointAddress,
                    interface=number,
                    max_packet_size=out_endpoint.wMaxPacketSize,
                )

            _release_interface(device, number)
    return None


def _release_interface(device, number: int) -> None:
    try:
        usb.util.release_interface(device, number)
    except usb.core.USBError as e:
        logger.debug(f"Cannot release interface {number}: {e}")


class HostTransport(Transport):
    """Host side of the accessory link, built on pyusb.

    Example:
        >>> transport = HostTransport(identity)
        >>> transport.open()
        >>> transport.write(b"\\x01\\x00\\x02hi\\x04")
        >>> transport.read(timeout=0.1)
        >>> transport.close()
    """

    supervised = True

    def __init__(
        self,
        identity: Optional[DeviceIdentity] = None,
        *,
        vendor_ids: Iterable[int] = ANDROID_VENDOR_IDS,
        product_ids: Iterable[int] = ACCESSORY_PIDS,
        chunk_size: int = CHUNK_SIZE,
        write_timeout: float = WRITE_TIMEOUT,
        reacquire_attempts: int = REACQUIRE_ATTEMPTS,
        reacquire_delay: float = REACQUIRE_DELAY,
    ):
        """Initialize host transport.

        Args:
            identity: Strings sent during negotiation (default: DEFAULT_IDENTITY)
            vendor_ids: Vendors considered for the mode switch
            product_ids: Accessory-mode product IDs to reacquire
            chunk_size: Largest single bulk transfer in bytes
            write_timeout: Bulk OUT timeout in seconds
            reacquire_attempts: Polls for the re-enumerated accessory
            reacquire_delay: Seconds between polls
        """
        self._identity = identity or DEFAULT_IDENTITY
        self._vendor_ids = frozenset(vendor_ids)
        self._product_ids = tuple(product_ids)
        self._chunk_size = chunk_size
        self._write_timeout = write_timeout
        self._reacquire_attempts = reacquire_attempts
        self._reacquire_delay = reacquire_delay

        self._device = None
        self._endpoints: Optional[EndpointPair] = None
        self._protocol_version: Optional[int] = None

        self._state = HostState.IDLE
        self._state_callbacks: List[Callable[[HostState], None]] = []
        self._callback_lock = threading.Lock()

    # --- State ---

    @property
    def state(self) -> HostState:
        return self._state

    @property
    def endpoints(self) -> Optional[EndpointPair]:
        return self._endpoints

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def protocol_version(self) -> Optional[int]:
        """AOA version reported by the last negotiation, if any."""
        return self._protocol_version

    def subscribe_state(self, callback: Callable[[HostState], None]) -> Callable[[], None]:
        """Subscribe to state changes; the current state is sent immediately.

        Returns:
            Unsubscribe function
        """
        with self._callback_lock:
            self._state_callbacks.append(callback)

        try:
            callback(self._state)
        except Exception as e:
            logger.error(f"Error in state callback: {e}")

        def unsubscribe():
            with self._callback_lock:
                if callback in self._state_callbacks:
                    self._state_callbacks.remove(callback)

        return unsubscribe

    def set_identity(self, identity: DeviceIdentity) -> None:
        self._identity = identity

    def is_open(self) -> bool:
        return self._device is not None and self._endpoints is not None

    # --- Connection sequence ---

    def open(self) -> None:
        """Find, negotiate and prepare the accessory.

        Raises:
            DeviceNotFoundError: no phone, or it never came back as an accessory
            PermissionDeniedError: the OS refused access
            UnsupportedDeviceError: the phone reported AOA version 0
            TransportFailure: a USB transfer failed
        """
        if self.is_open():
            return

        try:
            if find_accessory(self._product_ids) is None:
                candidate = self.discover()
                self.negotiate_accessory_mode(candidate)
            else:
                logger.info("Device already in accessory mode, skipping negotiation")

            device, endpoints = self.reacquire_accessory_device()

        except DeviceNotFoundError:
            self._set_state(HostState.IDLE)
            raise
        except AccessoryKitError:
            self._set_state(HostState.ERROR)
            raise
        except usb.core.USBError as e:
            self._set_state(HostState.ERROR)
            raise TransportFailure(f"USB error while connecting: {e}") from e

        self._device = device
        self._endpoints = endpoints
        self._set_state(HostState.READY)
        logger.info(
            f"Accessory ready: IN=0x{endpoints.in_address:02X} "
            f"OUT=0x{endpoints.out_address:02X} interface {endpoints.interface}"
        )

    def discover(self):
        """Return the first openable phone from a known vendor.

        Raises:
            DeviceNotFoundError: nothing attached or nothing openable
            PermissionDeniedError: every candidate refused access
        """
        self._set_state(HostState.DISCOVERING)
        candidates = find_candidates(self._vendor_ids)
        if not candidates:
            raise DeviceNotFoundError("No Android device attached")
        logger.debug(f"Found {len(candidates)} candidate device(s)")
        return open_first(candidates)

    def negotiate_accessory_mode(self, device, identity: Optional[DeviceIdentity] = None) -> int:
        """Send the AOA control sequence; the handle is closed afterwards."""
        self._set_state(HostState.NEGOTIATING)
        version = negotiate_accessory_mode(device, identity or self._identity)
        self._protocol_version = version
        return version

    def reacquire_accessory_device(self) -> Tuple[object, EndpointPair]:
        """Poll for the accessory-mode device and discover its bulk endpoints.

        Raises:
            DeviceNotFoundError: attempts exhausted or no bulk endpoint pair
            PermissionDeniedError: the accessory could not be opened
        """
        self._set_state(HostState.AWAITING_REENUMERATION)

        for attempt in range(1, self._reacquire_attempts + 1):
            device = find_accessory(self._product_ids)
            if device is not None:
                logger.info(f"Accessory found: {DeviceInfo.from_device(device)}")
                self._set_state(HostState.DISCOVERING_ENDPOINTS)
                return device, self._prepare_accessory(device)

            logger.debug(f"Accessory not present (attempt {attempt}/{self._reacquire_attempts})")
            if attempt < self._reacquire_attempts:
                time.sleep(self._reacquire_delay)

        raise DeviceNotFoundError(
            f"Accessory did not appear after {self._reacquire_attempts} attempts"
        )

    def _prepare_accessory(self, device) -> EndpointPair:
        try:
            detach_kernel_drivers(device)
        except usb.core.USBError as e:
            if is_permission_error(e):
                usb.util.dispose_resources(device)
                raise PermissionDeniedError(f"Access to accessory denied: {e}") from e
            logger.debug(f"Kernel driver detach skipped: {e}")

        try:
            device.set_configuration()
        except usb.core.USBError as e:
            if is_permission_error(e):
                usb.util.dispose_resources(device)
                raise PermissionDeniedError(f"Access to accessory denied: {e}") from e
            # Already configured by the OS
            logger.debug(f"set_configuration failed: {e}")

        try:
            endpoints = find_bulk_endpoints(device)
        except usb.core.USBError:
            usb.util.dispose_resources(device)
            raise
        if endpoints is None:
            usb.util.dispose_resources(device)
            raise DeviceNotFoundError("Accessory exposes no bulk IN/OUT endpoint pair")
        return endpoints

    def close(self) -> None:
        """Release the interface and all pyusb resources."""
        device = self._device
        endpoints = self._endpoints
        self._device = None
        self._endpoints = None

        if device is not None:
            if endpoints is not None:
                try:
                    usb.util.release_interface(device, endpoints.interface)
                except usb.core.USBError as e:
                    logger.debug(f"Error releasing interface: {e}")
            try:
                usb.util.dispose_resources(device)
            except usb.core.USBError as e:
                logger.error(f"Error disposing USB device: {e}")
            logger.info("Accessory closed")

        self._set_state(HostState.IDLE)

    # --- Data path ---

    def write(self, data: bytes) -> int:
        device, endpoints = self._require_open()
        data = bytes(data)
        timeout_ms = max(1, int(self._write_timeout * 1000))

        total = 0
        last = 0
        try:
            while total < len(data):
                chunk = data[total:total + self._chunk_size]
                written = device.write(endpoints.out_address, chunk, timeout=timeout_ms)
                if written <= 0:
                    self._fail("Bulk OUT transfer wrote no data")
                total += written
                last = written

            # A transfer ending on a packet boundary needs a ZLP to complete the read
            if last and last % endpoints.max_packet_size == 0:
                device.write(endpoints.out_address, b"", timeout=timeout_ms)
        except usb.core.USBError as e:
            self._fail(f"Bulk write failed after {total}/{len(data)} bytes: {e}", e)

        return total

    def read(self, timeout: float) -> Optional[bytes]:
        device, endpoints = self._require_open()
        timeout_ms = max(1, int(timeout * 1000))

        try:
            data = device.read(endpoints.in_address, self._chunk_size, timeout=timeout_ms)
        except usb.core.USBTimeoutError:
            return None
        except usb.core.USBError as e:
            if e.errno == errno.ETIMEDOUT:
                return None
            self._fail(f"Bulk read failed: {e}", e)

        if not data:
            return None
        return bytes(data)

    # Internal methods

    def _require_open(self):
        device = self._device
        endpoints = self._endpoints
        if device is None or endpoints is None:
            raise TransportFailure("Accessory is not open")
        return device, endpoints

    def _fail(self, message: str, cause: Optional[Exception] = None) -> None:
        logger.warning(message)
        self._set_state(HostState.ERROR)
        raise TransportFailure(message) from cause

    def _set_state(self, state: HostState) -> None:
        if state is self._state:
            return
        logger.debug(f"Host transport {self._state.value} -> {state.value}")
        self._state = state

        with self._callback_lock:
            callbacks = list(self._state_callbacks)

        for callback in callbacks:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in state callback: {e}")

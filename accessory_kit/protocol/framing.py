"""Length-prefixed framing shared by the host and accessory roles.

Wire format:

    SOH (0x01) | length (u16, big-endian) | payload (length bytes) | EOT (0x04)

USB bulk transfers cut the byte stream at arbitrary points, so the decoder
is a resumable state machine fed one byte at a time. One decoder instance
belongs to one transport and keeps its state between reads.
"""
from __future__ import annotations

import logging
import struct
from enum import Enum
from typing import Callable, List, Optional

from ..errors import FramingError, PayloadTooLargeError

logger = logging.getLogger(__name__)

SOH = 0x01
EOT = 0x04

HEADER_SIZE = 3  # SOH + u16 length
TRAILER_SIZE = 1  # EOT

# Largest value of the u16 length field. Both roles use this one limit.
MAX_PAYLOAD_SIZE = 0xFFFF

_LENGTH = struct.Struct(">H")


def encode_frame(payload: bytes, max_payload: int = MAX_PAYLOAD_SIZE) -> bytes:
    """Wrap a payload in a single frame.

    Args:
        payload: Message bytes, 1..max_payload long
        max_payload: Upper bound, never above MAX_PAYLOAD_SIZE

    Returns:
        Frame bytes ready for a bulk write

    Raises:
        PayloadTooLargeError: payload longer than max_payload
        ValueError: empty payload
    """
    limit = min(max_payload, MAX_PAYLOAD_SIZE)
    size = len(payload)
    if size > limit:
        raise PayloadTooLargeError(
            f"Payload of {size} bytes exceeds frame limit of {limit} bytes",
            size=size,
            limit=limit,
        )
    if size == 0:
        raise ValueError("Cannot frame an empty payload")

    return bytes((SOH,)) + _LENGTH.pack(size) + bytes(payload) + bytes((EOT,))


class DecoderState(Enum):
    """Position of the decoder inside a frame."""
    WAIT_START = "wait_start"
    READ_LEN_HI = "read_len_hi"
    READ_LEN_LO = "read_len_lo"
    READ_DATA = "read_data"
    WAIT_END = "wait_end"


class FrameDecoder:
    """Incremental frame decoder.

    Bytes outside a frame are skipped until the next SOH. A zero length,
    a length above the limit, or anything but EOT after the payload drops
    the frame and returns the decoder to WAIT_START. There is no attempt to
    resynchronise inside a payload.

    Example:
        >>> decoder = FrameDecoder()
        >>> decoder.feed(b"\\x01\\x00\\x02h")
        []
        >>> decoder.feed(b"i\\x04")
        [b'hi']
    """

    def __init__(
        self,
        max_payload: int = MAX_PAYLOAD_SIZE,
        on_error: Optional[Callable[[FramingError], None]] = None,
    ):
        """Initialize decoder.

        Args:
            max_payload: Largest accepted declared length
            on_error: Called with a FramingError for every discarded frame
        """
        if max_payload < 1:
            raise ValueError("max_payload must be at least 1")
        self._max_payload = min(max_payload, MAX_PAYLOAD_SIZE)
        self._on_error = on_error

        self._state = DecoderState.WAIT_START
        self._expected = 0
        self._data = bytearray()
        self.framing_errors = 0

    @property
    def state(self) -> DecoderState:
        return self._state

    @property
    def max_payload(self) -> int:
        return self._max_payload

    def reset(self) -> None:
        """Drop any partial frame."""
        self._state = DecoderState.WAIT_START
        self._expected = 0
        self._data = bytearray()

    def feed(self, data: bytes) -> List[bytes]:
        """Consume a chunk and return every payload it completes, in order."""
        messages = []
        for byte in data:
            payload = self.feed_byte(byte)
            if payload is not None:
                messages.append(payload)
        return messages

    def feed_byte(self, byte: int) -> Optional[bytes]:
        """Advance the state machine by one byte.

        Returns:
            The payload if this byte completed a frame, None otherwise
        """
        state = self._state

        if state is DecoderState.WAIT_START:
            if byte == SOH:
                self._expected = 0
                self._state = DecoderState.READ_LEN_HI
            return None

        if state is DecoderState.READ_LEN_HI:
            self._expected = byte << 8
            self._state = DecoderState.READ_LEN_LO
            return None

        if state is DecoderState.READ_LEN_LO:
            self._expected |= byte
            if self._expected == 0:
                self._discard("Zero-length frame")
            elif self._expected > self._max_payload:
                self._discard(
                    f"Declared length {self._expected} exceeds limit {self._max_payload}"
                )
            else:
                self._data = bytearray()
                self._state = DecoderState.READ_DATA
            return None

        if state is DecoderState.READ_DATA:
            self._data.append(byte)
            if len(self._data) == self._expected:
                self._state = DecoderState.WAIT_END
            return None

        # WAIT_END
        if byte != EOT:
            self._discard(f"Expected EOT, got 0x{byte:02X}")
            return None

        payload = bytes(self._data)
        self.reset()
        return payload

    def _discard(self, reason: str) -> None:
        self.framing_errors += 1
        logger.warning(f"Framing error, frame discarded: {reason}")
        self.reset()
        if self._on_error is not None:
            try:
                self._on_error(FramingError(reason))
            except Exception as e:
                logger.error(f"Error in framing error callback: {e}")

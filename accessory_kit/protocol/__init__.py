"""Wire framing for messages exchanged over the accessory bulk pipe."""

from .framing import (
    DecoderState,
    FrameDecoder,
    encode_frame,
    EOT,
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    SOH,
    TRAILER_SIZE,
)

__all__ = [
    "DecoderState",
    "FrameDecoder",
    "encode_frame",
    "EOT",
    "HEADER_SIZE",
    "MAX_PAYLOAD_SIZE",
    "SOH",
    "TRAILER_SIZE",
]

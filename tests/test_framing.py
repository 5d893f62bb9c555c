"""Unit tests for the frame codec."""

import unittest
from unittest.mock import MagicMock

from accessory_kit.errors import FramingError, PayloadTooLargeError
from accessory_kit.protocol.framing import (
    DecoderState,
    EOT,
    FrameDecoder,
    MAX_PAYLOAD_SIZE,
    SOH,
    encode_frame,
)


def feed_bytewise(decoder, data):
    messages = []
    for byte in data:
        payload = decoder.feed_byte(byte)
        if payload is not None:
            messages.append(payload)
    return messages


class TestEncodeFrame(unittest.TestCase):
    """Tests for encode_frame."""

    def test_layout(self):
        """Test SOH, big-endian length, payload, EOT."""
        frame = encode_frame(b"abc")
        self.assertEqual(frame, b"\x01\x00\x03abc\x04")

    def test_length_is_big_endian(self):
        frame = encode_frame(b"x" * 0x0102)
        self.assertEqual(frame[0], SOH)
        self.assertEqual(frame[1:3], b"\x01\x02")
        self.assertEqual(frame[-1], EOT)
        self.assertEqual(len(frame), 0x0102 + 4)

    def test_max_size_accepted(self):
        frame = encode_frame(b"a" * 65535)
        self.assertEqual(frame[1:3], b"\xff\xff")

    def test_oversize_rejected(self):
        with self.assertRaises(PayloadTooLargeError) as ctx:
            encode_frame(b"a" * 65536)
        self.assertEqual(ctx.exception.size, 65536)
        self.assertEqual(ctx.exception.limit, MAX_PAYLOAD_SIZE)

    def test_custom_limit(self):
        with self.assertRaises(PayloadTooLargeError):
            encode_frame(b"abcd", max_payload=3)

    def test_limit_never_above_u16(self):
        with self.assertRaises(PayloadTooLargeError):
            encode_frame(b"a" * 65536, max_payload=100000)

    def test_empty_rejected(self):
        with self.assertRaises(ValueError):
            encode_frame(b"")


class TestFrameDecoder(unittest.TestCase):
    """Tests for the decoder state machine."""

    def test_single_chunk(self):
        decoder = FrameDecoder()
        self.assertEqual(decoder.feed(encode_frame(b"hello")), [b"hello"])
        self.assertEqual(decoder.state, DecoderState.WAIT_START)

    def test_round_trip_bytewise_and_chunk(self):
        for payload in (b"a", "héllo wörld".encode("utf-8"), bytes(range(256)) * 3, b"z" * 65535):
            frame = encode_frame(payload)
            self.assertEqual(FrameDecoder().feed(frame), [payload])
            self.assertEqual(feed_bytewise(FrameDecoder(), frame), [payload])

    def test_split_at_every_boundary(self):
        payload = b"split me \x01\x04 anywhere"
        frame = encode_frame(payload)
        for cut in range(len(frame) + 1):
            decoder = FrameDecoder()
            messages = decoder.feed(frame[:cut]) + decoder.feed(frame[cut:])
            self.assertEqual(messages, [payload], f"cut at {cut}")

    def test_multiple_frames_in_one_chunk(self):
        data = encode_frame(b"one") + encode_frame(b"two") + encode_frame(b"three")
        self.assertEqual(FrameDecoder().feed(data), [b"one", b"two", b"three"])

    def test_noise_before_start_skipped(self):
        data = b"\xff\x00garbage" + encode_frame(b"ok")
        self.assertEqual(FrameDecoder().feed(data), [b"ok"])

    def test_wrong_terminator_then_valid_frame(self):
        """A bad EOT drops the frame; the following frame still decodes."""
        decoder = FrameDecoder()
        data = bytes([SOH, 0x00, 0x03]) + b"abc" + b"\xff" + encode_frame(b"second")
        self.assertEqual(decoder.feed(data), [b"second"])
        self.assertEqual(decoder.framing_errors, 1)

    def test_zero_length_discarded(self):
        decoder = FrameDecoder()
        self.assertEqual(decoder.feed(b"\x01\x00\x00"), [])
        self.assertEqual(decoder.state, DecoderState.WAIT_START)
        self.assertEqual(decoder.framing_errors, 1)
        self.assertEqual(decoder.feed(encode_frame(b"after")), [b"after"])

    def test_declared_length_over_limit_discarded(self):
        decoder = FrameDecoder(max_payload=16)
        self.assertEqual(decoder.feed(b"\x01\x00\x11"), [])
        self.assertEqual(decoder.state, DecoderState.WAIT_START)
        self.assertEqual(decoder.framing_errors, 1)
        self.assertEqual(decoder.feed(encode_frame(b"x" * 16)), [b"x" * 16])

    def test_states_progress(self):
        decoder = FrameDecoder()
        decoder.feed_byte(SOH)
        self.assertEqual(decoder.state, DecoderState.READ_LEN_HI)
        decoder.feed_byte(0x00)
        self.assertEqual(decoder.state, DecoderState.READ_LEN_LO)
        decoder.feed_byte(0x01)
        self.assertEqual(decoder.state, DecoderState.READ_DATA)
        decoder.feed_byte(ord("a"))
        self.assertEqual(decoder.state, DecoderState.WAIT_END)
        self.assertEqual(decoder.feed_byte(EOT), b"a")
        self.assertEqual(decoder.state, DecoderState.WAIT_START)

    def test_no_resync_inside_payload(self):
        """An SOH inside the payload is data, not a new frame."""
        payload = b"\x01\x00\x01z"
        self.assertEqual(FrameDecoder().feed(encode_frame(payload)), [payload])

    def test_reset_drops_partial_frame(self):
        decoder = FrameDecoder()
        decoder.feed(b"\x01\x00\x05ab")
        decoder.reset()
        self.assertEqual(decoder.state, DecoderState.WAIT_START)
        self.assertEqual(decoder.feed(encode_frame(b"new")), [b"new"])

    def test_error_callback(self):
        callback = MagicMock()
        decoder = FrameDecoder(on_error=callback)
        decoder.feed(b"\x01\x00\x01a\x00")
        callback.assert_called_once()
        self.assertIsInstance(callback.call_args[0][0], FramingError)

    def test_error_callback_exception_contained(self):
        decoder = FrameDecoder(on_error=MagicMock(side_effect=RuntimeError("boom")))
        self.assertEqual(decoder.feed(b"\x01\x00\x00" + encode_frame(b"ok")), [b"ok"])

    def test_invalid_max_payload(self):
        with self.assertRaises(ValueError):
            FrameDecoder(max_payload=0)


if __name__ == '__main__':
    unittest.main()

"""Test serial and BLE message framing."""

from __future__ import annotations

import pytest

from x1link.exceptions import ProtocolError
from x1link.models.messages import TextMessage, VariableUpdate
from x1link.protocol.framing import (
    SerialFrameDecoder,
    decode_ble_notification,
    encode_ble_command,
    encode_serial_command,
)

# Version echo, a text line, then a mode update
STREAM = b"s\x07\n" + b"Hello X1\r\n" + b"m\x03\n"
EXPECTED = [
    VariableUpdate(variable=ord("s"), value=7),
    TextMessage("Hello X1\r\n"),
    VariableUpdate(variable=ord("m"), value=3),
]


class TestEncoding:
    """Test outbound command encoding."""

    def test_serial_command_has_terminator(self):
        """Serial commands are [command, argument, 0x0A]."""
        assert encode_serial_command(ord("G"), ord("s")) == b"Gs\n"

    def test_ble_command_has_no_terminator(self):
        """BLE commands are the bare two bytes."""
        assert encode_ble_command(ord("E"), ord("+")) == b"E+"

    def test_argument_out_of_range(self):
        """Arguments must fit in one byte."""
        with pytest.raises(ValueError, match="argument 256"):
            encode_serial_command(ord("T"), 256)


class TestSerialFrameDecoder:
    """Test stream reassembly."""

    def test_whole_stream_in_one_read(self):
        """Several frames in one read are all returned in order."""
        decoder = SerialFrameDecoder()
        assert decoder.feed(STREAM) == EXPECTED
        assert decoder.pending == 0

    @pytest.mark.parametrize("split", range(1, len(STREAM)))
    def test_split_at_every_boundary(self, split):
        """Chunk boundaries never change the decoded messages."""
        decoder = SerialFrameDecoder()
        messages = decoder.feed(STREAM[:split]) + decoder.feed(STREAM[split:])
        assert messages == EXPECTED

    def test_byte_at_a_time(self):
        """Frames arriving one byte per read are reassembled."""
        decoder = SerialFrameDecoder()
        messages = []
        for byte in STREAM:
            messages.extend(decoder.feed(bytes([byte])))
        assert messages == EXPECTED

    def test_newline_value_is_binary(self):
        """A value byte of 0x0A does not end the frame early."""
        decoder = SerialFrameDecoder()
        assert decoder.feed(b"f\n\n") == [VariableUpdate(variable=ord("f"), value=0x0A)]

    def test_newline_variable_is_binary(self):
        """A variable byte of 0x0A does not end the frame early."""
        decoder = SerialFrameDecoder()
        assert decoder.feed(b"\n\x05\n") == [VariableUpdate(variable=0x0A, value=5)]

    def test_partial_frame_is_buffered(self):
        """Incomplete frames stay buffered until the terminator arrives."""
        decoder = SerialFrameDecoder()
        assert decoder.feed(b"boot") == []
        assert decoder.pending == 4

        decoder.reset()
        assert decoder.pending == 0
        assert decoder.feed(b"c\x03\n") == [VariableUpdate(variable=ord("c"), value=3)]

    def test_invalid_utf8_text_is_replaced(self):
        """Undecodable text bytes do not break the stream."""
        decoder = SerialFrameDecoder()
        messages = decoder.feed(b"ab\xffcd\n")
        assert len(messages) == 1
        assert isinstance(messages[0], TextMessage)
        assert messages[0].text.startswith("ab")


class TestBleNotification:
    """Test BLE notification decoding."""

    def test_two_bytes_is_variable_update(self):
        assert decode_ble_notification(b"l\x7b") == VariableUpdate(variable=ord("l"), value=0x7B)

    def test_other_lengths_are_text(self):
        assert decode_ble_notification(b"X1 ready") == TextMessage("X1 ready")
        assert decode_ble_notification(b"!") == TextMessage("!")

    def test_empty_notification_rejected(self):
        with pytest.raises(ProtocolError):
            decode_ble_notification(b"")

"""Message framing for the serial and BLE transports."""

from __future__ import annotations

from ..exceptions import ProtocolError
from ..models.messages import Message, TextMessage, VariableUpdate
from .commands import BLE_FRAME_SIZE, FRAME_TERMINATOR, SERIAL_FRAME_SIZE, build_command


def encode_serial_command(command: int, argument: int) -> bytes:
    """Encode a command for the serial link.

    Format:
        [command:1][argument:1][0x0A]
    """
    return build_command(command, argument) + bytes([FRAME_TERMINATOR])


def encode_ble_command(command: int, argument: int) -> bytes:
    """Encode a command for the BLE serial-data characteristic.

    BLE preserves packet boundaries, so no terminator is added.
    """
    return build_command(command, argument)


def _decode_text(frame: bytes) -> TextMessage:
    return TextMessage(frame.decode("utf-8", errors="replace"))


class SerialFrameDecoder:
    """Splits a raw serial byte stream into protocol messages.

    Binary frames are always exactly 3 bytes: [variable][value][0x0A].
    Anything longer, up to and including the next 0x0A, is a text frame.
    The terminator search starts at index 2 so that a variable or value
    byte equal to 0x0A never ends a binary frame early.

    A single feed() may contain several frames, and a frame may span
    several feed() calls.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[Message]:
        """Add received bytes and return every complete message.

        Args:
            data: Bytes read from the serial port

        Returns:
            Messages completed by this data, in wire order
        """
        self._buffer.extend(data)
        messages: list[Message] = []

        while len(self._buffer) >= SERIAL_FRAME_SIZE:
            frame_end = self._buffer.find(FRAME_TERMINATOR, SERIAL_FRAME_SIZE - 1)
            if frame_end == -1:
                break

            frame = bytes(self._buffer[:frame_end + 1])
            del self._buffer[:frame_end + 1]

            if len(frame) == SERIAL_FRAME_SIZE:
                messages.append(VariableUpdate(variable=frame[0], value=frame[1]))
            else:
                messages.append(_decode_text(frame))

        return messages

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a complete frame."""
        return len(self._buffer)

    def reset(self) -> None:
        """Discard any partially received frame."""
        self._buffer.clear()


def decode_ble_notification(payload: bytes) -> Message:
    """Decode one serial-data characteristic notification.

    Each notification carries exactly one message: 2 bytes are a variable
    update, anything else is UTF-8 text.

    Raises:
        ProtocolError: If the notification is empty
    """
    if not payload:
        raise ProtocolError("Empty serial data notification")

    if len(payload) == BLE_FRAME_SIZE:
        return VariableUpdate(variable=payload[0], value=payload[1])

    return _decode_text(bytes(payload))

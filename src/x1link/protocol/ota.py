"""OTA firmware update messages for the bridge control characteristic."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from ..exceptions import InvalidResponseError

# 3 bytes ATT header per GATT write, 1 byte for the OTA opcode
GATT_WRITE_OVERHEAD = 3
OTA_OPCODE_SIZE = 1

OTA_IMAGE_FORMAT = 1
OTA_MAX_UNACKNOWLEDGED_WRITES = 12
OTA_PROGRESS_TERMINAL = 0xFFFFFFFF
OTA_PROGRESS_SIZE = 5


class OtaOpcode(IntEnum):
    """Opcodes written to the OTA control characteristic."""

    INIT = 0x01
    CHUNK = 0x02
    FINISH = 0x03


@dataclass(frozen=True)
class OtaProgress:
    """Progress notification pushed by the bridge during an update.

    Format: [progress:4 LE][status:1]
    A progress of 0xFFFFFFFF marks the end of the update; status is then
    nonzero on success and zero on failure.
    """

    progress: int
    status: int

    @property
    def is_terminal(self) -> bool:
        return self.progress == OTA_PROGRESS_TERMINAL

    @property
    def succeeded(self) -> bool:
        return self.is_terminal and self.status != 0


def ota_chunk_size(mtu: int) -> int:
    """Maximum image bytes per CHUNK message for a negotiated MTU.

    Raises:
        ValueError: If the MTU leaves no room for data
    """
    size = mtu - GATT_WRITE_OVERHEAD - OTA_OPCODE_SIZE
    if size <= 0:
        raise ValueError(f"MTU {mtu} too small for OTA transfer")
    return size


def build_init_message(image_length: int) -> bytes:
    """Build the INIT message announcing an image.

    Format:
        [opcode:1 = 0x01][format:1 = 0x01][length:4 LE]
    """
    return struct.pack("<BBI", OtaOpcode.INIT, OTA_IMAGE_FORMAT, image_length)


def build_chunk_message(chunk: bytes) -> bytes:
    """Build a CHUNK message: [opcode:1 = 0x02][data]."""
    return bytes([OtaOpcode.CHUNK]) + chunk


def build_finish_message(signature: bytes) -> bytes:
    """Build the FINISH message: [opcode:1 = 0x03][DER signature]."""
    return bytes([OtaOpcode.FINISH]) + signature


def parse_progress_notification(data: bytes) -> OtaProgress:
    """Parse an OTA progress notification.

    Raises:
        InvalidResponseError: If the notification is shorter than 5 bytes
    """
    if len(data) < OTA_PROGRESS_SIZE:
        raise InvalidResponseError(
            f"OTA progress too short: {len(data)} bytes (need {OTA_PROGRESS_SIZE})"
        )

    progress, status = struct.unpack("<IB", data[:OTA_PROGRESS_SIZE])
    return OtaProgress(progress=progress, status=status)

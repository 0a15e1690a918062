"""Bridge scan/connect/pairing payload parsing."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..exceptions import InvalidResponseError
from ..models.bridge import PairedDevice, ScanResult

ADDRESS_SIZE = 6
SCAN_RESULT_MIN_SIZE = ADDRESS_SIZE + 1
CONNECT_STATE_SIZE = 3
SCAN_END_ADDRESS = "00:00:00:00:00:00"

SCAN_START = 0x01
SCAN_STOP = 0x00
CONNECT_START = 0x01
CONNECT_STOP = 0x00


@dataclass(frozen=True)
class ConnectNotification:
    """Bridge connect characteristic value.

    Format: [state:1][attempt:1][attempts:1]
    state is 1 when the bridge is connected to its paired device.
    """

    state: int
    attempt: int
    attempts: int

    @property
    def connected(self) -> bool:
        return self.state == 1


def format_address(data: bytes) -> str:
    """Format 6 address bytes as lowercase colon-separated hex."""
    return ":".join(f"{b:02x}" for b in data[:ADDRESS_SIZE])


def parse_address(address: str) -> bytes:
    """Parse a colon-separated address into 6 bytes.

    Raises:
        ValueError: If the address is malformed
    """
    parts = address.split(":")
    if len(parts) != ADDRESS_SIZE:
        raise ValueError(f"Invalid address: {address!r}")
    return bytes(int(part, 16) for part in parts)


def parse_scan_notification(data: bytes) -> ScanResult:
    """Parse a scan result notification.

    Format: [address:6][rssi:1 signed][name:utf8]
    An all-zero address marks the end of the scan.

    Raises:
        InvalidResponseError: If the notification is shorter than 7 bytes
    """
    if len(data) < SCAN_RESULT_MIN_SIZE:
        raise InvalidResponseError(
            f"Scan notification too short: {len(data)} bytes (need {SCAN_RESULT_MIN_SIZE})"
        )

    rssi = struct.unpack("b", data[ADDRESS_SIZE:ADDRESS_SIZE + 1])[0]
    name = bytes(data[SCAN_RESULT_MIN_SIZE:]).decode("utf-8", errors="replace")
    return ScanResult(address=format_address(data), name=name, rssi=rssi)


def parse_connect_notification(data: bytes) -> ConnectNotification:
    """Parse the connect characteristic value.

    Raises:
        InvalidResponseError: If the value is shorter than 3 bytes
    """
    if len(data) < CONNECT_STATE_SIZE:
        raise InvalidResponseError(
            f"Connect notification too short: {len(data)} bytes (need {CONNECT_STATE_SIZE})"
        )
    return ConnectNotification(state=data[0], attempt=data[1], attempts=data[2])


def parse_paired_device(data: bytes) -> PairedDevice | None:
    """Parse the paired-device config value: [address:6][name:utf8].

    Returns:
        None if no device is paired (value shorter than an address)
    """
    if len(data) < ADDRESS_SIZE:
        return None
    name = bytes(data[ADDRESS_SIZE:]).decode("utf-8", errors="replace")
    return PairedDevice(address=format_address(data), name=name)


def build_paired_device(device: PairedDevice | None) -> bytes:
    """Build the paired-device config value; empty clears pairing."""
    if device is None:
        return b""
    return parse_address(device.address) + device.name.encode("utf-8")


def encode_uint32(value: int) -> bytes:
    """Encode a config value as little-endian uint32."""
    return struct.pack("<I", value)


def decode_uint32(data: bytes) -> int:
    """Decode a little-endian uint32 config value.

    Raises:
        InvalidResponseError: If fewer than 4 bytes are present
    """
    if len(data) < 4:
        raise InvalidResponseError(f"uint32 value too short: {len(data)} bytes")
    return struct.unpack("<I", data[:4])[0]


def decode_uint16(data: bytes) -> int:
    """Decode a little-endian uint16 value (MTU info)."""
    if len(data) < 2:
        raise InvalidResponseError(f"uint16 value too short: {len(data)} bytes")
    return struct.unpack("<H", data[:2])[0]

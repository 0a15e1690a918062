"""Protocol commands and constants for X1 devices and the BLE bridge."""

from __future__ import annotations

import math
from enum import IntEnum


class CommandCode(IntEnum):
    """Control verbs (first byte of an outbound command).

    Switch-mode variables ('1'..'4') are set by using the variable byte
    itself as the command.
    """

    ENABLE_STREAMING = ord("E")   # Argument '+' or '-'
    GET_VARIABLE = ord("G")       # Argument = variable id
    MANUAL_TRIGGER = ord("T")     # Argument = time in 100ms units
    SET_MODE = ord("P")
    SET_CHANNELS = ord("C")
    SET_BUZZER_MODE = ord("Z")


STREAMING_ON = ord("+")
STREAMING_OFF = ord("-")

# Serial framing
FRAME_TERMINATOR = 0x0A
SERIAL_FRAME_SIZE = 3
SERIAL_BAUDRATE = 115200

# BLE framing
BLE_FRAME_SIZE = 2

# Bridge GATT service
BRIDGE_SERVICE_UUID = "00001000-7858-48fb-b797-8613e960da6a"
SERIAL_DATA_UUID = "00002001-7858-48fb-b797-8613e960da6a"
BLUETOOTH_SCAN_UUID = "00002002-7858-48fb-b797-8613e960da6a"
BLUETOOTH_CONNECT_UUID = "00002003-7858-48fb-b797-8613e960da6a"
CONFIG_NAME_UUID = "00002004-7858-48fb-b797-8613e960da6a"
CONFIG_PIN_CODE_UUID = "00002005-7858-48fb-b797-8613e960da6a"
CONFIG_BT_ADDR_UUID = "00002006-7858-48fb-b797-8613e960da6a"
DEBUG_LOG_UUID = "00002007-7858-48fb-b797-8613e960da6a"
RESTART_UUID = "00002008-7858-48fb-b797-8613e960da6a"
OTA_UPDATE_UUID = "00002009-7858-48fb-b797-8613e960da6a"
CONFIG_CON_IDLE_UUID = "0000200a-7858-48fb-b797-8613e960da6a"
CONFIG_DISCON_IDLE_UUID = "0000200b-7858-48fb-b797-8613e960da6a"
SLEEP_UUID = "0000200c-7858-48fb-b797-8613e960da6a"
MTU_INFO_UUID = "0000200d-7858-48fb-b797-8613e960da6a"

# Standard battery level characteristic
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"

DEFAULT_MTU = 23

# Manual trigger time is encoded in 100ms units in one byte
TRIGGER_UNITS_PER_SECOND = 10
MAX_TRIGGER_VALUE = 0xFF


def _check_byte(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} {value} does not fit in one byte")
    return value


def build_command(command: int, argument: int) -> bytes:
    """Build the two payload bytes of a command.

    Args:
        command: Command byte (verb or variable id)
        argument: Argument byte

    Returns:
        Command bytes: [command, argument]

    Raises:
        ValueError: If either value is outside 0-255
    """
    return bytes([_check_byte("command", command), _check_byte("argument", argument)])


def trigger_time_to_argument(seconds: float) -> int:
    """Convert a manual trigger duration to its one-byte encoding.

    Halves round up (0.25s encodes as 3).

    Args:
        seconds: Trigger duration in seconds

    Returns:
        Duration in 100ms units

    Raises:
        ValueError: If the duration is not finite or the rounded value is
            outside 0-255
    """
    if not math.isfinite(seconds):
        raise ValueError(f"trigger time {seconds} out of range")

    value = math.floor(seconds * TRIGGER_UNITS_PER_SECOND + 0.5)
    if value < 0 or value > MAX_TRIGGER_VALUE:
        raise ValueError(f"trigger time {seconds} ({value}) out of range")
    return value

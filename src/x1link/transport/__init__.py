"""Serial and BLE transports."""

from .base import Transport, TransportKind
from .connection import BLEConnection
from .serial_port import SerialConnection

__all__ = [
    "BLEConnection",
    "SerialConnection",
    "Transport",
    "TransportKind",
]

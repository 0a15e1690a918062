"""Bridge session data structures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ScanResult:
    """A device seen by the bridge during a scan.

    Attributes:
        address: Colon-separated lowercase hex address
        name: Advertised name (may be empty)
        rssi: Signal strength in dBm
    """

    address: str
    name: str
    rssi: int


@dataclass(frozen=True)
class PairedDevice:
    """Device the bridge connects to, persisted on the bridge."""

    address: str
    name: str = ""


@dataclass(frozen=True)
class ConnectProgress:
    """Bridge connect retry progress (1-based attempt of attempts)."""

    attempt: int
    attempts: int


class BridgeEvent(Enum):
    """State changes reported to bridge session callbacks."""
    SCAN_CHANGED = "scan_changed"
    CONNECTED = "connected"
    CONNECTING = "connecting"
    CONNECTION_FAILED = "connection_failed"
    DISCONNECTED = "disconnected"

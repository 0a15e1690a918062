"""X1 Device Protocol Package.

  Pure Python package for talking to X1 devices over a serial link or a BLE bridge.
  """

from .bridge import BridgeSession
from .device import Device
from .exceptions import (
    BLEConnectionError,
    BLETimeoutError,
    BridgeConnectError,
    ConnectionClosedError,
    FirmwareError,
    InvalidResponseError,
    NotConnectedError,
    ProtocolError,
    SerialConnectionError,
    StateError,
    TransportError,
    X1LinkError,
)
from .models.bridge import BridgeEvent, ConnectProgress, PairedDevice, ScanResult
from .models.enums import (
    BuzzerMode,
    FetchMode,
    Mode,
    PulseWidthSwitch,
    ScanState,
    TriggerModeSwitch,
    Variable,
    get_mode_name,
)
from .models.messages import TextMessage, VariableUpdate
from .ota import FirmwareUpdateSession, OtaState
from .protocol import BRIDGE_SERVICE_UUID, SERIAL_DATA_UUID
from .transport import BLEConnection, SerialConnection, Transport, TransportKind

__version__ = "0.1.0"

__all__ = [
    # Main API
    "Device",
    "BridgeSession",
    "FirmwareUpdateSession",
    # Transports
    "BLEConnection",
    "SerialConnection",
    "Transport",
    "TransportKind",
    # Exceptions
    "X1LinkError",
    "TransportError",
    "BLEConnectionError",
    "BLETimeoutError",
    "SerialConnectionError",
    "NotConnectedError",
    "ProtocolError",
    "InvalidResponseError",
    "StateError",
    "ConnectionClosedError",
    "FirmwareError",
    "BridgeConnectError",
    # Models
    "VariableUpdate",
    "TextMessage",
    "ScanResult",
    "PairedDevice",
    "ConnectProgress",
    "BridgeEvent",
    # Enums
    "Variable",
    "FetchMode",
    "Mode",
    "PulseWidthSwitch",
    "TriggerModeSwitch",
    "BuzzerMode",
    "ScanState",
    "OtaState",
    "get_mode_name",
    # Constants
    "BRIDGE_SERVICE_UUID",
    "SERIAL_DATA_UUID",
]

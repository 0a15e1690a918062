"""Data models for X1 devices and bridges."""

from .bridge import BridgeEvent, ConnectProgress, PairedDevice, ScanResult
from .enums import (
    MODE_NAMES,
    SWITCH_MODE_VARIABLES,
    BuzzerMode,
    FetchMode,
    Mode,
    PulseWidthSwitch,
    ScanState,
    TriggerModeSwitch,
    Variable,
    get_mode_name,
)
from .messages import Message, TextMessage, VariableUpdate

__all__ = [
    "BridgeEvent",
    "BuzzerMode",
    "ConnectProgress",
    "FetchMode",
    "Message",
    "Mode",
    "MODE_NAMES",
    "PairedDevice",
    "PulseWidthSwitch",
    "ScanResult",
    "ScanState",
    "SWITCH_MODE_VARIABLES",
    "TextMessage",
    "TriggerModeSwitch",
    "Variable",
    "VariableUpdate",
    "get_mode_name",
]

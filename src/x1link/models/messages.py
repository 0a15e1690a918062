"""Inbound protocol messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class VariableUpdate:
    """A variable value pushed or echoed by the device.

    Attributes:
        variable: Variable identifier byte
        value: Raw value byte (0-255)
    """

    variable: int
    value: int


@dataclass(frozen=True)
class TextMessage:
    """Free-form text emitted by the device (debug output)."""

    text: str


Message = Union[VariableUpdate, TextMessage]

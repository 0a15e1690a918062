"""Exceptions raised by x1link."""

from __future__ import annotations


class X1LinkError(Exception):
    """Base exception for all x1link errors."""


class TransportError(X1LinkError):
    """Transport could not be opened, read or written."""


class BLEConnectionError(TransportError):
    """BLE connection failed or was lost."""


class BLETimeoutError(TransportError):
    """BLE operation timed out."""


class SerialConnectionError(TransportError):
    """Serial port could not be opened, read or written."""


class ProtocolError(X1LinkError):
    """Protocol-level error (unexpected or malformed wire data)."""


class InvalidResponseError(ProtocolError):
    """Notification payload too short or otherwise unparseable."""


class StateError(X1LinkError):
    """Operation is not valid in the current state.

    Raised synchronously to the caller, e.g. for WaitForChange requests while
    not streaming, out-of-range trigger times, or use of a closed transport.
    """


class NotConnectedError(TransportError, StateError):
    """Transport used before open() or after close()."""


class ConnectionClosedError(X1LinkError):
    """The inbound message stream ended while a request was pending."""


class FirmwareError(X1LinkError):
    """Firmware update could not be started or was aborted."""


class BridgeConnectError(X1LinkError):
    """Bridge gave up connecting to the paired device."""

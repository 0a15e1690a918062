"""Transport interface shared by the serial and BLE connections."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Protocol

from ..models.messages import Message

_LOGGER = logging.getLogger(__name__)

DisconnectCallback = Callable[[], None]


class TransportKind(Enum):
    """Known transport implementations."""
    SERIAL = "serial"
    BLE = "ble"
    MOCK = "mock"


class Transport(Protocol):
    """What the protocol engine needs from a connection."""

    @property
    def kind(self) -> TransportKind:
        """Which transport implementation this is."""

    @property
    def is_connected(self) -> bool:
        """Whether the link is currently open."""

    async def send_command(self, command: int, argument: int) -> None:
        """Send one command; concurrent calls are serialized."""

    def messages(self) -> AsyncIterator[Message]:
        """Inbound messages in wire order until the link drops."""

    async def close(self) -> None:
        """Close the link."""

    def add_disconnect_callback(self, callback: DisconnectCallback) -> Callable[[], None]:
        """Register a callback fired once when the link drops."""


class DisconnectNotifier:
    """Fires registered disconnect callbacks at most once per connection."""

    def __init__(self) -> None:
        self._callbacks: list[DisconnectCallback] = []
        self._fired = False

    def add(self, callback: DisconnectCallback) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def arm(self) -> None:
        """Allow callbacks to fire again (called on a fresh connection)."""
        self._fired = False

    def fire(self) -> None:
        if self._fired:
            return
        self._fired = True
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Disconnect callback raised")

"""Serial port connection management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

import serial

from ..exceptions import NotConnectedError, SerialConnectionError, StateError
from ..models.messages import Message
from ..protocol.commands import SERIAL_BAUDRATE
from ..protocol.framing import SerialFrameDecoder, encode_serial_command
from .base import DisconnectCallback, DisconnectNotifier, TransportKind

_LOGGER = logging.getLogger(__name__)

READ_CHUNK_SIZE = 256


class SerialConnection:
    """Manages a serial link to an X1 device.

    Features:
    - Bounded retry on open (links can take a moment to appear after pairing)
    - Writes serialized so two commands never interleave on the wire
    - Async message stream reassembled from raw reads
    - Context manager for automatic cleanup
    """

    def __init__(
            self,
            port: str,
            baudrate: int = SERIAL_BAUDRATE,
            open_attempts: int = 5,
            open_retry_delay: float = 1.0,
            read_timeout: float = 0.1,
    ):
        """Initialize serial connection manager.

        Args:
            port: Device path or pyserial URL (e.g. "/dev/ttyUSB0", "rfc2217://host:port")
            baudrate: Line speed (default: 115200)
            open_attempts: Maximum open attempts before giving up (default: 5)
            open_retry_delay: Seconds between open attempts (default: 1.0)
            read_timeout: Blocking read timeout in seconds (default: 0.1)
        """
        if open_attempts < 1:
            raise ValueError("open_attempts must be at least 1")

        self.port = port
        self.baudrate = baudrate
        self.open_attempts = open_attempts
        self.open_retry_delay = open_retry_delay
        self.read_timeout = read_timeout

        self._serial: serial.SerialBase | None = None
        self._write_lock = asyncio.Lock()
        self._disconnect = DisconnectNotifier()
        self._reading = False

    async def __aenter__(self) -> SerialConnection:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._serial is not None:
            await self.close()

    @property
    def kind(self) -> TransportKind:
        return TransportKind.SERIAL

    @property
    def is_connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def add_disconnect_callback(self, callback: DisconnectCallback) -> Callable[[], None]:
        return self._disconnect.add(callback)

    async def open(self) -> None:
        """Open the serial port.

        Raises:
            StateError: If already open
            SerialConnectionError: If every open attempt failed
        """
        if self._serial is not None:
            raise StateError("SerialConnection already open")

        last_error: Exception | None = None
        for attempt in range(1, self.open_attempts + 1):
            try:
                _LOGGER.debug(
                    "Opening %s (attempt %d/%d)", self.port, attempt, self.open_attempts
                )
                self._serial = await asyncio.to_thread(self._open_port)
                break
            except (serial.SerialException, OSError) as e:
                last_error = e
                _LOGGER.debug("Open of %s failed: %s", self.port, e)
                if attempt < self.open_attempts:
                    await asyncio.sleep(self.open_retry_delay)
        else:
            raise SerialConnectionError(
                f"Failed to open {self.port} after {self.open_attempts} attempts: {last_error}"
            ) from last_error

        self._disconnect.arm()
        _LOGGER.info("Opened serial port %s", self.port)

    def _open_port(self) -> serial.SerialBase:
        return serial.serial_for_url(
            self.port,
            baudrate=self.baudrate,
            timeout=self.read_timeout,
        )

    async def close(self) -> None:
        """Close the serial port.

        Raises:
            NotConnectedError: If not open
        """
        port = self._serial
        if port is None:
            raise NotConnectedError("SerialConnection not open")

        self._serial = None
        try:
            _LOGGER.debug("Closing %s", self.port)
            await asyncio.to_thread(port.close)
        except (serial.SerialException, OSError) as e:
            _LOGGER.warning("Error during close: %s", e)
        finally:
            self._disconnect.fire()

    async def send_command(self, command: int, argument: int) -> None:
        """Write one 3-byte command frame.

        Raises:
            NotConnectedError: If not open
            SerialConnectionError: If the write fails
        """
        data = encode_serial_command(command, argument)

        async with self._write_lock:
            port = self._serial
            if port is None:
                raise NotConnectedError("SerialConnection not open")

            _LOGGER.debug("TX %s", data.hex())
            try:
                await asyncio.to_thread(port.write, data)
            except (serial.SerialException, OSError) as e:
                raise SerialConnectionError(f"Write failed: {e}") from e

    async def messages(self) -> AsyncIterator[Message]:
        """Yield inbound messages until the port closes.

        Only one consumer may iterate at a time; a new stream requires a new
        open() after the previous one ended.

        Raises:
            NotConnectedError: If not open
            StateError: If already being consumed
        """
        if self._serial is None:
            raise NotConnectedError("SerialConnection not open")
        if self._reading:
            raise StateError("Serial messages already being consumed")

        self._reading = True
        decoder = SerialFrameDecoder()
        try:
            while True:
                data = await self._read_chunk()
                if data is None:
                    break
                if not data:
                    continue

                _LOGGER.debug("RX %s", data.hex())
                for message in decoder.feed(data):
                    yield message
        finally:
            self._reading = False

        if decoder.pending:
            _LOGGER.debug("Discarding %d bytes of partial frame", decoder.pending)
        self._disconnect.fire()

    async def _read_chunk(self) -> bytes | None:
        """Read whatever is available; None once the port is gone."""
        port = self._serial
        if port is None or not port.is_open:
            return None

        try:
            return await asyncio.to_thread(self._read_blocking, port)
        except (serial.SerialException, OSError) as e:
            _LOGGER.warning("Serial read failed, treating as disconnect: %s", e)
            if self._serial is port:
                self._serial = None
                try:
                    port.close()
                except (serial.SerialException, OSError) as close_error:
                    _LOGGER.debug("Error closing failed port: %s", close_error)
            return None

    @staticmethod
    def _read_blocking(port: serial.SerialBase) -> bytes:
        return port.read(max(1, min(port.in_waiting, READ_CHUNK_SIZE)))

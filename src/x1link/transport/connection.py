"""BLE connection management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import BLEConnectionError, BLETimeoutError, NotConnectedError, ProtocolError
from ..models.messages import Message
from ..protocol.bridge import decode_uint16
from ..protocol.commands import (
    BATTERY_LEVEL_UUID,
    DEBUG_LOG_UUID,
    DEFAULT_MTU,
    MTU_INFO_UUID,
    SERIAL_DATA_UUID,
)
from ..protocol.framing import decode_ble_notification, encode_ble_command
from .base import DisconnectCallback, DisconnectNotifier, TransportKind

if TYPE_CHECKING:
    from bleak.backends.characteristic import BleakGATTCharacteristic
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

NotificationHandler = Callable[[bytes], None]
BatteryCallback = Callable[[int], None]


class BLEConnection:
    """Manages BLE connection to an X1 bridge.

    Features:
    - Automatic retry logic with bleak-retry-connector
    - Service caching for faster reconnections
    - Context manager for automatic cleanup
    - Notification queue feeding the inbound message stream
    - Battery level and bridge debug log tracking
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
    ):
        """Initialize BLE connection manager.

        Args:
            mac_address: Bridge MAC address
            ble_device: Optional BLEDevice from a previous scan
            timeout: Connection timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts for bleak-retry-connector (default: 4)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
        """
        self.mac_address = mac_address
        self.ble_device = ble_device
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.use_services_cache = use_services_cache

        self._client: BleakClient | None = None
        self._notification_queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._write_lock = asyncio.Lock()
        self._disconnect = DisconnectNotifier()
        self._battery_callbacks: list[BatteryCallback] = []
        self._battery_level = 100
        self._mtu = DEFAULT_MTU
        self._stream_closed = False

    async def __aenter__(self) -> BLEConnection:
        """Connect to device (context manager entry)."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    @property
    def kind(self) -> TransportKind:
        return TransportKind.BLE

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected

    @property
    def mtu(self) -> int:
        """Negotiated ATT MTU reported by the bridge."""
        return self._mtu

    @property
    def battery_level(self) -> int:
        """Last reported bridge battery level in percent."""
        return self._battery_level

    def add_disconnect_callback(self, callback: DisconnectCallback) -> Callable[[], None]:
        return self._disconnect.add(callback)

    def add_battery_callback(self, callback: BatteryCallback) -> Callable[[], None]:
        """Register callback(level) fired when the battery level changes."""
        self._battery_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._battery_callbacks:
                self._battery_callbacks.remove(callback)

        return _remove

    async def connect(self) -> None:
        """Establish BLE connection to the bridge.

        Uses bleak-retry-connector for automatic retry logic and service caching.

        Raises:
            BLEConnectionError: If connection fails
            BLETimeoutError: If connection times out
        """
        if self._client and self._client.is_connected:
            return  # Already connected

        try:
            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                self.mac_address,
                self.max_attempts
            )

            if self.ble_device:
                device = self.ble_device
            else:
                device = await BleakScanner.find_device_by_address(
                    self.mac_address,
                    timeout=self.timeout
                )
                if device is None:
                    raise BLEConnectionError(
                        f"Device {self.mac_address} not found during scan"
                    )

            self._notification_queue = asyncio.Queue()
            self._stream_closed = False
            self._disconnect.arm()

            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or self.mac_address,
                disconnected_callback=self._on_disconnected,
                max_attempts=self.max_attempts,
                use_services_cache=self.use_services_cache,
                timeout=self.timeout,
            )

            _LOGGER.info("Connected to %s", self.mac_address)

            try:
                await self._setup()
            except BaseException:
                # Leave no half set up client behind
                await self.disconnect()
                raise

        except BLEConnectionError:
            raise
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(
                f"Connection timeout after {self.timeout}s"
            ) from e
        except Exception as e:
            raise BLEConnectionError(
                f"Failed to connect: {e}"
            ) from e

    async def disconnect(self) -> None:
        """Disconnect from device."""
        client = self._client
        if client is None:
            return

        self._client = None
        try:
            if client.is_connected:
                _LOGGER.debug("Disconnecting from %s", self.mac_address)
                await client.disconnect()
        except BleakError as e:
            _LOGGER.warning("Error during disconnect: %s", e)
        finally:
            self._end_stream()

    async def close(self) -> None:
        """Close the connection.

        Raises:
            NotConnectedError: If not connected
        """
        if self._client is None:
            raise NotConnectedError("BLEConnection not open")
        await self.disconnect()

    async def _setup(self) -> None:
        """Subscribe notifications and read link parameters.

        Raises:
            BLEConnectionError: If the serial data characteristic is missing
        """
        if not self.has_characteristic(SERIAL_DATA_UUID):
            raise BLEConnectionError(
                f"Characteristic {SERIAL_DATA_UUID} not found"
            )

        if self.has_characteristic(BATTERY_LEVEL_UUID):
            await self.start_notify(BATTERY_LEVEL_UUID, self._battery_notification)
            self._battery_notification(await self.read_characteristic(BATTERY_LEVEL_UUID))

        if self.has_characteristic(DEBUG_LOG_UUID):
            await self.start_notify(DEBUG_LOG_UUID, self._debug_log_notification)

        if self.has_characteristic(MTU_INFO_UUID):
            self._mtu = decode_uint16(await self.read_characteristic(MTU_INFO_UUID))
            _LOGGER.debug("Bridge MTU: %d", self._mtu)

        await self.start_notify(SERIAL_DATA_UUID, self._notification_queue.put_nowait)

        _LOGGER.debug("Notifications started")

    def _on_disconnected(self, client: BleakClient) -> None:
        _LOGGER.info("Bridge %s disconnected", self.mac_address)
        self._end_stream()

    def _end_stream(self) -> None:
        if not self._stream_closed:
            self._stream_closed = True
            self._notification_queue.put_nowait(None)
        self._disconnect.fire()

    def _battery_notification(self, data: bytes) -> None:
        if len(data) < 1:
            return

        level = data[0]
        if level == self._battery_level:
            return

        self._battery_level = level
        _LOGGER.debug("Bridge battery level: %d%%", level)
        for callback in list(self._battery_callbacks):
            callback(level)

    def _debug_log_notification(self, data: bytes) -> None:
        _LOGGER.info("Bridge log message: %s", data.decode("utf-8", errors="replace"))

    def _require_client(self) -> BleakClient:
        client = self._client
        if client is None or not client.is_connected:
            raise NotConnectedError("Not connected")
        return client

    def has_characteristic(self, uuid: str) -> bool:
        """Check whether the connected bridge exposes a characteristic."""
        client = self._require_client()
        return client.services.get_characteristic(uuid) is not None

    async def read_characteristic(self, uuid: str) -> bytes:
        """Read a characteristic value.

        Raises:
            NotConnectedError: If not connected
            BLEConnectionError: If the read fails
        """
        client = self._require_client()
        try:
            return bytes(await client.read_gatt_char(uuid))
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(f"Read of {uuid} timed out") from e
        except BleakError as e:
            raise BLEConnectionError(f"Read of {uuid} failed: {e}") from e

    async def write_characteristic(self, uuid: str, data: bytes, response: bool = False) -> None:
        """Write a characteristic value.

        Args:
            uuid: Characteristic UUID
            data: Value to write
            response: Wait for a write response (acknowledged write)

        Raises:
            NotConnectedError: If not connected
            BLEConnectionError: If the write fails
        """
        client = self._require_client()
        try:
            await client.write_gatt_char(uuid, data, response=response)
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(f"Write to {uuid} timed out") from e
        except BleakError as e:
            raise BLEConnectionError(f"Write to {uuid} failed: {e}") from e

    async def start_notify(self, uuid: str, handler: NotificationHandler) -> None:
        """Subscribe handler(data) to notifications from a characteristic."""
        client = self._require_client()

        def _callback(sender: BleakGATTCharacteristic, data: bytearray) -> None:
            handler(bytes(data))

        try:
            await client.start_notify(uuid, _callback)
        except BleakError as e:
            raise BLEConnectionError(f"Subscribe to {uuid} failed: {e}") from e

    async def stop_notify(self, uuid: str) -> None:
        """Unsubscribe from a characteristic."""
        client = self._require_client()
        try:
            await client.stop_notify(uuid)
        except BleakError as e:
            raise BLEConnectionError(f"Unsubscribe from {uuid} failed: {e}") from e

    async def send_command(self, command: int, argument: int) -> None:
        """Write [command, argument] to the serial data characteristic.

        Raises:
            NotConnectedError: If not connected
            BLEConnectionError: If write fails
        """
        data = encode_ble_command(command, argument)
        async with self._write_lock:
            _LOGGER.debug("TX %s", data.hex())
            await self.write_characteristic(SERIAL_DATA_UUID, data)

    async def messages(self) -> AsyncIterator[Message]:
        """Yield decoded serial data notifications until disconnect."""
        queue = self._notification_queue
        while True:
            data = await queue.get()
            if data is None:
                break

            _LOGGER.debug("RX %s", data.hex())
            try:
                message = decode_ble_notification(data)
            except ProtocolError as e:
                _LOGGER.warning("Dropping malformed notification: %s", e)
                continue

            yield message

"""BLE bridge session: scanning, pairing, connect control and config."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .exceptions import (
    BridgeConnectError,
    ConnectionClosedError,
    InvalidResponseError,
    X1LinkError,
)
from .models.bridge import BridgeEvent, ConnectProgress, PairedDevice, ScanResult
from .models.enums import ScanState
from .ota import FirmwareUpdateSession, ProgressCallback
from .protocol.bridge import (
    CONNECT_START,
    CONNECT_STOP,
    SCAN_END_ADDRESS,
    SCAN_START,
    SCAN_STOP,
    build_paired_device,
    decode_uint32,
    encode_uint32,
    parse_connect_notification,
    parse_paired_device,
    parse_scan_notification,
)
from .protocol.commands import (
    BLUETOOTH_CONNECT_UUID,
    BLUETOOTH_SCAN_UUID,
    CONFIG_BT_ADDR_UUID,
    CONFIG_CON_IDLE_UUID,
    CONFIG_DISCON_IDLE_UUID,
    CONFIG_NAME_UUID,
    CONFIG_PIN_CODE_UUID,
    OTA_UPDATE_UUID,
    RESTART_UUID,
    SLEEP_UUID,
)

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey

    from .transport.connection import BLEConnection

_LOGGER = logging.getLogger(__name__)

BridgeCallback = Callable[[BridgeEvent, "ConnectProgress | None"], None]


class BridgeSession:
    """Control surface of an X1 BLE bridge.

    The bridge scans for, pairs with and connects to the X1 device on the
    caller's behalf. State changes arrive as notifications and are reported
    to registered callbacks as BridgeEvent values.

    Usage:
        async with BLEConnection("AA:BB:CC:DD:EE:FF") as ble_link:
            async with BridgeSession(ble_link) as bridge:
                await bridge.begin_scanning()
                await bridge.wait_for_scan_complete()
                await bridge.set_paired_device(PairedDevice(result.address, result.name))
                await bridge.connect()
    """

    def __init__(self, connection: BLEConnection):
        """Initialize bridge session.

        Args:
            connection: Connected bridge
        """
        self._connection = connection
        self._callbacks: list[BridgeCallback] = []
        self._remove_disconnect_callback: Callable[[], None] | None = None

        self._scan_state = ScanState.NOT_SCANNING
        self._scan_results: dict[str, ScanResult] = {}
        self._scan_complete: asyncio.Future[None] | None = None

        self._connected = False
        self._connect_result: asyncio.Future[None] | None = None

        self._paired_device: PairedDevice | None = None
        self._name = ""
        self._connected_idle_timeout = 0
        self._disconnected_idle_timeout = 0
        self._supports_ota = False

    async def __aenter__(self) -> BridgeSession:
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def connection(self) -> BLEConnection:
        return self._connection

    @property
    def scan_state(self) -> ScanState:
        return self._scan_state

    @property
    def scan_results(self) -> list[ScanResult]:
        """Devices seen in the current scan, one entry per address."""
        return list(self._scan_results.values())

    @property
    def connected(self) -> bool:
        """Whether the bridge is connected to its paired device."""
        return self._connected

    @property
    def paired_device(self) -> PairedDevice | None:
        return self._paired_device

    @property
    def name(self) -> str:
        return self._name

    @property
    def connected_idle_timeout(self) -> int:
        return self._connected_idle_timeout

    @property
    def disconnected_idle_timeout(self) -> int:
        return self._disconnected_idle_timeout

    @property
    def supports_ota(self) -> bool:
        return self._supports_ota

    @property
    def mtu(self) -> int:
        return self._connection.mtu

    def register_callback(self, callback: BridgeCallback) -> Callable[[], None]:
        """Register callback(event, progress); returns an unregister function.

        progress is only set for BridgeEvent.CONNECTING.
        """
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def setup(self) -> None:
        """Read bridge config and subscribe scan/connect notifications.

        Raises:
            InvalidResponseError: If a config value is malformed
            BLEConnectionError: If a read or subscribe fails
        """
        connection = self._connection

        self._name = (await connection.read_characteristic(CONFIG_NAME_UUID)).decode(
            "utf-8", errors="replace"
        )
        self._connected_idle_timeout = decode_uint32(
            await connection.read_characteristic(CONFIG_CON_IDLE_UUID)
        )
        self._disconnected_idle_timeout = decode_uint32(
            await connection.read_characteristic(CONFIG_DISCON_IDLE_UUID)
        )

        await connection.start_notify(BLUETOOTH_SCAN_UUID, self._on_scan_notification)
        self._scan_state = await self._read_scan_state()

        await connection.start_notify(BLUETOOTH_CONNECT_UUID, self._on_connect_notification)
        try:
            state = parse_connect_notification(
                await connection.read_characteristic(BLUETOOTH_CONNECT_UUID)
            )
        except InvalidResponseError as e:
            _LOGGER.debug("No initial connect state: %s", e)
        else:
            self._connected = state.connected

        self._paired_device = parse_paired_device(
            await connection.read_characteristic(CONFIG_BT_ADDR_UUID)
        )
        self._supports_ota = connection.has_characteristic(OTA_UPDATE_UUID)

        if self._remove_disconnect_callback is None:
            self._remove_disconnect_callback = connection.add_disconnect_callback(
                self._on_link_lost
            )

        _LOGGER.debug(
            "Bridge %r: scan=%s connected=%s paired=%s ota=%s",
            self._name, self._scan_state.name, self._connected,
            self._paired_device, self._supports_ota,
        )

    async def close(self) -> None:
        """Drop the device link if up, then disconnect from the bridge."""
        if self._connected and self._connection.is_connected:
            try:
                await self.disconnect_device()
            except X1LinkError as e:
                _LOGGER.warning("Could not disconnect bridge from device: %s", e)

        if self._remove_disconnect_callback is not None:
            self._remove_disconnect_callback()
            self._remove_disconnect_callback = None

        self._fail_waiters(ConnectionClosedError("Bridge session closed"))
        await self._connection.disconnect()

    async def _read_scan_state(self) -> ScanState:
        value = await self._connection.read_characteristic(BLUETOOTH_SCAN_UUID)
        if not value:
            raise InvalidResponseError("Empty scan state")
        try:
            return ScanState(value[0])
        except ValueError as e:
            raise InvalidResponseError(f"Unknown scan state: 0x{value[0]:02x}") from e

    async def begin_scanning(self) -> None:
        """Clear previous results and start a scan."""
        self._scan_results.clear()
        await self._connection.write_characteristic(BLUETOOTH_SCAN_UUID, bytes([SCAN_START]))

        self._scan_state = await self._read_scan_state()
        if self._scan_state is ScanState.SCANNING_DISABLED:
            _LOGGER.warning("Scanning disabled on bridge; restart it to scan again")
        self._notify(BridgeEvent.SCAN_CHANGED)

    async def cancel_scanning(self) -> None:
        """Stop an active scan; the end-of-scan notification updates state."""
        if self._scan_state is not ScanState.SCANNING:
            return
        await self._connection.write_characteristic(BLUETOOTH_SCAN_UUID, bytes([SCAN_STOP]))

    async def wait_for_scan_complete(self) -> list[ScanResult]:
        """Wait until the current scan ends.

        Returns:
            Results of the scan

        Raises:
            ConnectionClosedError: If the bridge link drops first
        """
        if self._scan_state is ScanState.SCANNING:
            if self._scan_complete is None or self._scan_complete.done():
                self._scan_complete = asyncio.get_running_loop().create_future()
            await asyncio.shield(self._scan_complete)
        return self.scan_results

    def _on_scan_notification(self, data: bytes) -> None:
        if self._scan_state is ScanState.NOT_SCANNING:
            return

        try:
            result = parse_scan_notification(data)
        except InvalidResponseError as e:
            _LOGGER.warning("Dropping malformed scan notification: %s", e)
            return

        if result.address == SCAN_END_ADDRESS:
            _LOGGER.debug("Scan complete, %d result(s)", len(self._scan_results))
            self._scan_state = ScanState.NOT_SCANNING
            if self._scan_complete is not None and not self._scan_complete.done():
                self._scan_complete.set_result(None)
            self._notify(BridgeEvent.SCAN_CHANGED)
            return

        _LOGGER.debug("Scan result %s %r (%d dBm)", result.address, result.name, result.rssi)
        self._scan_results[result.address] = result
        self._notify(BridgeEvent.SCAN_CHANGED)

    async def connect(self, wait: bool = True) -> None:
        """Ask the bridge to connect to its paired device.

        Args:
            wait: Wait until the bridge reports connected or gives up

        Raises:
            BridgeConnectError: If every connect attempt failed
            ConnectionClosedError: If the bridge link drops first
        """
        if self._connected:
            return

        if wait and (self._connect_result is None or self._connect_result.done()):
            self._connect_result = asyncio.get_running_loop().create_future()
        connect_result = self._connect_result

        await self._connection.write_characteristic(
            BLUETOOTH_CONNECT_UUID, bytes([CONNECT_START])
        )

        if wait and connect_result is not None:
            await asyncio.shield(connect_result)

    async def disconnect_device(self) -> None:
        """Ask the bridge to drop its link to the paired device."""
        await self._connection.write_characteristic(
            BLUETOOTH_CONNECT_UUID, bytes([CONNECT_STOP])
        )

    def _on_connect_notification(self, data: bytes) -> None:
        try:
            state = parse_connect_notification(data)
        except InvalidResponseError as e:
            _LOGGER.warning("Dropping malformed connect notification: %s", e)
            return

        if state.connected:
            _LOGGER.info("Bridge connected to device")
            self._connected = True
            self._resolve_connect(None)
            self._notify(BridgeEvent.CONNECTED)
            return

        if state.state != 0:
            _LOGGER.debug("Ignoring connect state 0x%02x", state.state)
            return

        if self._connected:
            _LOGGER.info("Bridge disconnected from device")
            self._connected = False
            self._notify(BridgeEvent.DISCONNECTED)
            return

        if state.attempts > 0:
            progress = ConnectProgress(attempt=state.attempt, attempts=state.attempts)
            _LOGGER.debug("Connection attempt %d of %d", progress.attempt, progress.attempts)
            self._notify(BridgeEvent.CONNECTING, progress)
            return

        _LOGGER.warning("Bridge failed to connect to device")
        self._resolve_connect(BridgeConnectError("Bridge could not connect to the paired device"))
        self._notify(BridgeEvent.CONNECTION_FAILED)

    def _resolve_connect(self, error: Exception | None) -> None:
        result = self._connect_result
        if result is None or result.done():
            return
        if error is None:
            result.set_result(None)
        else:
            result.set_exception(error)

    async def set_paired_device(self, device: PairedDevice | None) -> None:
        """Persist the device the bridge should connect to.

        Args:
            device: Device to pair, or None to clear pairing
        """
        await self._connection.write_characteristic(
            CONFIG_BT_ADDR_UUID, build_paired_device(device)
        )
        self._paired_device = device

    async def set_name(self, name: str) -> None:
        await self._connection.write_characteristic(CONFIG_NAME_UUID, name.encode("utf-8"))
        self._name = name

    async def set_pin_code(self, pin_code: int) -> None:
        await self._connection.write_characteristic(CONFIG_PIN_CODE_UUID, encode_uint32(pin_code))

    async def set_connected_idle_timeout(self, seconds: int) -> None:
        """Disconnect a connected client idle for this long."""
        await self._connection.write_characteristic(CONFIG_CON_IDLE_UUID, encode_uint32(seconds))
        self._connected_idle_timeout = seconds

    async def set_disconnected_idle_timeout(self, seconds: int) -> None:
        """Sleep after this long with no client connected."""
        await self._connection.write_characteristic(
            CONFIG_DISCON_IDLE_UUID, encode_uint32(seconds)
        )
        self._disconnected_idle_timeout = seconds

    async def sleep(self) -> None:
        await self._connection.write_characteristic(SLEEP_UUID, b"")

    async def restart(self, reset_config: bool = False) -> None:
        """Restart the bridge, optionally wiping its stored config."""
        await self._connection.write_characteristic(
            RESTART_UUID, bytes([0x01 if reset_config else 0x00])
        )

    async def get_firmware_signing_public_key(self) -> EllipticCurvePublicKey:
        return await FirmwareUpdateSession(self._connection).get_signing_public_key()

    async def update_firmware(
            self,
            image: bytes,
            signature: bytes,
            on_progress: ProgressCallback | None = None,
    ) -> None:
        """Upload a signed firmware image. The bridge restarts when done.

        Raises:
            FirmwareError: If the update is rejected or aborted
        """
        await FirmwareUpdateSession(self._connection).update(image, signature, on_progress)

    async def sign_and_update_firmware(
            self,
            image: bytes,
            private_key_hex: str,
            on_progress: ProgressCallback | None = None,
    ) -> None:
        await FirmwareUpdateSession(self._connection).sign_and_update(
            image, private_key_hex, on_progress
        )

    def _on_link_lost(self) -> None:
        self._connected = False
        self._scan_state = ScanState.NOT_SCANNING
        self._fail_waiters(ConnectionClosedError("Bridge connection lost"))

    def _fail_waiters(self, error: Exception) -> None:
        for future in (self._scan_complete, self._connect_result):
            if future is not None and not future.done():
                future.set_exception(error)

    def _notify(self, event: BridgeEvent, progress: ConnectProgress | None = None) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event, progress)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Bridge callback raised for %s", event.value)

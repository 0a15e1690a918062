"""Bridge firmware update over BLE."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import (
    ConnectionClosedError,
    FirmwareError,
    InvalidResponseError,
    StateError,
    X1LinkError,
)
from .protocol.commands import OTA_UPDATE_UUID
from .protocol.ota import (
    OTA_MAX_UNACKNOWLEDGED_WRITES,
    build_chunk_message,
    build_finish_message,
    build_init_message,
    ota_chunk_size,
    parse_progress_notification,
)
from .protocol.signing import (
    load_private_key,
    normalize_signature,
    parse_signing_key,
    private_key_matches,
    sign_image,
    validate_image,
    verify_image,
)

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey

    from .transport.connection import BLEConnection

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class OtaState(Enum):
    """Firmware update session lifecycle."""
    IDLE = "idle"
    KEY_EXCHANGE = "key_exchange"
    TRANSFER = "transfer"
    FINISHING = "finishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FirmwareUpdateSession:
    """One firmware upload to a bridge.

    Sequence: read the signing key, verify the signature locally, send INIT,
    stream CHUNK messages, send FINISH, then wait for the bridge to report
    the terminal progress sentinel.

    A session is single-use; create a new one for each update attempt.
    """

    def __init__(
            self,
            connection: BLEConnection,
            max_unacknowledged_writes: int = OTA_MAX_UNACKNOWLEDGED_WRITES,
    ):
        """Initialize update session.

        Args:
            connection: Connected bridge
            max_unacknowledged_writes: Chunks written without response before
                one acknowledged write (default: 12)
        """
        self._connection = connection
        self.max_unacknowledged_writes = max_unacknowledged_writes

        self._state = OtaState.IDLE
        self._result: asyncio.Future[None] | None = None
        self._aborted = False
        self._bytes_sent = 0
        self._total_bytes = 0

    @property
    def state(self) -> OtaState:
        return self._state

    @property
    def bytes_sent(self) -> int:
        return self._bytes_sent

    @property
    def supported(self) -> bool:
        """Whether the bridge exposes the OTA characteristic."""
        return self._connection.has_characteristic(OTA_UPDATE_UUID)

    async def get_signing_public_key(self) -> EllipticCurvePublicKey:
        """Read the key the bridge uses to verify firmware images.

        Raises:
            FirmwareError: If OTA is unsupported or the key cannot be parsed
        """
        if not self.supported:
            raise FirmwareError("OTA update not supported")

        value = await self._connection.read_characteristic(OTA_UPDATE_UUID)
        return parse_signing_key(value)

    async def update(
            self,
            image: bytes,
            signature: bytes,
            on_progress: ProgressCallback | None = None,
    ) -> None:
        """Upload a signed firmware image.

        Args:
            image: Raw firmware image (must start with 0xE9)
            signature: ECDSA P-256/SHA-256 signature, DER or 64-byte r||s
            on_progress: Called with bytes_sent / total after each chunk

        Raises:
            StateError: If this session was already used
            ConnectionClosedError: If the bridge link drops before the result
            FirmwareError: If the image or signature is rejected, or the
                bridge aborts the update
        """
        if self._state is not OtaState.IDLE:
            raise StateError(f"Firmware update session already used ({self._state.value})")

        self._state = OtaState.KEY_EXCHANGE
        try:
            validate_image(image)
            signature = normalize_signature(signature)

            public_key = await self.get_signing_public_key()
            verify_image(image, signature, public_key)

            await self._transfer(image, signature, on_progress)
        except BaseException:
            self._state = OtaState.FAILED
            raise

        self._state = OtaState.SUCCEEDED
        _LOGGER.info("Firmware update complete (%d bytes)", len(image))

    async def sign_and_update(
            self,
            image: bytes,
            private_key_hex: str,
            on_progress: ProgressCallback | None = None,
    ) -> None:
        """Sign an unsigned image with the operator's key, then upload it.

        The key is checked against the bridge's signing key before any data
        is transferred.

        Raises:
            FirmwareError: If the image is invalid, the key is malformed, or
                the key does not match the installed firmware
        """
        validate_image(image)
        private_key = load_private_key(private_key_hex)

        public_key = await self.get_signing_public_key()
        if not private_key_matches(private_key, public_key):
            raise FirmwareError("Private key does not match installed firmware")

        await self.update(image, sign_image(image, private_key), on_progress)

    async def _transfer(
            self,
            image: bytes,
            signature: bytes,
            on_progress: ProgressCallback | None,
    ) -> None:
        connection = self._connection
        self._result = asyncio.get_running_loop().create_future()
        self._total_bytes = len(image)

        remove_disconnect_callback = connection.add_disconnect_callback(self._on_link_lost)
        try:
            await connection.start_notify(OTA_UPDATE_UUID, self._on_progress_notification)
        except BaseException:
            remove_disconnect_callback()
            raise

        try:
            self._state = OtaState.TRANSFER
            await connection.write_characteristic(
                OTA_UPDATE_UUID, build_init_message(self._total_bytes)
            )

            chunk_size = ota_chunk_size(connection.mtu)
            _LOGGER.debug(
                "Sending %d bytes in chunks of %d (MTU %d)",
                self._total_bytes, chunk_size, connection.mtu,
            )

            unacknowledged = 0
            for offset in range(0, self._total_bytes, chunk_size):
                if self._aborted:
                    _LOGGER.warning(
                        "Bridge aborted update after %d of %d bytes",
                        self._bytes_sent, self._total_bytes,
                    )
                    break

                chunk = image[offset:offset + chunk_size]
                acknowledged = unacknowledged >= self.max_unacknowledged_writes
                await connection.write_characteristic(
                    OTA_UPDATE_UUID, build_chunk_message(chunk), response=acknowledged
                )
                unacknowledged = 0 if acknowledged else unacknowledged + 1

                self._bytes_sent = offset + len(chunk)
                if on_progress is not None:
                    on_progress(self._bytes_sent / self._total_bytes)

            if not self._aborted:
                self._state = OtaState.FINISHING
                await connection.write_characteristic(
                    OTA_UPDATE_UUID, build_finish_message(signature)
                )

            await self._result
        finally:
            remove_disconnect_callback()
            if not self._result.done():
                self._result.cancel()
            elif not self._result.cancelled():
                # Mark retrieved when a write failure got here first
                self._result.exception()
            try:
                await connection.stop_notify(OTA_UPDATE_UUID)
            except X1LinkError as e:
                # Bridge restarts after a successful update
                _LOGGER.debug("Could not unsubscribe OTA progress: %s", e)

    def _on_progress_notification(self, data: bytes) -> None:
        try:
            progress = parse_progress_notification(data)
        except InvalidResponseError as e:
            _LOGGER.warning("Dropping malformed OTA progress notification: %s", e)
            return

        if not progress.is_terminal:
            _LOGGER.debug("Bridge wrote %d of %d bytes", progress.progress, self._total_bytes)
            return

        result = self._result
        if result is None or result.done():
            return

        if progress.succeeded:
            result.set_result(None)
        else:
            self._aborted = True
            result.set_exception(FirmwareError("Firmware update aborted by bridge"))

    def _on_link_lost(self) -> None:
        self._aborted = True
        result = self._result
        if result is not None and not result.done():
            _LOGGER.warning(
                "Bridge disconnected during firmware update after %d of %d bytes",
                self._bytes_sent, self._total_bytes,
            )
            result.set_exception(
                ConnectionClosedError("Bridge disconnected during firmware update")
            )

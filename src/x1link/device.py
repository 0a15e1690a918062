"""Main X1 device class (protocol engine)."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import IntEnum
from typing import TypeVar

from .exceptions import ConnectionClosedError, StateError, TransportError, X1LinkError
from .models.enums import (
    SWITCH_MODE_VARIABLES,
    BuzzerMode,
    FetchMode,
    Mode,
    PulseWidthSwitch,
    TriggerModeSwitch,
    Variable,
)
from .models.messages import Message, TextMessage
from .protocol.commands import (
    STREAMING_OFF,
    STREAMING_ON,
    CommandCode,
    trigger_time_to_argument,
)
from .transport.base import Transport

_LOGGER = logging.getLogger(__name__)

# A mode change invalidates these even when the device does not re-push them.
MODE_DEPENDENT_VARIABLES = (Variable.MODE_INFO, Variable.COUNTDOWN)

_EnumT = TypeVar("_EnumT", bound=IntEnum)


def _known_or_raw(enum_type: type[_EnumT], value: int) -> _EnumT | int:
    """Map a device byte onto enum_type, keeping unknown values as plain ints."""
    try:
        return enum_type(value)
    except ValueError:
        _LOGGER.debug("Unknown %s value 0x%02x", enum_type.__name__, value)
        return value


class Device:
    """X1 device reached over a serial or BLE transport.

    Main API for reading and changing device state.

    A single background task drains the transport's inbound messages for the
    lifetime of the connection. It is the only writer of the value cache and
    the only resolver of pending requests; callers go through the async
    methods below.

    Usage:
        async with SerialConnection("/dev/ttyUSB0") as serial_link:
            async with Device(serial_link) as device:
                version = await device.get_firmware_version()

        async with BLEConnection("AA:BB:CC:DD:EE:FF") as ble_link:
            async with Device(ble_link) as device:
                await device.watch_variables(True)
                mode = await device.get_current_mode()
    """

    def __init__(self, transport: Transport):
        """Initialize device.

        Args:
            transport: Open serial or BLE transport
        """
        self._transport = transport
        self._streaming = False
        self._values: dict[int, int] = {}
        self._pending: dict[int, asyncio.Future[int]] = {}
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    async def __aenter__(self) -> Device:
        """Start processing inbound messages."""
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop processing inbound messages."""
        await self.close()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def streaming(self) -> bool:
        """Whether the device has been asked to push variable changes."""
        return self._streaming

    @property
    def closed(self) -> bool:
        """Whether the inbound message stream has ended."""
        return self._closed

    def cached_value(self, variable: int) -> int | None:
        """Last observed value of a variable, without any I/O.

        Values are not refreshed after a disconnect.
        """
        return self._values.get(variable)

    def start(self) -> None:
        """Start the background message task.

        Raises:
            ConnectionClosedError: If the device was already closed
        """
        if self._closed:
            raise ConnectionClosedError("Device connection closed")
        if self._task is not None:
            return

        _LOGGER.debug("Starting message processing (%s)", self._transport.kind.value)
        self._task = asyncio.get_running_loop().create_task(self._process_messages())

    async def close(self) -> None:
        """Stop the background task and reject any pending requests."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        self._closed = True
        self._fail_pending()

    async def _process_messages(self) -> None:
        try:
            async for message in self._transport.messages():
                self._handle_message(message)
        except TransportError as e:
            _LOGGER.warning("Inbound message stream failed: %s", e)
        finally:
            _LOGGER.info("Inbound message stream ended")
            self._closed = True
            self._fail_pending()

    def _handle_message(self, message: Message) -> None:
        if isinstance(message, TextMessage):
            _LOGGER.info("Device message: %s", message.text.rstrip("\r\n"))
            return

        _LOGGER.debug("Variable %r = %d", chr(message.variable), message.value)
        self._set_value(message.variable, message.value)

        if message.variable == Variable.CURRENT_MODE:
            for variable in MODE_DEPENDENT_VARIABLES:
                self._set_value(variable, 0)

    def _set_value(self, variable: int, value: int) -> None:
        self._values[variable] = value

        pending = self._pending.pop(variable, None)
        if pending is not None and not pending.done():
            pending.set_result(value)

    def _fail_pending(self) -> None:
        pending, self._pending = self._pending, {}
        if pending:
            _LOGGER.debug("Rejecting %d pending request(s)", len(pending))

        for variable, future in pending.items():
            if not future.done():
                future.set_exception(
                    ConnectionClosedError(
                        f"Connection closed while waiting for variable {chr(variable)!r}"
                    )
                )

    async def _send(self, command: int, argument: int) -> None:
        if self._closed:
            raise ConnectionClosedError("Device connection closed")
        self.start()
        await self._transport.send_command(command, argument)

    async def get_variable(
            self,
            variable: int,
            fetch_mode: FetchMode = FetchMode.DEFAULT,
    ) -> int:
        """Read one variable's raw byte value.

        At most one request per variable is in flight; concurrent callers
        share the same pending result. Abandoning the await does not cancel
        the shared request.

        Args:
            variable: Variable identifier byte
            fetch_mode: DEFAULT uses the cache while streaming, FORCE_LOAD always
                sends G, WAIT_FOR_CHANGE waits for the next pushed update

        Returns:
            Raw value byte (0-255)

        Raises:
            StateError: If WAIT_FOR_CHANGE is used while not streaming
            ConnectionClosedError: If the connection closes before a value arrives
            TransportError: If the request could not be sent
        """
        if self._closed:
            raise ConnectionClosedError("Device connection closed")
        self.start()

        value = self._values.get(variable)
        if self._streaming and fetch_mode is FetchMode.DEFAULT and value is not None:
            return value

        pending = self._pending.get(variable)
        if pending is not None:
            return await asyncio.shield(pending)

        if fetch_mode is FetchMode.WAIT_FOR_CHANGE and not self._streaming:
            raise StateError("WaitForChange used while not streaming")

        future: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._pending[variable] = future

        if fetch_mode is not FetchMode.WAIT_FOR_CHANGE:
            try:
                await self._transport.send_command(CommandCode.GET_VARIABLE, variable)
            except X1LinkError as e:
                if self._pending.get(variable) is future:
                    del self._pending[variable]
                if not future.done():
                    future.set_exception(e)

        return await asyncio.shield(future)

    async def _get(self, variable: Variable, wait_for_change: bool) -> int:
        fetch_mode = FetchMode.WAIT_FOR_CHANGE if wait_for_change else FetchMode.DEFAULT
        return await self.get_variable(variable, fetch_mode)

    async def watch_variables(self, enable: bool) -> None:
        """Enable or disable streaming of variable changes (E+ / E-).

        No-op if already in the requested state. On enable the device pushes
        the current value of every streamed variable once.
        """
        if enable == self._streaming:
            return

        await self._send(CommandCode.ENABLE_STREAMING, STREAMING_ON if enable else STREAMING_OFF)
        self._streaming = enable
        _LOGGER.debug("Streaming %s", "enabled" if enable else "disabled")

    async def manual_trigger(self, seconds: float) -> None:
        """Trigger output for a duration (100ms resolution, 0-25.5s).

        Raises:
            StateError: If the duration cannot be encoded in one byte
        """
        try:
            value = trigger_time_to_argument(seconds)
        except ValueError as e:
            raise StateError(str(e)) from e

        await self._send(CommandCode.MANUAL_TRIGGER, value)

    async def get_switch_mode(self, switch: PulseWidthSwitch) -> Mode | int:
        """Mode assigned to a pulse width switch position."""
        return _known_or_raw(Mode, await self.get_variable(SWITCH_MODE_VARIABLES[switch]))

    async def set_switch_mode(self, switch: PulseWidthSwitch, mode: Mode) -> None:
        """Assign a mode to a pulse width switch position.

        The device does not echo this change, so the cache is updated (and
        any pending read resolved) once the command has been sent.
        """
        variable = SWITCH_MODE_VARIABLES[switch]
        await self._send(variable, mode)
        self._set_value(variable, int(mode))

    async def get_enabled_channels(self, wait_for_change: bool = False) -> int:
        """Output channel bitmask."""
        return await self._get(Variable.ENABLED_CHANNELS, wait_for_change)

    async def set_enabled_channels(self, channel_mask: int) -> None:
        await self._send(CommandCode.SET_CHANNELS, channel_mask)

    async def get_countdown_time_remaining(self, wait_for_change: bool = False) -> int:
        """Seconds remaining in the current mode step."""
        return await self._get(Variable.COUNTDOWN, wait_for_change)

    async def get_pulse_rate_knob_value(self, wait_for_change: bool = False) -> int:
        return await self._get(Variable.PULSE_RATE_KNOB, wait_for_change)

    async def get_mode_info(self, wait_for_change: bool = False) -> int:
        """Mode-specific auxiliary value (e.g. Purgatory level)."""
        return await self._get(Variable.MODE_INFO, wait_for_change)

    async def get_input_voltage(self, wait_for_change: bool = False) -> float:
        """Supply voltage in volts."""
        return await self._get(Variable.INPUT_VOLTAGE, wait_for_change) / 10

    async def get_current_mode(self, wait_for_change: bool = False) -> Mode | int:
        """Current mode; modes unknown to this library come back as ints."""
        return _known_or_raw(Mode, await self._get(Variable.CURRENT_MODE, wait_for_change))

    async def set_current_mode(self, mode: Mode) -> None:
        await self._send(CommandCode.SET_MODE, mode)

    async def get_pulse_width_switch_value(self, wait_for_change: bool = False) -> PulseWidthSwitch | int:
        return _known_or_raw(
            PulseWidthSwitch, await self._get(Variable.PULSE_WIDTH_SWITCH, wait_for_change)
        )

    async def get_trigger_rate_knob_value(self, wait_for_change: bool = False) -> int:
        return await self._get(Variable.TRIGGER_RATE_KNOB, wait_for_change)

    async def get_firmware_version(self) -> int:
        return await self.get_variable(Variable.FIRMWARE_VERSION)

    async def get_trigger_mode_switch_value(self, wait_for_change: bool = False) -> TriggerModeSwitch | int:
        return _known_or_raw(
            TriggerModeSwitch, await self._get(Variable.TRIGGER_MODE_SWITCH, wait_for_change)
        )

    async def get_unit_mode(self) -> int:
        return await self.get_variable(Variable.UNIT_MODE)

    async def get_output_percentage(self) -> float:
        """Output level as a fraction (0.0-1.0).

        Output level is not streamed, so this always queries the device.
        """
        return await self.get_variable(Variable.OUTPUT_PERCENTAGE, FetchMode.FORCE_LOAD) / 255

    async def get_buzzer_mode(self, wait_for_change: bool = False) -> BuzzerMode | int:
        return _known_or_raw(BuzzerMode, await self._get(Variable.BUZZER_MODE, wait_for_change))

    async def set_buzzer_mode(self, buzzer_mode: BuzzerMode) -> None:
        await self._send(CommandCode.SET_BUZZER_MODE, buzzer_mode)

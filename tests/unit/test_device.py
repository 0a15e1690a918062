"""Test the Device protocol engine against a fake transport."""

from __future__ import annotations

import asyncio
import logging

import pytest

from x1link import Device
from x1link.exceptions import ConnectionClosedError, SerialConnectionError, StateError
from x1link.models.enums import FetchMode, Mode, PulseWidthSwitch, Variable
from x1link.models.messages import Message, TextMessage, VariableUpdate
from x1link.protocol.commands import CommandCode
from x1link.transport.base import TransportKind

G = CommandCode.GET_VARIABLE


class _FakeTransport:
    """In-memory transport; answers G requests from a value table."""

    kind = TransportKind.MOCK
    is_connected = True

    def __init__(self, values: dict[int, int] | None = None, echo: bool = True):
        self.values = dict(values or {})
        self.echo = echo
        self.fail_writes = False
        self.sent: list[tuple[int, int]] = []
        self._queue: asyncio.Queue[Message | None] = asyncio.Queue()

    async def send_command(self, command: int, argument: int) -> None:
        if self.fail_writes:
            raise SerialConnectionError("Write failed: port gone")
        self.sent.append((command, argument))
        if self.echo and command == G and argument in self.values:
            self.push(argument, self.values[argument])

    def push(self, variable: int, value: int) -> None:
        self._queue.put_nowait(VariableUpdate(variable=variable, value=value))

    def push_text(self, text: str) -> None:
        self._queue.put_nowait(TextMessage(text))

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def messages(self):
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.end()

    def add_disconnect_callback(self, callback):
        return lambda: None


async def _settle() -> None:
    """Let the message task process everything queued."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_get_variable_sends_g_and_returns_echo() -> None:
    """A plain read sends G + variable and resolves with the echoed value."""
    transport = _FakeTransport(values={Variable.FIRMWARE_VERSION: 7})

    async with Device(transport) as device:
        assert await device.get_firmware_version() == 7

    assert transport.sent == [(G, ord("s"))]


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_request() -> None:
    """Concurrent reads of one variable send a single G and share the result."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        first = asyncio.create_task(device.get_current_mode())
        second = asyncio.create_task(device.get_current_mode())
        await _settle()

        assert transport.sent == [(G, ord("m"))]

        transport.push(Variable.CURRENT_MODE, Mode.PULSE)
        assert await first == Mode.PULSE
        assert await second == Mode.PULSE


@pytest.mark.asyncio
async def test_abandoned_reader_does_not_cancel_shared_request() -> None:
    """Cancelling one waiter leaves the shared request alive for the others."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        first = asyncio.create_task(device.get_variable(Variable.PULSE_RATE_KNOB))
        second = asyncio.create_task(device.get_variable(Variable.PULSE_RATE_KNOB))
        await _settle()

        first.cancel()
        await _settle()
        transport.push(Variable.PULSE_RATE_KNOB, 42)

        assert await second == 42
        assert first.cancelled()


@pytest.mark.asyncio
async def test_default_read_uses_cache_while_streaming() -> None:
    """While streaming, DEFAULT reads are answered from the cache."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        await device.watch_variables(True)
        transport.push(Variable.PULSE_RATE_KNOB, 20)
        await _settle()

        assert await device.get_pulse_rate_knob_value() == 20
        assert device.cached_value(Variable.PULSE_RATE_KNOB) == 20

    assert transport.sent == [(CommandCode.ENABLE_STREAMING, ord("+"))]


@pytest.mark.asyncio
async def test_default_read_queries_when_not_streaming() -> None:
    """Without streaming the cache may be stale, so every read queries."""
    transport = _FakeTransport(values={Variable.ENABLED_CHANNELS: 3})

    async with Device(transport) as device:
        assert await device.get_enabled_channels() == 3
        transport.values[Variable.ENABLED_CHANNELS] = 1
        assert await device.get_enabled_channels() == 1

    assert transport.sent == [(G, ord("c")), (G, ord("c"))]


@pytest.mark.asyncio
async def test_force_load_queries_while_streaming() -> None:
    """FORCE_LOAD ignores the cache."""
    transport = _FakeTransport(values={Variable.TRIGGER_RATE_KNOB: 9})

    async with Device(transport) as device:
        await device.watch_variables(True)
        transport.push(Variable.TRIGGER_RATE_KNOB, 1)
        await _settle()

        value = await device.get_variable(Variable.TRIGGER_RATE_KNOB, FetchMode.FORCE_LOAD)

    assert value == 9
    assert (G, ord("r")) in transport.sent


@pytest.mark.asyncio
async def test_wait_for_change_requires_streaming() -> None:
    """WAIT_FOR_CHANGE while not streaming fails without sending anything."""
    transport = _FakeTransport(values={Variable.COUNTDOWN: 12})

    async with Device(transport) as device:
        with pytest.raises(StateError, match="WaitForChange"):
            await device.get_countdown_time_remaining(wait_for_change=True)

        assert transport.sent == []

        # No request was left behind
        assert await device.get_countdown_time_remaining() == 12


@pytest.mark.asyncio
async def test_wait_for_change_waits_for_next_push() -> None:
    """WAIT_FOR_CHANGE skips the cached value and sends no G."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        await device.watch_variables(True)
        transport.push(Variable.PULSE_RATE_KNOB, 20)
        await _settle()

        waiter = asyncio.create_task(device.get_pulse_rate_knob_value(wait_for_change=True))
        await _settle()
        assert not waiter.done()

        transport.push(Variable.PULSE_RATE_KNOB, 21)
        assert await waiter == 21

    assert transport.sent == [(CommandCode.ENABLE_STREAMING, ord("+"))]


@pytest.mark.asyncio
async def test_mode_change_resets_mode_dependent_variables() -> None:
    """A mode update zeroes mode info and countdown and resolves their readers."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        transport.push(Variable.MODE_INFO, 4)
        transport.push(Variable.COUNTDOWN, 30)
        await _settle()

        reader = asyncio.create_task(device.get_mode_info())
        await _settle()

        transport.push(Variable.CURRENT_MODE, Mode.PURGATORY)
        assert await reader == 0

        assert device.cached_value(Variable.CURRENT_MODE) == Mode.PURGATORY
        assert device.cached_value(Variable.MODE_INFO) == 0
        assert device.cached_value(Variable.COUNTDOWN) == 0


@pytest.mark.asyncio
async def test_stream_end_rejects_every_pending_read() -> None:
    """All pending reads fail with ConnectionClosedError when the link drops."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        readers = [
            asyncio.create_task(device.get_current_mode()),
            asyncio.create_task(device.get_input_voltage()),
            asyncio.create_task(device.get_unit_mode()),
        ]
        await _settle()

        transport.end()
        results = await asyncio.gather(*readers, return_exceptions=True)

        assert all(isinstance(result, ConnectionClosedError) for result in results)
        assert device.closed

        with pytest.raises(ConnectionClosedError):
            await device.get_current_mode()


@pytest.mark.asyncio
async def test_close_rejects_pending_reads() -> None:
    transport = _FakeTransport(echo=False)
    device = Device(transport)
    device.start()

    reader = asyncio.create_task(device.get_firmware_version())
    await _settle()
    await device.close()

    with pytest.raises(ConnectionClosedError):
        await reader


@pytest.mark.asyncio
async def test_send_failure_fails_read_and_clears_request() -> None:
    """A failed G write fails the read; the next read sends again."""
    transport = _FakeTransport(values={Variable.BUZZER_MODE: 1})

    async with Device(transport) as device:
        transport.fail_writes = True
        with pytest.raises(SerialConnectionError):
            await device.get_buzzer_mode()

        transport.fail_writes = False
        assert await device.get_buzzer_mode() == 1


@pytest.mark.asyncio
async def test_watch_variables_is_idempotent() -> None:
    transport = _FakeTransport()

    async with Device(transport) as device:
        await device.watch_variables(True)
        await device.watch_variables(True)
        assert device.streaming

        await device.watch_variables(False)
        assert not device.streaming

    assert transport.sent == [
        (CommandCode.ENABLE_STREAMING, ord("+")),
        (CommandCode.ENABLE_STREAMING, ord("-")),
    ]


@pytest.mark.asyncio
async def test_manual_trigger_encodes_deciseconds() -> None:
    transport = _FakeTransport()

    async with Device(transport) as device:
        await device.manual_trigger(2.5)
        await device.manual_trigger(0.25)
        await device.manual_trigger(0.05)

    assert transport.sent == [
        (CommandCode.MANUAL_TRIGGER, 25),
        (CommandCode.MANUAL_TRIGGER, 3),
        (CommandCode.MANUAL_TRIGGER, 1),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("seconds", [-1, 25.6, 60, float("inf"), float("nan")])
async def test_manual_trigger_out_of_range(seconds) -> None:
    """Durations that do not fit in one byte are rejected before sending."""
    transport = _FakeTransport()

    async with Device(transport) as device:
        with pytest.raises(StateError, match="out of range"):
            await device.manual_trigger(seconds)

    assert transport.sent == []


@pytest.mark.asyncio
async def test_set_switch_mode_updates_cache_without_echo() -> None:
    """Switch-mode writes are applied locally since the device never echoes them."""
    transport = _FakeTransport(echo=False)

    async with Device(transport) as device:
        reader = asyncio.create_task(device.get_switch_mode(PulseWidthSwitch.MEDIUM))
        await _settle()

        await device.set_switch_mode(PulseWidthSwitch.MEDIUM, Mode.RAMP_PULSE)

        assert await reader == Mode.RAMP_PULSE
        assert device.cached_value(Variable.MEDIUM_SWITCH_MODE) == Mode.RAMP_PULSE

    assert transport.sent == [(G, ord("3")), (ord("3"), Mode.RAMP_PULSE)]


@pytest.mark.asyncio
async def test_unknown_enum_values_are_returned_raw() -> None:
    """Bytes outside the known enums come back as plain ints."""
    transport = _FakeTransport(
        values={
            Variable.CURRENT_MODE: 0x12,
            Variable.PULSE_WIDTH_SWITCH: 9,
            Variable.TRIGGER_MODE_SWITCH: 7,
            Variable.BUZZER_MODE: 5,
            Variable.SHORT_SWITCH_MODE: 0x40,
        }
    )

    async with Device(transport) as device:
        mode = await device.get_current_mode()
        assert mode == 0x12
        assert not isinstance(mode, Mode)
        assert await device.get_pulse_width_switch_value() == 9
        assert await device.get_trigger_mode_switch_value() == 7
        assert await device.get_buzzer_mode() == 5
        assert await device.get_switch_mode(PulseWidthSwitch.SHORT) == 0x40


@pytest.mark.asyncio
async def test_known_enum_values_are_members() -> None:
    transport = _FakeTransport(values={Variable.CURRENT_MODE: Mode.PULSE})

    async with Device(transport) as device:
        assert await device.get_current_mode() is Mode.PULSE


@pytest.mark.asyncio
async def test_setters_send_commands() -> None:
    transport = _FakeTransport()

    async with Device(transport) as device:
        await device.set_current_mode(Mode.DEMON_PLAY)
        await device.set_enabled_channels(0x03)
        await device.set_buzzer_mode(1)

    assert transport.sent == [
        (CommandCode.SET_MODE, 0x11),
        (CommandCode.SET_CHANNELS, 0x03),
        (CommandCode.SET_BUZZER_MODE, 1),
    ]


@pytest.mark.asyncio
async def test_scaled_getters() -> None:
    """Voltage is in tenths of volts; output percentage is out of 255."""
    transport = _FakeTransport(
        values={Variable.INPUT_VOLTAGE: 123, Variable.OUTPUT_PERCENTAGE: 51}
    )

    async with Device(transport) as device:
        await device.watch_variables(True)
        transport.push(Variable.OUTPUT_PERCENTAGE, 255)
        await _settle()

        assert await device.get_input_voltage() == pytest.approx(12.3)
        assert await device.get_output_percentage() == pytest.approx(0.2)

    assert (G, ord("v")) in transport.sent


@pytest.mark.asyncio
async def test_text_messages_are_logged(caplog) -> None:
    """Device text output is logged and does not disturb variable handling."""
    caplog.set_level(logging.INFO, logger="x1link.device")
    transport = _FakeTransport(values={Variable.FIRMWARE_VERSION: 5})

    async with Device(transport) as device:
        transport.push_text("Low battery\r\n")
        assert await device.get_firmware_version() == 5

    assert "Device message: Low battery" in caplog.text

"""Stream X1 variable changes over serial or a BLE bridge.

Usage:
    uv run python examples/watch_variables.py --serial /dev/ttyUSB0 --duration 30
    uv run python examples/watch_variables.py --ble AA:BB:CC:DD:EE:FF
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime

from x1link import BLEConnection, Device, SerialConnection, Variable, get_mode_name


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _describe(variable: Variable, value: int) -> str:
    if variable == Variable.CURRENT_MODE:
        return get_mode_name(value) or f"0x{value:02x}"
    if variable == Variable.INPUT_VOLTAGE:
        return f"{value / 10:.1f}V"
    return str(value)


async def watch(serial_port: str | None, ble_address: str | None, duration: float) -> None:
    """Print every variable change pushed by the device."""
    async with AsyncExitStack() as stack:
        if serial_port:
            transport = await stack.enter_async_context(SerialConnection(serial_port))
        else:
            transport = await stack.enter_async_context(BLEConnection(ble_address))
        device = await stack.enter_async_context(Device(transport))

        version = await device.get_firmware_version()
        print(f"[{_timestamp()}] Connected ({transport.kind.value}), firmware version {version}")

        await device.watch_variables(True)
        last: dict[Variable, int | None] = {}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration > 0 else None

        while not device.closed and (deadline is None or loop.time() < deadline):
            for variable in Variable:
                value = device.cached_value(variable)
                if value is not None and last.get(variable) != value:
                    last[variable] = value
                    print(f"[{_timestamp()}] {variable.name} = {_describe(variable, value)}")
            await asyncio.sleep(0.2)

        if device.closed:
            print(f"[{_timestamp()}] Device disconnected")
        else:
            await device.watch_variables(False)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stream X1 variable changes.")
    link = parser.add_mutually_exclusive_group(required=True)
    link.add_argument("--serial", help="Serial port or pyserial URL")
    link.add_argument("--ble", help="Bridge BLE address")
    parser.add_argument(
        "--duration",
        type=float,
        default=30.0,
        help="Watch duration in seconds (0 = run until Ctrl+C). Default: 30",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    try:
        asyncio.run(watch(serial_port=args.serial, ble_address=args.ble, duration=args.duration))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

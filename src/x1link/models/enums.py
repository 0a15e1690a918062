from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final


class Variable(IntEnum):
    """Single-byte variable identifiers (ASCII codes).

    Values are one byte each; interpretation is per variable.
    """
    SHORT_SWITCH_MODE = ord("1")
    NORMAL_SWITCH_MODE = ord("2")
    MEDIUM_SWITCH_MODE = ord("3")
    LONG_SWITCH_MODE = ord("4")
    ENABLED_CHANNELS = ord("c")
    COUNTDOWN = ord("d")          # Seconds remaining in the current mode step
    PULSE_RATE_KNOB = ord("f")
    MODE_INFO = ord("i")
    INPUT_VOLTAGE = ord("l")      # Tenths of volts (0x7B = 12.3V)
    CURRENT_MODE = ord("m")
    PULSE_WIDTH_SWITCH = ord("p")
    TRIGGER_RATE_KNOB = ord("r")
    FIRMWARE_VERSION = ord("s")
    TRIGGER_MODE_SWITCH = ord("t")
    UNIT_MODE = ord("u")
    OUTPUT_PERCENTAGE = ord("v")  # Percentage * 255
    BUZZER_MODE = ord("z")


class FetchMode(Enum):
    """Policy for satisfying a variable read."""
    DEFAULT = "default"                   # Cache while streaming, otherwise pull
    FORCE_LOAD = "force_load"             # Always send G and wait for the echo
    WAIT_FOR_CHANGE = "wait_for_change"   # Wait for the next pushed update


class Mode(IntEnum):
    """Device program ordinals reported by the current mode variable."""
    TORMENT = 0x00
    SMOOTH_SUFFERING = 0x01
    BITCH_TRAINING = 0x02
    TURBO_THRUSTER = 0x03
    RANDOM = 0x04
    RANDOM_BITCH = 0x05
    PURGATORY = 0x06
    PURGATORY_CHAOS = 0x07
    PERSISTENT_PAIN = 0x08
    PULSE = 0x09
    RAMP_PULSE = 0x0A
    RAMP_REPEAT = 0x0B
    RAMP_INTENSITY = 0x0C
    AUDIO_ATTACK = 0x0D
    TORMENT_LOW_VOLTAGE = 0x0E
    POWER_WAVES_LOW_VOLTAGE = 0x0F
    SPEED_WAVES = 0x10
    DEMON_PLAY = 0x11
    EXTREME_TORMENT = 0x80
    EXTREME_BITCH_TRAINING = 0x81


class PulseWidthSwitch(IntEnum):
    """Pulse width switch positions as reported by the device."""
    NORMAL = 0x00
    SHORT = 0x01
    LONG = 0x02
    MEDIUM = 0x03


class TriggerModeSwitch(IntEnum):
    """Trigger mode switch positions."""
    PULSE = 0x00
    CONTINUOUS = 0x01
    AUDIO = 0x02
    MANUAL = 0x03


class BuzzerMode(IntEnum):
    """Buzzer behaviour."""
    ALWAYS = 0x00
    WHEN_OUTPUT = 0x01


class ScanState(IntEnum):
    """Bridge scan state as stored in the scan characteristic."""
    NOT_SCANNING = 0x00
    SCANNING = 0x01
    SCANNING_DISABLED = 0xFF


MODE_NAMES: Final[dict[Mode, str]] = {
    Mode.TORMENT: "Torment",
    Mode.SMOOTH_SUFFERING: "Smooth Suffering",
    Mode.BITCH_TRAINING: "Bitch Training",
    Mode.TURBO_THRUSTER: "Turbo Thruster",
    Mode.RANDOM: "Random",
    Mode.RANDOM_BITCH: "Random Bitch",
    Mode.PURGATORY: "Purgatory",
    Mode.PURGATORY_CHAOS: "Purgatory Chaos",
    Mode.PERSISTENT_PAIN: "Persistent Pain",
    Mode.PULSE: "Pulse",
    Mode.RAMP_PULSE: "Ramp Pulse",
    Mode.RAMP_REPEAT: "Ramp Repeat",
    Mode.RAMP_INTENSITY: "Ramp Intensity",
    Mode.AUDIO_ATTACK: "Audio Attack",
    Mode.TORMENT_LOW_VOLTAGE: "Torment (LV)",
    Mode.POWER_WAVES_LOW_VOLTAGE: "Power Waves (LV)",
    Mode.SPEED_WAVES: "Speed Waves",
    Mode.DEMON_PLAY: "Demon Play",
    Mode.EXTREME_TORMENT: "Extreme Torment",
    Mode.EXTREME_BITCH_TRAINING: "Extreme Bitch Training",
}

# Switch-mode variables are keyed by pulse width switch position.
SWITCH_MODE_VARIABLES: Final[dict[PulseWidthSwitch, Variable]] = {
    PulseWidthSwitch.SHORT: Variable.SHORT_SWITCH_MODE,
    PulseWidthSwitch.NORMAL: Variable.NORMAL_SWITCH_MODE,
    PulseWidthSwitch.MEDIUM: Variable.MEDIUM_SWITCH_MODE,
    PulseWidthSwitch.LONG: Variable.LONG_SWITCH_MODE,
}


def get_mode_name(mode: Mode | int) -> str | None:
    """Get human-readable mode name, if known."""
    try:
        return MODE_NAMES[Mode(mode)]
    except (ValueError, KeyError):
        return None

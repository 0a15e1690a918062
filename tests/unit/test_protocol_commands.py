import pytest

from x1link.protocol.commands import (
    CommandCode,
    build_command,
    trigger_time_to_argument,
)


class TestCommandBuilders:
    """Test command builder functions."""

    def test_build_command(self):
        """Verb followed by its argument."""
        assert build_command(CommandCode.GET_VARIABLE, ord("m")) == b"Gm"
        assert build_command(CommandCode.ENABLE_STREAMING, ord("+")) == b"E+"

    def test_build_command_switch_mode(self):
        """Switch-mode setters use the variable byte as the command."""
        assert build_command(ord("2"), 0x06) == b"2\x06"

    def test_build_command_rejects_large_command(self):
        with pytest.raises(ValueError, match="command"):
            build_command(0x100, 0)

    def test_command_codes(self):
        assert CommandCode.GET_VARIABLE == ord("G")
        assert CommandCode.MANUAL_TRIGGER == ord("T")
        assert CommandCode.SET_BUZZER_MODE == ord("Z")


class TestTriggerTime:
    """Test manual trigger duration encoding (100ms units)."""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0, 0), (0.1, 1), (2.5, 25), (25.5, 255), (1.04, 10), (0.25, 3), (0.05, 1)],
    )
    def test_encodes_deciseconds(self, seconds, expected):
        assert trigger_time_to_argument(seconds) == expected

    @pytest.mark.parametrize(
        "seconds", [-0.1, 25.6, 100, float("inf"), float("-inf"), float("nan")]
    )
    def test_out_of_range(self, seconds):
        with pytest.raises(ValueError, match="out of range"):
            trigger_time_to_argument(seconds)

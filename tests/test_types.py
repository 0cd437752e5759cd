"""Tests for shared types."""

import pytest

from partflash.types import (
    DeviceMode,
    FlashOptions,
    SessionOutcome,
    SessionState,
    Slot,
    SourceKind,
    StepStatus,
)


class TestEnums:
    """Test enum values."""

    def test_source_kind_values(self) -> None:
        """SourceKind values should be stable strings."""
        assert SourceKind.LOCAL_FILE.value == "local-file"
        assert SourceKind.SCRIPT_TASK.value == "script-task"
        assert SourceKind.LOCAL_PAYLOAD.value == "local-payload"
        assert SourceKind.REMOTE_PAYLOAD.value == "remote-payload"

    def test_device_mode_is_str(self) -> None:
        """Enums compare equal to their string values."""
        assert DeviceMode.FASTBOOTD == "fastbootd"
        assert StepStatus.SKIPPED == "skipped"

    def test_terminal_states(self) -> None:
        """Only completed, cancelled and failed are terminal."""
        terminal = {s for s in SessionState if s.is_terminal}
        assert terminal == {
            SessionState.COMPLETED,
            SessionState.CANCELLED,
            SessionState.FAILED,
        }


class TestSlot:
    """Test slot parsing."""

    @pytest.mark.parametrize("raw", ["a", "A", "_a", " _A "])
    def test_parse_a(self, raw: str) -> None:
        assert Slot.parse(raw) == Slot.A

    def test_parse_b(self) -> None:
        assert Slot.parse("_b") == Slot.B

    @pytest.mark.parametrize("raw", [None, "", "c", "ab"])
    def test_parse_unknown(self, raw) -> None:
        assert Slot.parse(raw) == Slot.UNKNOWN


class TestFlashOptions:
    """Test FlashOptions defaults and validation."""

    def test_defaults(self) -> None:
        """Defaults match the usual flashing setup."""
        options = FlashOptions()
        assert options.ab_flash_mode is False
        assert options.target_slot == "a"
        assert options.pure_fbd_mode is False
        assert options.clear_data is False
        assert options.erase_frp is True
        assert options.auto_reboot is False
        assert options.cleanup_cow_snapshots is True

    def test_target_slot_normalized(self) -> None:
        """Target slot accepts suffix notation."""
        assert FlashOptions(target_slot="_B").target_slot == "b"

    def test_invalid_target_slot(self) -> None:
        with pytest.raises(ValueError, match="target_slot"):
            FlashOptions(target_slot="c")

    def test_frozen(self) -> None:
        """Options are snapshotted and cannot be changed."""
        options = FlashOptions()
        with pytest.raises(AttributeError):
            options.clear_data = True  # type: ignore[misc]


class TestSessionOutcome:
    """Test SessionOutcome."""

    def test_full_success(self) -> None:
        outcome = SessionOutcome(session_id="x", state=SessionState.COMPLETED, succeeded=3)
        assert outcome.is_full_success

    def test_skipped_is_not_full_success(self) -> None:
        outcome = SessionOutcome(
            session_id="x", state=SessionState.COMPLETED, succeeded=3, skipped=1
        )
        assert not outcome.is_full_success

"""Shared type definitions for partflash.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class SourceKind(str, Enum):
    """Where the image data for a partition comes from."""

    LOCAL_FILE = "local-file"
    SCRIPT_TASK = "script-task"
    LOCAL_PAYLOAD = "local-payload"
    REMOTE_PAYLOAD = "remote-payload"


class DeviceMode(str, Enum):
    """Protocol mode of the device's flashing firmware."""

    BOOTLOADER = "bootloader"
    FASTBOOTD = "fastbootd"
    RECOVERY = "recovery"
    UNKNOWN = "unknown"


class Slot(str, Enum):
    """A/B slot identifier."""

    A = "a"
    B = "b"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Slot":
        """Parse a slot string as reported by the device.

        Accepts 'a', 'b', '_a', '_b' in any case. Anything else is UNKNOWN.
        """
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower().lstrip("_")
        if normalized == "a":
            return cls.A
        if normalized == "b":
            return cls.B
        return cls.UNKNOWN


class SessionState(str, Enum):
    """State of a flash session."""

    IDLE = "idle"
    DETECTING_MODE = "detecting-mode"
    TRANSITIONING_MODE = "transitioning-mode"
    AWAITING_RECONNECT = "awaiting-reconnect"
    EXTRACTING_SOURCES = "extracting-sources"
    FLASHING = "flashing"
    POST_PROCESSING = "post-processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the session has finished."""
        return self in (
            SessionState.COMPLETED,
            SessionState.CANCELLED,
            SessionState.FAILED,
        )


class StepStatus(str, Enum):
    """Status of a single planned flash step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FlashOptions:
    """Options for a flash session, snapshotted at session start.

    Attributes:
        ab_flash_mode: Flash non-logical partitions to both slots.
        target_slot: Slot to flash logical partitions to in AB mode.
        pure_fbd_mode: Flash everything (modem included) in FastbootD.
        clear_data: Wipe user data after flashing.
        erase_frp: Erase the factory reset protection partition.
        auto_reboot: Reboot to system when done.
        cleanup_cow_snapshots: Delete leftover OTA snapshot partitions
            before flashing in FastbootD.
    """

    ab_flash_mode: bool = False
    target_slot: str = "a"
    pure_fbd_mode: bool = False
    clear_data: bool = False
    erase_frp: bool = True
    auto_reboot: bool = False
    cleanup_cow_snapshots: bool = True

    def __post_init__(self) -> None:
        if Slot.parse(self.target_slot) == Slot.UNKNOWN:
            raise ValueError(f"target_slot must be 'a' or 'b', got '{self.target_slot}'")
        object.__setattr__(self, "target_slot", Slot.parse(self.target_slot).value)


@dataclass(frozen=True)
class ProgressSample:
    """A single progress update.

    Attributes:
        overall_percent: Progress of the whole session (0-100).
        sub_percent: Progress of the current step (0-100).
        speed_bytes_per_sec: Smoothed transfer speed.
        elapsed: Seconds since the session started.
        step_index: Index of the step this sample belongs to.
        target_name: Partition name being written (e.g. 'boot_a').
    """

    overall_percent: float
    sub_percent: float
    speed_bytes_per_sec: float
    elapsed: float
    step_index: int | None = None
    target_name: str | None = None


@dataclass(frozen=True)
class StepEvent:
    """Outcome of a single flash step, pushed to the presentation sink."""

    index: int
    target_name: str
    status: StepStatus
    error_code: str | None = None
    message: str | None = None


@dataclass
class PostFlashReport:
    """Result of the post-flash policies.

    Attributes:
        frp_erased: Name of the FRP partition erased, if any.
        data_wiped: Whether user data was wiped automatically.
        manual_wipe_required: Whether the user must wipe data via Recovery.
        rebooted: Whether the final reboot was issued successfully.
        warnings: Human-readable warnings collected along the way.
    """

    frp_erased: str | None = None
    data_wiped: bool = False
    manual_wipe_required: bool = False
    rebooted: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class SessionOutcome:
    """Final tally of a flash session.

    Attributes:
        session_id: ID of the session.
        state: Terminal state of the session.
        succeeded: Number of steps flashed successfully.
        failed: Number of steps that failed.
        skipped: Number of units/steps that were skipped.
        steps: Per-step outcome events, in plan order.
        post_flash: Report from post-flash policies (None if not run).
    """

    session_id: str
    state: SessionState
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    steps: list[StepEvent] = field(default_factory=list)
    post_flash: PostFlashReport | None = None

    @property
    def is_full_success(self) -> bool:
        """Whether every selected partition was flashed."""
        return self.failed == 0 and self.skipped == 0


__all__ = [
    "DeviceMode",
    "FlashOptions",
    "PostFlashReport",
    "ProgressSample",
    "SessionOutcome",
    "SessionState",
    "Slot",
    "SourceKind",
    "StepEvent",
    "StepStatus",
]

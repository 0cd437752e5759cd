"""Two-level progress and throughput tracking.

Transfer callbacks arrive in bursts of very different sizes. This module
turns them into a steady stream of samples:
- overall progress across all steps plus progress within the current step
- exponentially smoothed transfer speed, updated at most every 200 ms
- emissions throttled to about 60 per second, with a forced flush near
  the end of a step so the display never stalls just short of done
"""

import logging
import math
import time
from collections.abc import Callable

from partflash.types import ProgressSample

logger = logging.getLogger(__name__)

# Minimum time between speed recomputations (seconds)
SPEED_SAMPLE_INTERVAL = 0.2
# Weight of the previous speed in the moving average
SPEED_SMOOTHING = 0.6
# Minimum time between emitted samples (seconds), roughly 60 Hz
EMIT_INTERVAL = 0.016
# Step progress at which every sample is emitted
FORCE_FLUSH_PERCENT = 95.0


class ProgressAggregator:
    """Aggregates per-step byte counts into session progress samples.

    Args:
        total_steps: Number of steps in the plan.
        on_sample: Receives each emitted sample.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        total_steps: int,
        on_sample: Callable[[ProgressSample], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total_steps = max(total_steps, 0)
        self.on_sample = on_sample
        self._clock = clock

        self._started_at = clock()
        self._overall = 0.0
        self._speed = 0.0

        self._step_index: int | None = None
        self._step_sent = 0
        self._base_bytes = 0

        self._speed_time = self._started_at
        self._speed_bytes = 0
        self._last_emit = -math.inf

    @property
    def overall_percent(self) -> float:
        return self._overall

    @property
    def speed_bytes_per_sec(self) -> float:
        return self._speed

    @property
    def bytes_transferred(self) -> int:
        """Bytes reported across all steps so far."""
        return self._base_bytes + self._step_sent

    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def on_bytes(
        self,
        step_index: int,
        sent: int,
        total: int,
        target_name: str | None = None,
    ) -> ProgressSample | None:
        """Record a transfer callback for a step.

        Args:
            step_index: Index of the step being transferred.
            sent: Bytes sent so far for this step.
            total: Total bytes for this step.
            target_name: Partition being written, copied into the sample.

        Returns:
            The emitted sample, or None if throttled.
        """
        now = self._clock()

        new_step = step_index != self._step_index
        if new_step:
            self._base_bytes += self._step_sent
            self._step_index = step_index
            self._step_sent = 0
        self._step_sent = max(self._step_sent, sent)
        if new_step:
            # Speed baseline restarts at the first callback of each step
            self._speed_time = now
            self._speed_bytes = self.bytes_transferred

        if total > 0:
            sub = min(max(sent * 100.0 / total, 0.0), 100.0)
        else:
            sub = 0.0
        self._advance((step_index * 100.0 + sub) / self.total_steps if self.total_steps else 0.0)

        cumulative = self.bytes_transferred
        dt = now - self._speed_time
        advanced = cumulative - self._speed_bytes
        if dt >= SPEED_SAMPLE_INTERVAL and advanced > 0:
            instant = advanced / dt
            if self._speed > 0:
                self._speed = self._speed * SPEED_SMOOTHING + instant * (1 - SPEED_SMOOTHING)
            else:
                self._speed = instant
            self._speed_time = now
            self._speed_bytes = cumulative

        if now - self._last_emit >= EMIT_INTERVAL or sub >= FORCE_FLUSH_PERCENT:
            return self._emit(now, sub, step_index, target_name)
        return None

    def complete_step(
        self, step_index: int, target_name: str | None = None
    ) -> ProgressSample:
        """Move overall progress to the end of a step and emit.

        Used for every finished step, including failed and skipped ones,
        so the overall bar keeps moving.
        """
        if self.total_steps:
            self._advance((step_index + 1) * 100.0 / self.total_steps)
        return self._emit(self._clock(), 100.0, step_index, target_name)

    def finish(self) -> ProgressSample:
        """Emit a final 100% sample."""
        self._advance(100.0)
        return self._emit(self._clock(), 100.0, self._step_index, None)

    def _advance(self, overall: float) -> None:
        # Overall progress never goes backwards within a session
        self._overall = max(self._overall, min(overall, 100.0))

    def _emit(
        self,
        now: float,
        sub: float,
        step_index: int | None,
        target_name: str | None,
    ) -> ProgressSample:
        sample = ProgressSample(
            overall_percent=self._overall,
            sub_percent=sub,
            speed_bytes_per_sec=self._speed,
            elapsed=now - self._started_at,
            step_index=step_index,
            target_name=target_name,
        )
        self._last_emit = now
        if self.on_sample:
            self.on_sample(sample)
        return sample


def format_speed(bytes_per_sec: float) -> str:
    """Format a transfer speed for display."""
    if bytes_per_sec >= 1024 * 1024:
        return f"{bytes_per_sec / (1024 * 1024):.1f} MB/s"
    if bytes_per_sec >= 1024:
        return f"{bytes_per_sec / 1024:.1f} KB/s"
    return f"{bytes_per_sec:.0f} B/s"


def format_size(size_bytes: int) -> str:
    """Format a byte count for display."""
    if size_bytes >= 1024**3:
        return f"{size_bytes / 1024**3:.2f} GB"
    if size_bytes >= 1024**2:
        return f"{size_bytes / 1024**2:.2f} MB"
    if size_bytes >= 1024:
        return f"{size_bytes / 1024:.2f} KB"
    return f"{size_bytes} B"


__all__ = [
    "EMIT_INTERVAL",
    "FORCE_FLUSH_PERCENT",
    "SPEED_SAMPLE_INTERVAL",
    "SPEED_SMOOTHING",
    "ProgressAggregator",
    "format_size",
    "format_speed",
]

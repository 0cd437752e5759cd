"""Device mode supervision.

Moving between bootloader, FastbootD and recovery reboots the device: it
drops off the bus and re-enumerates after anything from a few seconds to
well over half a minute. The supervisor issues the reboot, then polls the
device list on a fixed interval for a bounded number of attempts, so slow
devices are not declared lost after a single check and a device that is
really gone does not hang the session.
"""

import logging
from collections.abc import Callable

from partflash.flash.errors import (
    FlashAbortedError,
    ReconnectTimeoutError,
    TransitionError,
)
from partflash.flash.link import CancellationToken, DeviceHandle, DeviceLink
from partflash.types import DeviceMode, SessionState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0

# Reboot command argument for each target mode
REBOOT_TARGETS = {
    DeviceMode.BOOTLOADER: "bootloader",
    DeviceMode.FASTBOOTD: "fastboot",
    DeviceMode.RECOVERY: "recovery",
}


class DeviceModeSupervisor:
    """Detects and changes the device's protocol mode.

    Args:
        link: Device transport.
        token: Cancellation token of the owning session.
        poll_interval: Seconds between enumeration attempts while waiting
            for the device to come back.
        on_state: Called with TRANSITIONING_MODE / AWAITING_RECONNECT as the
            transition progresses.
    """

    def __init__(
        self,
        link: DeviceLink,
        token: CancellationToken,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_state: Callable[[SessionState], None] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.link = link
        self.token = token
        self.poll_interval = poll_interval
        self.on_state = on_state
        self.current_mode = DeviceMode.UNKNOWN
        self.handle: DeviceHandle | None = None

    def _set_state(self, state: SessionState) -> None:
        if self.on_state:
            self.on_state(state)

    async def detect_mode(self) -> DeviceMode:
        """Probe the device for its current mode.

        Returns:
            The detected mode; UNKNOWN if the probe failed.
        """
        try:
            mode = await self.link.detect_mode(self.token)
        except FlashAbortedError:
            raise
        except Exception as e:
            logger.warning("Mode detection failed: %s", e)
            mode = DeviceMode.UNKNOWN

        self.current_mode = mode
        logger.info("Device mode: %s", mode.value)
        return mode

    async def await_reconnect(
        self, timeout_seconds: float, *, target: str = "device"
    ) -> DeviceHandle:
        """Wait for the device to re-enumerate and open it.

        Polls every ``poll_interval`` seconds, ``timeout_seconds //
        poll_interval`` times (at least once). Each attempt sleeps first,
        then opens the first enumerated device.

        Args:
            timeout_seconds: Total time budget.
            target: Mode being waited for, used in errors and logs.

        Returns:
            Handle of the reopened device.

        Raises:
            ReconnectTimeoutError: No device could be opened in time.
            FlashAbortedError: The session was cancelled while waiting.
        """
        attempts = max(int(timeout_seconds // self.poll_interval), 1)

        for attempt in range(1, attempts + 1):
            await self.token.sleep(self.poll_interval)

            try:
                serials = await self.link.enumerate_devices(self.token)
            except FlashAbortedError:
                raise
            except Exception as e:
                logger.debug("Enumeration attempt %d failed: %s", attempt, e)
                serials = []

            if serials:
                serial = serials[0]
                try:
                    opened = await self.link.open(serial, self.token)
                except FlashAbortedError:
                    raise
                except Exception as e:
                    logger.debug("Opening %s failed: %s", serial, e)
                    opened = False
                if opened:
                    logger.info("Device %s reconnected after %d attempt(s)", serial, attempt)
                    self.handle = DeviceHandle(serial=serial)
                    return self.handle

            logger.info(
                "Waiting for %s... (%g/%gs)",
                target,
                attempt * self.poll_interval,
                timeout_seconds,
            )

        logger.error("Device did not reconnect within %gs", timeout_seconds)
        raise ReconnectTimeoutError(target, timeout_seconds, attempts)

    async def request_transition(
        self, target: DeviceMode, timeout_seconds: float
    ) -> DeviceHandle:
        """Reboot the device into ``target`` and wait for it to come back.

        Args:
            target: Mode to enter.
            timeout_seconds: Reconnect wait budget.

        Returns:
            Handle of the reopened device.

        Raises:
            TransitionError: Reboot refused, or device came back in another mode.
            ReconnectTimeoutError: Device did not come back in time.
            FlashAbortedError: The session was cancelled.
        """
        reboot_target = REBOOT_TARGETS.get(target)
        if reboot_target is None:
            raise TransitionError(target.value, f"Cannot transition to mode '{target.value}'")

        self._set_state(SessionState.TRANSITIONING_MODE)
        logger.info("Rebooting to %s", target.value)

        try:
            accepted = await self.link.reboot(reboot_target, self.token)
        except FlashAbortedError:
            raise
        except Exception as e:
            raise TransitionError(
                target.value, f"Reboot to {reboot_target} failed: {e}"
            ) from e
        if not accepted:
            raise TransitionError(
                target.value, f"Device refused reboot to {reboot_target}"
            )

        self.current_mode = DeviceMode.UNKNOWN
        self._set_state(SessionState.AWAITING_RECONNECT)
        handle = await self.await_reconnect(timeout_seconds, target=target.value)

        mode = await self.detect_mode()
        if mode == DeviceMode.UNKNOWN:
            logger.warning(
                "Could not confirm %s mode after reconnect, continuing", target.value
            )
            self.current_mode = target
        elif mode != target:
            raise TransitionError(
                target.value,
                f"Device reconnected in {mode.value} mode instead of {target.value}",
            )

        self.handle = DeviceHandle(serial=handle.serial, mode=self.current_mode)
        return self.handle

    async def ensure_mode(
        self, target: DeviceMode, timeout_seconds: float
    ) -> DeviceHandle | None:
        """Make sure the device is in ``target`` mode, transitioning if needed.

        Returns:
            The new handle if a transition happened, else the current handle.
        """
        mode = await self.detect_mode()
        if mode == target:
            return self.handle
        return await self.request_transition(target, timeout_seconds)


__all__ = ["DEFAULT_POLL_INTERVAL", "REBOOT_TARGETS", "DeviceModeSupervisor"]

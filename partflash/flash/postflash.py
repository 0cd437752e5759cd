"""Post-flash policies.

After at least one partition was written, the session can:
- erase the FRP (factory reset protection) partition
- wipe user data, on platform families where the automated wipe is safe
- reboot to the system

Each policy is best-effort: a failure is logged and reported as a warning
and never prevents the next one from running.
"""

import logging
from collections.abc import Awaitable, Callable

from partflash.flash.errors import EraseError, FlashAbortedError
from partflash.flash.link import (
    BootloaderVariableProbe,
    CancellationToken,
    DeviceLink,
    PlatformProbe,
)
from partflash.policy import PartitionPolicy
from partflash.types import FlashOptions, PostFlashReport

logger = logging.getLogger(__name__)


class PostFlashPolicyExecutor:
    """Runs the post-flash policies selected in the session options."""

    def __init__(
        self,
        link: DeviceLink,
        token: CancellationToken,
        policy: PartitionPolicy | None = None,
        probe: PlatformProbe | None = None,
    ) -> None:
        self.link = link
        self.token = token
        self.policy = policy or PartitionPolicy()
        self.probe = probe or BootloaderVariableProbe(link)

    async def run(self, options: FlashOptions, succeeded: int) -> PostFlashReport | None:
        """Apply the post-flash policies.

        Args:
            options: Session options.
            succeeded: Number of steps flashed successfully.

        Returns:
            PostFlashReport, or None if nothing was flashed.

        Raises:
            FlashAbortedError: The session was cancelled.
        """
        if succeeded < 1:
            logger.info("Nothing was flashed, skipping post-flash policies")
            return None

        report = PostFlashReport()

        if options.erase_frp:
            await self._guard(report, "FRP erase", self._erase_frp)
        if options.clear_data:
            await self._guard(report, "Data wipe", self._clear_data)
        if options.auto_reboot:
            await self._guard(report, "Reboot", self._reboot)

        return report

    async def _guard(
        self,
        report: PostFlashReport,
        label: str,
        policy: Callable[[PostFlashReport], Awaitable[None]],
    ) -> None:
        self.token.raise_if_cancelled()
        try:
            await policy(report)
        except FlashAbortedError:
            raise
        except Exception as e:
            message = f"{label} failed: {e}"
            logger.warning(message)
            report.warnings.append(message)

    async def _erase(self, name: str) -> None:
        try:
            ok = await self.link.erase(name, self.token)
        except FlashAbortedError:
            raise
        except Exception as e:
            raise EraseError(name, str(e)) from e
        if not ok:
            raise EraseError(name)

    async def _erase_frp(self, report: PostFlashReport) -> None:
        names = self.policy.frp_partitions
        for name in names:
            try:
                await self._erase(name)
            except EraseError as e:
                logger.info("%s, trying next FRP partition name", e.message)
                continue
            logger.info("FRP erased (%s)", name)
            report.frp_erased = name
            return

        message = f"FRP erase failed for all of: {', '.join(names)}"
        logger.warning(message)
        report.warnings.append(message)

    async def _clear_data(self, report: PostFlashReport) -> None:
        try:
            platform = await self.probe.classify(self.token)
        except FlashAbortedError:
            raise
        except Exception as e:
            logger.warning("Platform probe failed: %s", e)
            platform = BootloaderVariableProbe.UNKNOWN

        if not self.policy.supports_auto_wipe(platform):
            message = (
                f"Automatic data wipe is not supported on '{platform}' devices. "
                "Wipe data manually: boot to Recovery and choose "
                "'Wipe data/factory reset'."
            )
            logger.warning(message)
            report.manual_wipe_required = True
            report.warnings.append(message)
            return

        wiped = []
        for name in self.policy.wipe_partitions:
            try:
                await self._erase(name)
            except EraseError as e:
                logger.warning(e.message)
                continue
            wiped.append(name)

        report.data_wiped = bool(wiped)
        if wiped:
            logger.info("User data wiped (%s)", ", ".join(wiped))
        else:
            message = "Data wipe failed, wipe data manually from Recovery"
            logger.warning(message)
            report.manual_wipe_required = True
            report.warnings.append(message)

    async def _reboot(self, report: PostFlashReport) -> None:
        report.rebooted = await self.link.reboot("system", self.token)
        if report.rebooted:
            logger.info("Rebooting to system")
        else:
            message = "Device refused reboot to system"
            logger.warning(message)
            report.warnings.append(message)


__all__ = ["PostFlashPolicyExecutor"]

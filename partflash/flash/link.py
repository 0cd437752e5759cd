"""Collaborator interfaces for the flash engine.

The engine never speaks the bootloader wire protocol or parses update
containers itself. It drives these collaborators instead:

- DeviceLink: fastboot command transport (flash, erase, reboot, getvar...)
- ImageExtractor: pulls one partition image out of an OTA payload
  (local or streamed from a remote URL) into a file
- AuthMaterialProvider: loader/digest/signature blobs keyed by platform id
- PlatformProbe: classifies the device's platform family

All device calls are async and receive the session's CancellationToken.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

from partflash.flash.errors import FlashAbortedError
from partflash.types import DeviceMode

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]
"""Called as ``callback(bytes_sent, bytes_total)`` during a transfer."""


class CancellationToken:
    """Cooperative cancellation scope shared by one flash session.

    Firing the token never interrupts a device transfer in flight; it is
    observed at the next checkpoint (``raise_if_cancelled``), during sleeps
    and while racing an awaitable with ``run``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise FlashAbortedError if the token has fired."""
        if self._event.is_set():
            raise FlashAbortedError()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early with FlashAbortedError on cancellation."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise FlashAbortedError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the awaitable's task is cancelled and
        FlashAbortedError is raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
            raise FlashAbortedError()
        return work.result()


@dataclass(frozen=True)
class DeviceHandle:
    """A device opened after (re-)enumeration."""

    serial: str
    mode: DeviceMode = DeviceMode.UNKNOWN


@dataclass(frozen=True)
class AuthMaterial:
    """Signed loader material for an authenticated flashing session.

    Attributes:
        platform_id: Platform identifier the material is keyed by.
        loader: Loader image bytes.
        digest: Digest blob.
        signature: Signature blob.
    """

    platform_id: str
    loader: bytes = b""
    digest: bytes = b""
    signature: bytes = b""
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DeviceLink(Protocol):
    """Fastboot command transport for one device.

    Implementations own the USB framing and chunked transfers. Methods
    returning bool report device-side success; they may also raise on
    transport errors.
    """

    async def detect_mode(self, ct: CancellationToken) -> DeviceMode:
        """Actively probe the device's current mode."""
        ...

    async def enumerate_devices(self, ct: CancellationToken) -> list[str]:
        """Return serials of currently enumerated devices."""
        ...

    async def open(self, serial: str, ct: CancellationToken) -> bool:
        """Open the device with the given serial for subsequent commands."""
        ...

    async def flash(
        self,
        name: str,
        image_path: Path,
        progress: ProgressCallback | None,
        ct: CancellationToken,
    ) -> bool:
        """Write an image file to the named partition."""
        ...

    async def erase(self, name: str, ct: CancellationToken) -> bool: ...

    async def reboot(self, target: str, ct: CancellationToken) -> bool:
        """Reboot to 'system', 'bootloader', 'fastboot' or 'recovery'."""
        ...

    async def set_active_slot(self, slot: str, ct: CancellationToken) -> bool: ...

    async def get_current_slot(self, ct: CancellationToken) -> str: ...

    async def get_variable(self, name: str, ct: CancellationToken) -> str | None: ...

    async def delete_logical_partition(
        self, name: str, ct: CancellationToken
    ) -> bool: ...

    async def create_logical_partition(
        self, name: str, size: int, ct: CancellationToken
    ) -> bool: ...

    async def authenticate(
        self, material: AuthMaterial, ct: CancellationToken
    ) -> bool: ...


@runtime_checkable
class ImageExtractor(Protocol):
    """Extracts a single partition image from an update payload."""

    async def extract_to_file(
        self, data_ref: Any, dest_path: Path, ct: CancellationToken
    ) -> bool:
        """Write the partition image referenced by ``data_ref`` to dest_path."""
        ...


@runtime_checkable
class AuthMaterialProvider(Protocol):
    """Looks up signed loader material by platform id."""

    def try_get(self, platform_id: str) -> AuthMaterial | None: ...


@runtime_checkable
class PlatformProbe(Protocol):
    """Classifies the connected device's platform family."""

    async def classify(self, ct: CancellationToken) -> str:
        """Return a lowercase family name such as 'qualcomm' or 'unknown'."""
        ...


class BootloaderVariableProbe:
    """Platform probe based on bootloader variables.

    Qualcomm bootloaders report an ABL version string, MediaTek ones an LK
    version string. When neither is recognizable the product name is
    checked for well-known chip prefixes.
    """

    QUALCOMM = "qualcomm"
    MEDIATEK = "mediatek"
    UNKNOWN = "unknown"

    _QUALCOMM_PRODUCT_HINTS = ("sdm", "sm", "msm", "qcom", "snapdragon")
    _MEDIATEK_PRODUCT_HINTS = ("mt", "mtk", "mediatek", "helio", "dimensity")

    def __init__(self, link: DeviceLink) -> None:
        self._link = link

    async def classify(self, ct: CancellationToken) -> str:
        bootloader = await self._link.get_variable("version-bootloader", ct)
        if not bootloader:
            bootloader = await self._link.get_variable("bootloader-version", ct)

        if bootloader:
            bl = bootloader.lower()
            if "abl" in bl:
                return self.QUALCOMM
            if "lk" in bl:
                return self.MEDIATEK

        product = await self._link.get_variable("product", ct)
        if product:
            p = product.lower()
            if any(hint in p for hint in self._QUALCOMM_PRODUCT_HINTS):
                return self.QUALCOMM
            if any(hint in p for hint in self._MEDIATEK_PRODUCT_HINTS):
                return self.MEDIATEK

        return self.UNKNOWN


__all__ = [
    "AuthMaterial",
    "AuthMaterialProvider",
    "BootloaderVariableProbe",
    "CancellationToken",
    "DeviceHandle",
    "DeviceLink",
    "ImageExtractor",
    "PlatformProbe",
    "ProgressCallback",
]

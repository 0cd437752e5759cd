"""Shared fakes for the flash engine tests.

FakeDeviceLink simulates a fastboot device: it records every command,
switches mode on reboot and re-enumerates after a configurable number of
polls. No real USB device is involved.
"""

import asyncio
from pathlib import Path

import pytest

from partflash.config import Settings
from partflash.flash.link import AuthMaterial, CancellationToken
from partflash.types import DeviceMode

REBOOT_MODES = {
    "bootloader": DeviceMode.BOOTLOADER,
    "fastboot": DeviceMode.FASTBOOTD,
    "recovery": DeviceMode.RECOVERY,
}


class FakeDeviceLink:
    """In-memory DeviceLink.

    Attributes:
        mode: Mode reported by detect_mode.
        slot: Slot reported by get_current_slot.
        variables: getvar responses.
        fail_flash: Target names whose flash returns False.
        fail_erase: Partition names whose erase returns False.
        refuse_reboot: Reboot targets that are refused.
        reconnect_after: Enumeration polls before the device reappears;
            None means it never comes back.
        reconnect_mode: Mode after reconnect; defaults to the reboot target.
        flash_gate: If set, flash waits on this event before completing.
        chunks: Number of progress callbacks per flash.
    """

    def __init__(
        self,
        mode: DeviceMode = DeviceMode.FASTBOOTD,
        slot: str = "a",
        variables: dict[str, str] | None = None,
    ) -> None:
        self.mode = mode
        self.slot = slot
        self.variables = variables or {}
        self.serial = "FAKE0001"

        self.fail_flash: set[str] = set()
        self.fail_erase: set[str] = set()
        self.refuse_reboot: set[str] = set()
        self.reconnect_after: int | None = 0
        self.reconnect_mode: DeviceMode | None = None
        self.flash_gate: asyncio.Event | None = None
        self.flash_started: asyncio.Event | None = None
        self.chunks = 4

        self.calls: list[tuple] = []
        self.flashed: list[str] = []
        self.erased: list[str] = []
        self.reboots: list[str] = []
        self._polls_left: int | None = None
        self._online = True

    async def detect_mode(self, ct: CancellationToken) -> DeviceMode:
        self.calls.append(("detect_mode",))
        return self.mode if self._online else DeviceMode.UNKNOWN

    async def enumerate_devices(self, ct: CancellationToken) -> list[str]:
        self.calls.append(("enumerate_devices",))
        if self._online:
            return [self.serial]
        if self._polls_left is None:
            return []
        if self._polls_left > 0:
            self._polls_left -= 1
            return []
        self._online = True
        return [self.serial]

    async def open(self, serial: str, ct: CancellationToken) -> bool:
        self.calls.append(("open", serial))
        return self._online and serial == self.serial

    async def flash(self, name, image_path: Path, progress, ct) -> bool:
        self.calls.append(("flash", name, Path(image_path).name))
        if self.flash_started is not None:
            self.flash_started.set()
        if self.flash_gate is not None:
            await self.flash_gate.wait()
        ct.raise_if_cancelled()
        if name in self.fail_flash:
            return False
        total = Path(image_path).stat().st_size
        if progress is not None:
            for i in range(1, self.chunks + 1):
                progress(total * i // self.chunks, total)
        self.flashed.append(name)
        return True

    async def erase(self, name: str, ct: CancellationToken) -> bool:
        self.calls.append(("erase", name))
        if name in self.fail_erase:
            return False
        self.erased.append(name)
        return True

    async def reboot(self, target: str, ct: CancellationToken) -> bool:
        self.calls.append(("reboot", target))
        if target in self.refuse_reboot:
            return False
        self.reboots.append(target)
        if target in REBOOT_MODES:
            self.mode = self.reconnect_mode or REBOOT_MODES[target]
            self._online = False
            self._polls_left = self.reconnect_after
        return True

    async def set_active_slot(self, slot: str, ct: CancellationToken) -> bool:
        self.calls.append(("set_active_slot", slot))
        self.slot = slot
        return True

    async def get_current_slot(self, ct: CancellationToken) -> str:
        self.calls.append(("get_current_slot",))
        return self.slot

    async def get_variable(self, name: str, ct: CancellationToken) -> str | None:
        self.calls.append(("get_variable", name))
        return self.variables.get(name)

    async def delete_logical_partition(self, name: str, ct: CancellationToken) -> bool:
        self.calls.append(("delete_logical_partition", name))
        return True

    async def create_logical_partition(
        self, name: str, size: int, ct: CancellationToken
    ) -> bool:
        self.calls.append(("create_logical_partition", name, size))
        return True

    async def authenticate(self, material: AuthMaterial, ct: CancellationToken) -> bool:
        self.calls.append(("authenticate", material.platform_id))
        return True

    def commands(self, name: str) -> list[tuple]:
        """Recorded calls of one command."""
        return [call for call in self.calls if call[0] == name]


class FakeExtractor:
    """ImageExtractor writing fixed content, failing for selected refs.

    If ``gate`` is set, a partial image is written and the extraction
    waits on the gate before finishing.
    """

    def __init__(self, content: bytes = b"\x01" * 2048, fail: set[str] | None = None):
        self.content = content
        self.fail = fail or set()
        self.extracted: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started: asyncio.Event | None = None

    async def extract_to_file(self, data_ref, dest_path: Path, ct) -> bool:
        if data_ref in self.fail:
            return False
        if self.gate is not None:
            Path(dest_path).write_bytes(self.content[: len(self.content) // 2])
            if self.started is not None:
                self.started.set()
            await self.gate.wait()
        Path(dest_path).write_bytes(self.content)
        self.extracted.append(data_ref)
        return True


class FakeProbe:
    """PlatformProbe returning a fixed platform family."""

    def __init__(self, platform: str = "qualcomm") -> None:
        self.platform = platform

    async def classify(self, ct: CancellationToken) -> str:
        return self.platform


def write_image(directory: Path, name: str, size: int) -> Path:
    """Create an image file of the given size."""
    path = directory / f"{name}.img"
    path.write_bytes(b"\x00" * size)
    return path


@pytest.fixture
def link() -> FakeDeviceLink:
    return FakeDeviceLink()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a fast reconnect poll and a test scratch directory."""
    return Settings(
        scratch_dir=tmp_path / "scratch",
        reconnect_timeout=5,
        reconnect_poll_interval=0.01,
    )

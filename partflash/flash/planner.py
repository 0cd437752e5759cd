"""Flash planning.

Turns resolved units into an ordered list of steps:

1. Units are split into the FastbootD group and the modem group (flashed
   from the bootloader), unless pure FastbootD mode puts everything in
   the first group.
2. Each group is sorted by size, smallest first, so small partitions
   report progress and fail fast before long transfers start.
3. In AB mode non-logical partitions are written to both slots. Logical
   partitions live in the shared super partition and are written once.
"""

import logging
from dataclasses import dataclass, field

from partflash.flash.resolver import FlashUnit
from partflash.types import DeviceMode, FlashOptions, Slot

logger = logging.getLogger(__name__)

AB_SLOTS = (Slot.A.value, Slot.B.value)


@dataclass(frozen=True)
class PlannedStep:
    """One partition write.

    Attributes:
        index: Position of the step in the whole plan.
        unit: Unit whose image is written.
        slot: Slot suffix ('a' or 'b').
        target_name: Partition written on the device (e.g. 'boot_a').
        required_mode: Mode the device must be in for this write.
    """

    index: int
    unit: FlashUnit
    slot: str
    target_name: str
    required_mode: DeviceMode


@dataclass
class ExecutionPlan:
    """Ordered steps of a flash session."""

    fbd_steps: list[PlannedStep] = field(default_factory=list)
    modem_steps: list[PlannedStep] = field(default_factory=list)
    current_slot: Slot = Slot.UNKNOWN

    @property
    def steps(self) -> list[PlannedStep]:
        return self.fbd_steps + self.modem_steps

    @property
    def total_steps(self) -> int:
        return len(self.fbd_steps) + len(self.modem_steps)

    @property
    def total_bytes(self) -> int:
        """Bytes written by the whole plan, counting each slot write."""
        return sum(step.unit.size_bytes for step in self.steps)

    def groups(self) -> list[tuple[DeviceMode, list[PlannedStep]]]:
        """Non-empty step groups in execution order with their mode."""
        groups: list[tuple[DeviceMode, list[PlannedStep]]] = []
        if self.fbd_steps:
            groups.append((DeviceMode.FASTBOOTD, self.fbd_steps))
        if self.modem_steps:
            groups.append((DeviceMode.BOOTLOADER, self.modem_steps))
        return groups


class FlashPlanner:
    """Builds execution plans from flash units."""

    def plan(
        self,
        units: list[FlashUnit],
        options: FlashOptions,
        current_slot: Slot = Slot.UNKNOWN,
    ) -> ExecutionPlan:
        """Plan the steps for a list of units.

        Args:
            units: Resolved units.
            options: Session options.
            current_slot: Slot the device currently boots from. Used as the
                target in non-AB mode; an unknown slot falls back to 'a'.

        Returns:
            ExecutionPlan with contiguous step indices, FastbootD group first.
        """
        if options.pure_fbd_mode:
            fbd_group = list(units)
            modem_group: list[FlashUnit] = []
        else:
            fbd_group = [u for u in units if not u.is_modem_partition]
            modem_group = [u for u in units if u.is_modem_partition]

        fbd_group.sort(key=lambda u: u.size_bytes)
        modem_group.sort(key=lambda u: u.size_bytes)

        if options.ab_flash_mode:
            single_slot = options.target_slot
        elif current_slot == Slot.UNKNOWN:
            single_slot = Slot.A.value
        else:
            single_slot = current_slot.value

        plan = ExecutionPlan(current_slot=current_slot)
        index = 0
        for mode, group, steps in (
            (DeviceMode.FASTBOOTD, fbd_group, plan.fbd_steps),
            (DeviceMode.BOOTLOADER, modem_group, plan.modem_steps),
        ):
            for unit in group:
                for slot in self.slots_for(unit, options, single_slot):
                    steps.append(
                        PlannedStep(
                            index=index,
                            unit=unit,
                            slot=slot,
                            target_name=f"{unit.name}_{slot}",
                            required_mode=mode,
                        )
                    )
                    index += 1

        logger.info(
            "Planned %d step(s): %d in FastbootD, %d in bootloader (ab=%s, slot=%s)",
            plan.total_steps,
            len(plan.fbd_steps),
            len(plan.modem_steps),
            options.ab_flash_mode,
            single_slot,
        )
        return plan

    @staticmethod
    def slots_for(
        unit: FlashUnit, options: FlashOptions, single_slot: str
    ) -> tuple[str, ...]:
        """Slots a unit is written to."""
        if options.ab_flash_mode and not unit.is_logical_partition:
            return AB_SLOTS
        return (single_slot,)


__all__ = ["AB_SLOTS", "ExecutionPlan", "FlashPlanner", "PlannedStep"]

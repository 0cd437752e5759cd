"""Partition source resolution.

This module normalizes what the user selected into flash units:
- Local image files (unpacked firmware folders, single images)
- Flash script tasks (already parsed 'fastboot flash' lines)
- Partitions inside a local OTA payload
- Partitions inside a remote OTA payload (streamed on extraction)

Every unit is classified with the partition policy (logical / modem) so
that the planner can order and split them. Missing local images are
reported per unit and dropped; they never fail the whole selection.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from partflash.flash.errors import MissingImageError, ResolveError
from partflash.policy import PartitionPolicy
from partflash.types import SourceKind

logger = logging.getLogger(__name__)

_PAYLOAD_KINDS = (SourceKind.LOCAL_PAYLOAD, SourceKind.REMOTE_PAYLOAD)


@dataclass
class SelectionItem:
    """One partition selected by the user.

    Attributes:
        name: Partition name (e.g. 'boot', 'vendor').
        source_kind: Where the image comes from.
        data_ref: Image path for file sources, or an opaque extractor
            handle for payload sources.
        size_bytes: Known size (uncompressed size for payload partitions).
        operation: Script task operation; only 'flash' is flashable.
    """

    name: str
    source_kind: SourceKind = SourceKind.LOCAL_FILE
    data_ref: Any = None
    size_bytes: int = 0
    operation: str = "flash"


@dataclass
class FlashUnit:
    """A partition ready to be planned.

    Only ``size_bytes`` may change after resolve time, through
    ``refine_size`` once the image has been extracted.
    """

    name: str
    source_kind: SourceKind
    data_ref: Any
    size_bytes: int
    is_logical_partition: bool = False
    is_modem_partition: bool = False

    @property
    def requires_extraction(self) -> bool:
        return self.source_kind in _PAYLOAD_KINDS

    def refine_size(self, size_bytes: int) -> int:
        """Update the size with the real extracted size.

        Returns:
            Difference between the new and the previous size.
        """
        delta = size_bytes - self.size_bytes
        self.size_bytes = size_bytes
        return delta


@dataclass
class ResolveResult:
    """Units resolved from a selection plus the per-item errors."""

    units: list[FlashUnit] = field(default_factory=list)
    errors: list[ResolveError] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(unit.size_bytes for unit in self.units)


class PartitionSourceResolver:
    """Turns selection items into classified flash units."""

    def __init__(self, policy: PartitionPolicy | None = None) -> None:
        self.policy = policy or PartitionPolicy()

    def resolve(self, selection: list[SelectionItem]) -> ResolveResult:
        """Resolve a selection into flash units.

        Args:
            selection: Items selected by the user, in any order.

        Returns:
            ResolveResult with the usable units and one error per dropped item.
        """
        result = ResolveResult()

        for item in selection:
            try:
                unit = self._resolve_item(item)
            except ResolveError as e:
                logger.warning("Dropping %s: %s", item.name or "<unnamed>", e.message)
                result.errors.append(e)
                continue
            if unit is not None:
                result.units.append(unit)

        logger.info(
            "Resolved %d unit(s) (%d bytes), %d dropped",
            len(result.units),
            result.total_bytes,
            len(result.errors),
        )
        return result

    def _resolve_item(self, item: SelectionItem) -> FlashUnit | None:
        name = (item.name or "").strip()
        if not name:
            raise ResolveError("", "Selected item has no partition name")

        if item.source_kind == SourceKind.SCRIPT_TASK and item.operation != "flash":
            logger.debug("Ignoring script task '%s %s'", item.operation, name)
            return None

        if item.source_kind in _PAYLOAD_KINDS:
            if item.data_ref is None:
                raise ResolveError(
                    name, f"Payload partition '{name}' has no extractor reference"
                )
            size_bytes = max(int(item.size_bytes), 0)
        else:
            size_bytes = self._check_image(name, item.data_ref)

        return FlashUnit(
            name=name,
            source_kind=item.source_kind,
            data_ref=item.data_ref,
            size_bytes=size_bytes,
            is_logical_partition=self.policy.is_logical(name),
            is_modem_partition=self.policy.is_modem(name),
        )

    @staticmethod
    def _check_image(name: str, data_ref: Any) -> int:
        """Return the size of a local image, raising if missing or empty."""
        if not data_ref:
            raise MissingImageError(name, None)
        path = Path(data_ref)
        try:
            size = path.stat().st_size if path.is_file() else 0
        except OSError:
            size = 0
        if size <= 0:
            raise MissingImageError(name, str(path))
        return size


__all__ = [
    "FlashUnit",
    "PartitionSourceResolver",
    "ResolveResult",
    "SelectionItem",
]

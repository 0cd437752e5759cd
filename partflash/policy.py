"""Partition policy data.

The partition name lists used to classify partitions and drive post-flash
policies differ between OEMs, so they live in a validated data model that
can be overridden from a YAML file instead of being hardcoded in the
orchestration code.

Example policy file::

    logical_partitions: [system, vendor, product, odm]
    modem_patterns: [modem]
    modem_names: [radio]
    frp_partitions: [frp, config]
    auto_wipe_platforms: [qualcomm]
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LOGICAL_PARTITIONS = [
    "system",
    "odm",
    "vendor",
    "product",
    "system_ext",
    "system_dlkm",
    "vendor_dlkm",
    "odm_dlkm",
    "my_bigball",
    "my_carrier",
    "my_company",
    "my_engineering",
    "my_heytap",
    "my_manifest",
    "my_preload",
    "my_product",
    "my_region",
    "my_stock",
]

_SLOT_SUFFIXES = ("_a", "_b")


class PartitionPolicy(BaseModel):
    """Partition naming conventions and post-flash policy data.

    Attributes:
        logical_partitions: Partitions living inside the super partition.
        modem_patterns: Substrings marking a partition as a modem partition.
        modem_names: Exact names marking a partition as a modem partition.
        frp_partitions: FRP partition names to try erasing, in order.
        auto_wipe_platforms: Platform families that support automated wipe.
        wipe_partitions: Partitions erased by the automated data wipe.
        cow_suffixes: Suffixes of OTA snapshot (COW) logical partitions.
    """

    model_config = ConfigDict(extra="forbid")

    logical_partitions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LOGICAL_PARTITIONS)
    )
    modem_patterns: list[str] = Field(default_factory=lambda: ["modem"])
    modem_names: list[str] = Field(default_factory=lambda: ["radio"])
    frp_partitions: list[str] = Field(default_factory=lambda: ["frp", "config"])
    auto_wipe_platforms: list[str] = Field(default_factory=lambda: ["qualcomm"])
    wipe_partitions: list[str] = Field(
        default_factory=lambda: ["userdata", "metadata"]
    )
    cow_suffixes: list[str] = Field(default_factory=lambda: ["_cow", "_cow-img"])

    @field_validator(
        "logical_partitions",
        "modem_patterns",
        "modem_names",
        "auto_wipe_platforms",
    )
    @classmethod
    def normalize_names(cls, v: list[str]) -> list[str]:
        """Lowercase names and drop blanks."""
        return [name.strip().lower() for name in v if name and name.strip()]

    def is_logical(self, partition_name: str) -> bool:
        """Check if a partition lives inside the super partition.

        A trailing slot suffix (_a/_b) is ignored.
        """
        return base_name(partition_name).lower() in self.logical_partitions

    def is_modem(self, partition_name: str) -> bool:
        """Check if a partition must be flashed from the bootloader."""
        name = partition_name.lower()
        if name in self.modem_names:
            return True
        return any(pattern in name for pattern in self.modem_patterns)

    def supports_auto_wipe(self, platform: str) -> bool:
        """Check if a platform family supports the automated data wipe."""
        return platform.lower() in self.auto_wipe_platforms

    def cow_partition_names(self) -> list[str]:
        """Names of all possible snapshot partitions for the logical set."""
        return [
            f"{name}{slot}{suffix}"
            for name in self.logical_partitions
            for slot in _SLOT_SUFFIXES
            for suffix in self.cow_suffixes
        ]


def base_name(partition_name: str) -> str:
    """Strip a trailing slot suffix from a partition name."""
    if partition_name.endswith(_SLOT_SUFFIXES):
        return partition_name[:-2]
    return partition_name


def parse_policy_data(data: dict[str, Any]) -> PartitionPolicy:
    """Validate policy data.

    Args:
        data: Dictionary of policy fields; missing fields take defaults.

    Returns:
        Validated PartitionPolicy.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    return PartitionPolicy.model_validate(data)


def load_policy(path: Path | None = None) -> PartitionPolicy:
    """Load a partition policy from a YAML file.

    Args:
        path: Path to the YAML file. None returns the default policy.

    Returns:
        Validated PartitionPolicy.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the file is not a YAML mapping.
    """
    if path is None:
        return PartitionPolicy()

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return PartitionPolicy()
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return parse_policy_data(data)


__all__ = [
    "DEFAULT_LOGICAL_PARTITIONS",
    "PartitionPolicy",
    "base_name",
    "load_policy",
    "parse_policy_data",
]

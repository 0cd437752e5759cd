"""Tests for policy.py - partition policy data."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from partflash.policy import (
    DEFAULT_LOGICAL_PARTITIONS,
    PartitionPolicy,
    base_name,
    load_policy,
    parse_policy_data,
)


class TestPartitionPolicy:
    """Test classification helpers."""

    def test_logical_partitions(self) -> None:
        """Known logical partitions are recognized with or without slot suffix."""
        policy = PartitionPolicy()
        assert policy.is_logical("system")
        assert policy.is_logical("vendor_a")
        assert policy.is_logical("my_product_b")
        assert policy.is_logical("SYSTEM_EXT")
        assert not policy.is_logical("boot")
        assert not policy.is_logical("modem")

    def test_modem_partitions(self) -> None:
        """Modem partitions match a substring or an exact name."""
        policy = PartitionPolicy()
        assert policy.is_modem("modem")
        assert policy.is_modem("modem_a")
        assert policy.is_modem("MODEMST1")
        assert policy.is_modem("radio")
        assert not policy.is_modem("radio_extra")
        assert not policy.is_modem("boot")

    def test_auto_wipe_platforms(self) -> None:
        policy = PartitionPolicy()
        assert policy.supports_auto_wipe("qualcomm")
        assert policy.supports_auto_wipe("Qualcomm")
        assert not policy.supports_auto_wipe("mediatek")
        assert not policy.supports_auto_wipe("unknown")

    def test_cow_partition_names(self) -> None:
        """Snapshot names cover both slots and both suffixes."""
        policy = PartitionPolicy(logical_partitions=["system"])
        assert policy.cow_partition_names() == [
            "system_a_cow",
            "system_a_cow-img",
            "system_b_cow",
            "system_b_cow-img",
        ]

    def test_names_are_normalized(self) -> None:
        policy = PartitionPolicy(logical_partitions=[" System ", "", "VENDOR"])
        assert policy.logical_partitions == ["system", "vendor"]

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PartitionPolicy(unknown_list=["x"])

    def test_default_lists_are_independent(self) -> None:
        first = PartitionPolicy()
        first.logical_partitions.append("extra")
        assert "extra" not in PartitionPolicy().logical_partitions
        assert "extra" not in DEFAULT_LOGICAL_PARTITIONS


class TestBaseName:
    """Test slot suffix stripping."""

    def test_strips_suffix(self) -> None:
        assert base_name("boot_a") == "boot"
        assert base_name("boot_b") == "boot"

    def test_keeps_plain_name(self) -> None:
        assert base_name("boot") == "boot"
        assert base_name("my_carrier") == "my_carrier"


class TestLoadPolicy:
    """Test YAML loading."""

    def test_none_returns_defaults(self) -> None:
        assert load_policy(None) == PartitionPolicy()

    def test_load_overrides(self, tmp_path: Path) -> None:
        """Fields in the file override defaults, others keep them."""
        path = tmp_path / "policy.yaml"
        path.write_text("logical_partitions: [system, vendor]\nfrp_partitions: [persist]\n")

        policy = load_policy(path)

        assert policy.logical_partitions == ["system", "vendor"]
        assert policy.frp_partitions == ["persist"]
        assert policy.modem_names == ["radio"]

    def test_empty_file_returns_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_policy(path) == PartitionPolicy()

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- system\n- vendor\n")
        with pytest.raises(ValueError, match="mapping"):
            load_policy(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_policy(tmp_path / "missing.yaml")

    def test_parse_policy_data_validates(self) -> None:
        with pytest.raises(ValidationError):
            parse_policy_data({"frp_partitions": "frp"})

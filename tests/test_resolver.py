"""Tests for flash/resolver.py - partition source resolution."""

from pathlib import Path

from partflash.flash.resolver import PartitionSourceResolver, SelectionItem
from partflash.policy import PartitionPolicy
from partflash.types import SourceKind


def _image(tmp_path: Path, name: str, size: int = 100) -> str:
    path = tmp_path / f"{name}.img"
    path.write_bytes(b"\x00" * size)
    return str(path)


class TestResolveLocalFiles:
    """Tests for local image files and script tasks."""

    def test_local_file_classified(self, tmp_path: Path) -> None:
        """Units get their size from the file and are classified by name."""
        resolver = PartitionSourceResolver()
        result = resolver.resolve(
            [
                SelectionItem("boot", data_ref=_image(tmp_path, "boot", 300)),
                SelectionItem("system", data_ref=_image(tmp_path, "system", 500)),
                SelectionItem("modem", data_ref=_image(tmp_path, "modem", 200)),
            ]
        )

        assert result.errors == []
        by_name = {u.name: u for u in result.units}
        assert by_name["boot"].size_bytes == 300
        assert not by_name["boot"].is_logical_partition
        assert by_name["system"].is_logical_partition
        assert by_name["modem"].is_modem_partition
        assert result.total_bytes == 1000

    def test_missing_file_dropped(self, tmp_path: Path) -> None:
        """A missing image drops only that item."""
        resolver = PartitionSourceResolver()
        result = resolver.resolve(
            [
                SelectionItem("boot", data_ref=_image(tmp_path, "boot")),
                SelectionItem("dtbo", data_ref=str(tmp_path / "dtbo.img")),
            ]
        )

        assert [u.name for u in result.units] == ["boot"]
        assert len(result.errors) == 1
        assert result.errors[0].name == "dtbo"
        assert result.errors[0].error_code == "MISSING_IMAGE"

    def test_empty_file_dropped(self, tmp_path: Path) -> None:
        resolver = PartitionSourceResolver()
        path = tmp_path / "empty.img"
        path.write_bytes(b"")

        result = resolver.resolve([SelectionItem("vbmeta", data_ref=str(path))])

        assert result.units == []
        assert result.errors[0].error_code == "MISSING_IMAGE"

    def test_directory_is_not_an_image(self, tmp_path: Path) -> None:
        resolver = PartitionSourceResolver()
        result = resolver.resolve([SelectionItem("boot", data_ref=str(tmp_path))])
        assert result.units == []

    def test_no_path_dropped(self) -> None:
        result = PartitionSourceResolver().resolve([SelectionItem("boot")])
        assert result.errors[0].error_code == "MISSING_IMAGE"

    def test_unnamed_item_dropped(self, tmp_path: Path) -> None:
        result = PartitionSourceResolver().resolve(
            [SelectionItem("  ", data_ref=_image(tmp_path, "x"))]
        )
        assert result.units == []
        assert result.errors[0].error_code == "INVALID_SELECTION"

    def test_script_non_flash_task_ignored(self, tmp_path: Path) -> None:
        """Script tasks other than flash are neither units nor errors."""
        result = PartitionSourceResolver().resolve(
            [
                SelectionItem(
                    "userdata", source_kind=SourceKind.SCRIPT_TASK, operation="erase"
                ),
                SelectionItem(
                    "boot",
                    source_kind=SourceKind.SCRIPT_TASK,
                    data_ref=_image(tmp_path, "boot"),
                ),
            ]
        )
        assert [u.name for u in result.units] == ["boot"]
        assert result.errors == []


class TestResolvePayloads:
    """Tests for OTA payload sources."""

    def test_payload_uses_declared_size(self) -> None:
        """Payload units are not checked on disk and need extraction."""
        result = PartitionSourceResolver().resolve(
            [
                SelectionItem(
                    "vendor",
                    source_kind=SourceKind.REMOTE_PAYLOAD,
                    data_ref="vendor-ref",
                    size_bytes=4096,
                )
            ]
        )
        unit = result.units[0]
        assert unit.size_bytes == 4096
        assert unit.requires_extraction
        assert unit.is_logical_partition

    def test_payload_without_reference_dropped(self) -> None:
        result = PartitionSourceResolver().resolve(
            [SelectionItem("boot", source_kind=SourceKind.LOCAL_PAYLOAD)]
        )
        assert result.units == []
        assert result.errors[0].error_code == "INVALID_SELECTION"

    def test_refine_size_returns_delta(self) -> None:
        result = PartitionSourceResolver().resolve(
            [
                SelectionItem(
                    "boot",
                    source_kind=SourceKind.LOCAL_PAYLOAD,
                    data_ref="boot-ref",
                    size_bytes=1000,
                )
            ]
        )
        unit = result.units[0]
        assert unit.refine_size(1500) == 500
        assert unit.size_bytes == 1500


class TestCustomPolicy:
    """Resolver honors a custom policy."""

    def test_custom_logical_list(self, tmp_path: Path) -> None:
        resolver = PartitionSourceResolver(PartitionPolicy(logical_partitions=["oem"]))
        result = resolver.resolve(
            [
                SelectionItem("oem", data_ref=_image(tmp_path, "oem")),
                SelectionItem("system", data_ref=_image(tmp_path, "system")),
            ]
        )
        by_name = {u.name: u for u in result.units}
        assert by_name["oem"].is_logical_partition
        assert not by_name["system"].is_logical_partition

"""输出文件与元数据的对账：按名称配对与重命名失败时的回退。"""

from __future__ import annotations

from pathlib import Path

import pytest

from image_compression.core.exceptions import PathExhaustedError
from image_compression.core.models import ImageMetadata
from image_compression.processing.reconcile import ReconcileOrder, reconcile_by_order


def _meta(name: str, index: int, input_dir: Path) -> ImageMetadata:
    stem = Path(name).stem
    return ImageMetadata(
        original_name=name,
        compressed_name=f"{stem}_failed",
        original_size=100,
        compressed_size=None,
        input_path=str(input_dir / name),
        output_path="",
        index=index,
    )


def test_name_order_pairs_sorted_files_with_indices(tmp_path: Path) -> None:
    (tmp_path / "b_out.jpg").write_bytes(b"b" * 7)
    (tmp_path / "a_out.jpg").write_bytes(b"a" * 5)
    metadata = [_meta("first.png", 0, tmp_path / "in"), _meta("second.png", 1, tmp_path / "in")]

    reconcile_by_order(metadata, list(tmp_path.iterdir()), tmp_path, ReconcileOrder.NAME)

    first, second = metadata
    assert first.compressed_size == 5
    assert first.compressed_name == "first_compressed.jpg"
    assert second.compressed_size == 7
    assert second.compressed_name == "second_compressed.jpg"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["first_compressed.jpg", "second_compressed.jpg"]


def test_name_order_marks_surplus_metadata_failed(tmp_path: Path) -> None:
    (tmp_path / "only.jpg").write_bytes(b"x")
    metadata = [_meta("one.png", 0, tmp_path), _meta("two.png", 1, tmp_path)]

    reconcile_by_order(metadata, [tmp_path / "only.jpg"], tmp_path, ReconcileOrder.NAME)

    assert metadata[0].succeeded
    assert not metadata[1].succeeded
    assert metadata[1].compressed_name == "two_failed"
    assert metadata[1].output_path == ""


def test_rename_failure_keeps_observed_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    observed = tmp_path / "tool_output_0.jpg"
    observed.write_bytes(b"z" * 11)

    def _exhausted(desired: Path) -> Path:
        raise PathExhaustedError(f"{desired.name} 无可用名称")

    monkeypatch.setattr("image_compression.processing.reconcile.dedupe_path", _exhausted)
    metadata = [_meta("holiday.png", 0, tmp_path)]

    reconcile_by_order(metadata, [observed], tmp_path, ReconcileOrder.NAME)

    meta = metadata[0]
    assert meta.succeeded
    assert meta.compressed_size == 11
    assert meta.output_path == str(observed)
    assert meta.compressed_name == "tool_output_0.jpg"
    assert observed.exists()


def test_rename_os_error_keeps_observed_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    observed = tmp_path / "raw.webp"
    observed.write_bytes(b"w" * 3)

    def _refuse(self: Path, target: Path) -> Path:
        raise PermissionError("read-only")

    monkeypatch.setattr(Path, "rename", _refuse)
    metadata = [_meta("cover.png", 0, tmp_path)]

    reconcile_by_order(metadata, [observed], tmp_path, ReconcileOrder.NAME)

    assert metadata[0].output_path == str(observed)
    assert metadata[0].compressed_name == "raw.webp"
    assert metadata[0].compressed_size == 3

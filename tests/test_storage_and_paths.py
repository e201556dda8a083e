"""工作目录、文件名去重、设置与元数据持久化。"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from image_compression.core.config import AppSettings, CompressionMethod
from image_compression.core.exceptions import (
    AlreadyInitializedError,
    InvalidConfigurationError,
    MetadataStoreError,
    PathExhaustedError,
    SettingsStoreError,
    StorageError,
)
from image_compression.core.models import ImageMetadata, compute_reduction_percent
from image_compression.core.output_manager import (
    build_output_path,
    compressed_name,
    dedupe_path,
    export_outputs,
    reserve_path,
)
from image_compression.core.storage import StorageManager, clear, list_files
from image_compression.core.store import load_metadata, load_settings, save_metadata, save_settings


def test_initialize_creates_layout_once(tmp_path: Path) -> None:
    manager = StorageManager()
    paths = manager.initialize(tmp_path / "base")

    assert paths.input_dir.is_dir()
    assert paths.output_dir.is_dir()
    assert paths.settings_dir.is_dir()
    assert paths.settings_file == paths.settings_dir / "settings.json"
    assert paths.metadata_file == paths.base_dir / "metadata.json"

    with pytest.raises(AlreadyInitializedError):
        manager.initialize(tmp_path / "other")


def test_paths_before_initialize_raise() -> None:
    with pytest.raises(StorageError):
        StorageManager().paths


def test_clear_twice_leaves_empty_directory(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    (paths.output_dir / "leftover.jpg").write_bytes(b"x")
    (paths.output_dir / "nested").mkdir()

    clear(paths, "output")
    assert paths.output_dir.is_dir()
    assert list(paths.output_dir.iterdir()) == []

    clear(paths, "output")
    assert paths.output_dir.is_dir()
    assert list(paths.output_dir.iterdir()) == []


def test_clear_rejects_unknown_role(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    with pytest.raises(InvalidConfigurationError):
        clear(paths, "settings")


def test_dedupe_never_returns_existing_path(tmp_path: Path) -> None:
    desired = tmp_path / "photo_compressed.webp"
    assert dedupe_path(desired) == desired

    seen = set()
    for _ in range(5):
        candidate = dedupe_path(desired)
        assert not candidate.exists()
        assert candidate.suffix == ".webp"
        assert candidate not in seen
        seen.add(candidate)
        candidate.write_bytes(b"x")

    assert (tmp_path / "photo_compressed_1.webp").exists()
    assert (tmp_path / "photo_compressed_4.webp").exists()


def test_canonical_output_names(tmp_path: Path) -> None:
    assert compressed_name("cat", "png") == "cat_compressed.png"
    assert compressed_name("cat", ".jpg") == "cat_compressed.jpg"

    source = tmp_path / "cat.png"
    first = build_output_path(source, tmp_path, "jpg")
    first.write_bytes(b"x")
    second = build_output_path(source, tmp_path, "jpg")
    assert first.name == "cat_compressed.jpg"
    assert second.name == "cat_compressed_1.jpg"


def test_reserved_paths_exist_and_differ(tmp_path: Path) -> None:
    desired = tmp_path / "dog_compressed.png"

    first = reserve_path(desired)
    second = reserve_path(desired)

    assert first == desired
    assert second.name == "dog_compressed_1.png"
    assert first.exists() and second.exists()


def test_concurrent_reservations_never_collide(tmp_path: Path) -> None:
    source = tmp_path / "a.png"

    with ThreadPoolExecutor(max_workers=8) as pool:
        reserved = list(pool.map(lambda _: build_output_path(source, tmp_path, "jpg"), range(32)))

    assert len(set(reserved)) == 32
    assert all(path.exists() for path in reserved)


def test_exhausted_suffixes_raise(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("image_compression.core.output_manager.MAX_DEDUP_SUFFIX", 2)
    desired = tmp_path / "full_compressed.jpg"
    for name in ("full_compressed.jpg", "full_compressed_1.jpg", "full_compressed_2.jpg"):
        (tmp_path / name).write_bytes(b"x")

    with pytest.raises(PathExhaustedError):
        dedupe_path(desired)
    with pytest.raises(PathExhaustedError):
        reserve_path(desired)
    assert len(list(tmp_path.iterdir())) == 3


@pytest.mark.parametrize(
    ("original", "compressed", "expected"),
    [(1000, 250, 75.0), (1000, 1000, 0.0), (1000, 1200, -20.0), (0, 10, 0.0)],
)
def test_reduction_percent_sign(original: int, compressed: int, expected: float) -> None:
    value = compute_reduction_percent(original, compressed)
    assert value == pytest.approx(expected)
    if original > 0:
        assert (value >= 0) == (compressed <= original)


def test_list_files_is_flat_and_sorted(tmp_path: Path) -> None:
    (tmp_path / "b.png").write_bytes(b"b")
    (tmp_path / "a.png").write_bytes(b"a")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "c.png").write_bytes(b"c")

    assert [p.name for p in list_files(tmp_path)] == ["a.png", "b.png"]
    assert list_files(tmp_path / "missing") == []


def test_settings_defaults_and_round_trip(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)

    defaults = load_settings(paths)
    assert defaults.compression_quality == 75.0
    assert defaults.method == CompressionMethod.WEBP_LOSSY

    save_settings(paths, AppSettings(compression_quality=42.5, method=CompressionMethod.LOSSLESS))
    stored = json.loads(paths.settings_file.read_text(encoding="utf-8"))
    assert stored == {"compression_quality": 42.5, "method": "lossless"}

    loaded = load_settings(paths)
    assert loaded.compression_quality == 42.5
    assert loaded.method == CompressionMethod.LOSSLESS


@pytest.mark.parametrize("quality", [0, -5, 100.5])
def test_invalid_quality_is_rejected(quality: float) -> None:
    with pytest.raises(InvalidConfigurationError):
        AppSettings(compression_quality=quality)


def test_unknown_method_falls_back_to_webp_lossy() -> None:
    settings = AppSettings.from_dict({"compression_quality": 60, "method": "zopfli"})
    assert settings.method == CompressionMethod.WEBP_LOSSY
    assert settings.quality_int == 60


def test_corrupt_settings_file_raises(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    paths.settings_file.write_text("{not json", encoding="utf-8")

    with pytest.raises(SettingsStoreError):
        load_settings(paths)


def test_metadata_round_trip(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    assert load_metadata(paths) == []

    entries = [
        ImageMetadata(
            original_name="照片.png",
            compressed_name="照片_compressed.webp",
            original_size=2048,
            compressed_size=512,
            input_path=str(paths.input_dir / "照片.png"),
            output_path=str(paths.output_dir / "照片_compressed.webp"),
            index=1,
        ),
        ImageMetadata(
            original_name="broken.jpg",
            compressed_name="broken_failed",
            original_size=50,
            compressed_size=None,
            input_path=str(paths.input_dir / "broken.jpg"),
            output_path="",
            index=0,
        ),
    ]
    save_metadata(paths, entries)

    loaded = load_metadata(paths)
    assert loaded == sorted(entries, key=lambda meta: meta.index)
    assert loaded[0].succeeded is False
    assert loaded[1].reduction_percent == pytest.approx(75.0)


def test_malformed_metadata_raises(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    paths.metadata_file.write_text(json.dumps({"index": 0}), encoding="utf-8")

    with pytest.raises(MetadataStoreError):
        load_metadata(paths)


def test_export_copies_every_output(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path / "base")
    (paths.output_dir / "a_compressed.jpg").write_bytes(b"aaa")
    (paths.output_dir / "b_compressed.webp").write_bytes(b"bb")

    destination = tmp_path / "exported" / "nested"
    exported = export_outputs(paths.output_dir, destination)

    assert sorted(p.name for p in exported) == ["a_compressed.jpg", "b_compressed.webp"]
    assert (destination / "a_compressed.jpg").read_bytes() == b"aaa"
    assert (paths.output_dir / "a_compressed.jpg").exists()

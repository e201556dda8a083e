"""同步模式的完整批处理：接收、并发压缩、对账、诊断与报告。"""

from __future__ import annotations

import csv
import io
from pathlib import Path

import pytest
from PIL import Image

from image_compression.api.commands import CompressionCommands
from image_compression.core.config import AppSettings, CompressionMethod, PipelineConfig
from image_compression.core.diagnostics import DiagnosisStatus, diagnose
from image_compression.core.exceptions import BatchFailedError, ExternalToolError
from image_compression.core.progress import ProgressUpdate
from image_compression.core.storage import StorageManager
from image_compression.core.store import load_metadata
from image_compression.processing.external import CommandFolderCompressor
from image_compression.processing.ingestion import ImagePayload
from image_compression.processing.pipeline import process_batch
from image_compression.utils.transport import encode_bytes


def _image_bytes(fmt: str, size: tuple[int, int] = (120, 90), color: str = "orange") -> bytes:
    image = Image.new("RGB", size, color)
    for x in range(0, size[0], 3):
        image.putpixel((x, x % size[1]), (x % 256, 30, 200))
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def _payload(filename: str, raw: bytes, mime: str = "image/png") -> ImagePayload:
    return ImagePayload(filename=filename, data=encode_bytes(raw, mime))


def _config(**overrides) -> PipelineConfig:
    params = {"max_workers": 1, "include_encoded": False}
    params.update(overrides)
    return PipelineConfig(**params)


def test_broken_jpeg_and_valid_png_under_webp_lossy(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    broken = b"\xff\xd8\xff" + b"\x00" * 47
    images = [
        _payload("broken.jpg", broken, "image/jpeg"),
        _payload("diagram.png", _image_bytes("PNG", size=(160, 120))),
    ]

    result = process_batch(
        paths,
        images,
        settings=AppSettings(method=CompressionMethod.WEBP_LOSSY),
        config=_config(),
    )

    assert len(result.results) == 1
    assert Path(result.results[0].compressed_path).name == "diagram_compressed.webp"
    assert len(result.failures) == 1

    broken_meta, png_meta = result.metadata
    assert broken_meta.index == 0 and not broken_meta.succeeded
    assert broken_meta.compressed_name == "broken_failed"
    assert png_meta.succeeded
    assert png_meta.compressed_name == "diagram_compressed.webp"
    assert result.diagnosis.summary == "partial, 1/2"
    assert [p.name for p in paths.output_dir.iterdir()] == ["diagram_compressed.webp"]


def test_three_jpegs_under_lossy(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    images = [_payload(f"shot{i}.jpg", _image_bytes("JPEG", color=color), "image/jpeg") for i, color in enumerate(["red", "green", "blue"])]

    result = process_batch(
        paths,
        images,
        settings=AppSettings(compression_quality=75, method=CompressionMethod.LOSSY),
        config=_config(),
    )

    names = sorted(p.name for p in paths.output_dir.iterdir())
    assert names == ["shot0_compressed.jpg", "shot1_compressed.jpg", "shot2_compressed.jpg"]
    assert all(meta.compressed_size is not None for meta in result.metadata)
    assert result.diagnosis.status == DiagnosisStatus.ALL_SUCCEEDED
    assert result.failures == []


@pytest.mark.parametrize("method", list(CompressionMethod))
def test_identical_filenames_never_overwrite(tmp_path: Path, method: CompressionMethod) -> None:
    paths = StorageManager().initialize(tmp_path)
    images = [
        _payload("photo.png", _image_bytes("PNG", color="purple")),
        _payload("photo.png", _image_bytes("PNG", color="yellow")),
    ]

    result = process_batch(paths, images, settings=AppSettings(method=method), config=_config())

    outputs = sorted(paths.output_dir.iterdir())
    assert len(outputs) == 2
    first, second = result.metadata
    assert first.compressed_name != second.compressed_name
    assert first.compressed_name.startswith("photo_compressed")
    assert second.compressed_name.startswith("photo_compressed_1")
    assert Path(first.output_path).exists() and Path(second.output_path).exists()
    assert {Path(r.compressed_path) for r in result.results} == set(outputs)


def test_parallel_workers_match_sequential_naming(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    images = [_payload(f"pic{i}.png", _image_bytes("PNG", color=color)) for i, color in enumerate(["red", "teal", "navy", "gold"])]

    result = process_batch(
        paths,
        images,
        settings=AppSettings(method=CompressionMethod.WEBP_LOSSLESS),
        config=_config(max_workers=2),
    )

    assert sorted(p.name for p in paths.output_dir.iterdir()) == [f"pic{i}_compressed.webp" for i in range(4)]
    for meta in result.metadata:
        assert Path(meta.output_path).name == f"{Path(meta.original_name).stem}_compressed.webp"


def test_same_stem_inputs_in_parallel_keep_every_output(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    sources = [
        ("a.png", "PNG", "image/png"),
        ("a.bmp", "BMP", "image/bmp"),
        ("a.gif", "GIF", "image/gif"),
        ("a.jpg", "JPEG", "image/jpeg"),
        ("a.jpeg", "JPEG", "image/jpeg"),
        ("a.webp", "WEBP", "image/webp"),
    ]
    images = [_payload(name, _image_bytes(fmt), mime) for name, fmt, mime in sources]

    result = process_batch(
        paths,
        images,
        settings=AppSettings(method=CompressionMethod.LOSSY),
        config=_config(max_workers=4),
    )

    outputs = sorted(paths.output_dir.iterdir())
    assert len(result.results) == len(sources)
    assert len(outputs) == len(result.results)
    assert all(p.stat().st_size > 0 for p in outputs)
    assert {Path(meta.output_path) for meta in result.metadata} == set(outputs)
    assert len({meta.compressed_name for meta in result.metadata}) == len(sources)


def test_all_items_failing_raises_after_metadata_saved(tmp_path: Path) -> None:
    commands = CompressionCommands(tmp_path, config=_config())
    images = [_payload("a.png", b"not an image"), _payload("b.png", b"still not an image")]

    with pytest.raises(BatchFailedError):
        commands.submit_images(images)

    stored = commands.get_metadata()
    assert [meta.index for meta in stored] == [0, 1]
    assert all(not meta.succeeded for meta in stored)


def test_external_tool_that_cannot_start_leaves_failed_metadata(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    images = [_payload("a.png", _image_bytes("PNG")), _payload("b.png", _image_bytes("PNG", color="teal"))]
    config = _config(external_compressor=CommandFolderCompressor([str(tmp_path / "no-such-tool")]))

    with pytest.raises(ExternalToolError):
        process_batch(paths, images, settings=AppSettings(), config=config)

    stored = load_metadata(paths)
    assert [meta.index for meta in stored] == [0, 1]
    assert [meta.compressed_name for meta in stored] == ["a_failed", "b_failed"]
    assert all(not meta.succeeded and meta.output_path == "" for meta in stored)


def test_previous_outputs_are_cleared(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    (paths.output_dir / "old_compressed.jpg").write_bytes(b"stale")

    process_batch(paths, [_payload("new.png", _image_bytes("PNG"))], settings=AppSettings(), config=_config())

    assert [p.name for p in paths.output_dir.iterdir()] == ["new_compressed.webp"]


def test_progress_and_report(tmp_path: Path) -> None:
    paths = StorageManager().initialize(tmp_path)
    updates: list[ProgressUpdate] = []

    process_batch(
        paths,
        [_payload("a.png", _image_bytes("PNG")), _payload("b.png", b"")],
        settings=AppSettings(method=CompressionMethod.LOSSY),
        config=_config(validate=True),
        progress_callback=updates.append,
    )

    assert updates[-1].status == "done"
    assert updates[-1].completed == 1 and updates[-1].total == 2

    report = paths.base_dir / "report.csv"
    with report.open(encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["status"] for row in rows] == ["ok", "failed"]
    assert rows[0]["compressed_name"] == "a_compressed.jpg"
    assert rows[0]["phash_distance"] != ""
    assert 0.5 < float(rows[0]["ssim"]) <= 1.0
    assert rows[1]["compressed_size"] == ""


def test_commands_round_trip(tmp_path: Path) -> None:
    commands = CompressionCommands(tmp_path / "base", config=_config(include_encoded=True))
    assert commands.get_settings().method == CompressionMethod.WEBP_LOSSY

    commands.save_settings({"compression_quality": 55, "method": "lossy"})
    assert commands.get_settings().method == CompressionMethod.LOSSY

    result = commands.submit_images([{"filename": "cover.png", "data": encode_bytes(_image_bytes("PNG"), "image/png")}])
    assert result.mode == "sync"
    assert result.results[0].compressed_encoded.startswith("data:image/jpeg;base64,")

    exported = commands.export_output(tmp_path / "export")
    assert [p.name for p in exported] == ["cover_compressed.jpg"]
    assert commands.get_metadata() == result.metadata


@pytest.mark.parametrize(
    ("expected", "produced", "status", "summary"),
    [
        (5, 5, DiagnosisStatus.ALL_SUCCEEDED, "all, 5/5"),
        (5, 2, DiagnosisStatus.PARTIAL, "partial, 2/5"),
        (5, 0, DiagnosisStatus.NONE_SUCCEEDED, "none, 0/5"),
    ],
)
def test_diagnose(expected: int, produced: int, status: DiagnosisStatus, summary: str) -> None:
    diagnosis = diagnose(expected, produced)
    assert diagnosis.status == status
    assert diagnosis.summary == summary
    if status == DiagnosisStatus.PARTIAL:
        assert "2/5" in diagnosis.message

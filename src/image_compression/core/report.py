"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Mapping, Optional

from image_compression.core.models import ImageMetadata

HEADER = [
    "index",
    "original_name",
    "compressed_name",
    "original_size",
    "compressed_size",
    "reduction_percent",
    "status",
    "phash_distance",
    "ssim",
]

Metrics = Mapping[int, tuple[Optional[float], Optional[float]]]


def write_csv_report(
    metadata: Iterable[ImageMetadata],
    output_dir: Path,
    filename: str,
    metrics: Optional[Metrics] = None,
) -> Path:
    """将每条元数据写成 CSV 一行，画质指标缺失时留空。"""

    metrics = metrics or {}
    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for meta in sorted(metadata, key=lambda m: m.index):
            phash, ssim = metrics.get(meta.index, (None, None))
            reduction = meta.reduction_percent
            writer.writerow(
                [
                    meta.index,
                    meta.original_name,
                    meta.compressed_name,
                    meta.original_size,
                    "" if meta.compressed_size is None else meta.compressed_size,
                    "" if reduction is None else f"{reduction:.2f}",
                    "ok" if meta.succeeded else "failed",
                    _format_phash(phash),
                    _format_ssim(ssim),
                ]
            )
    return report_path


def _format_phash(value: Optional[float]) -> str:
    if value is None:
        return ""
    return str(int(round(value)))


def _format_ssim(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:.6f}"

"""元数据对账：把实际落盘的输出文件与提交顺序的元数据对应起来。"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Collection, Optional, Sequence

from image_compression.core.exceptions import PathExhaustedError
from image_compression.core.models import CompressionResult, ImageMetadata
from image_compression.core.output_manager import compressed_name, dedupe_path, failed_name

LOGGER = logging.getLogger(__name__)


class ReconcileOrder(str, Enum):
    NAME = "name"
    CREATION = "creation"


def _creation_key(path: Path) -> tuple[float, str]:
    # st_birthtime 并非所有平台/文件系统都提供，退回到 mtime
    stat = path.stat()
    created = getattr(stat, "st_birthtime", None)
    return (created if created is not None else stat.st_mtime, path.name)


def sort_outputs(files: Sequence[Path], order: ReconcileOrder) -> list[Path]:
    if order == ReconcileOrder.CREATION:
        return sorted(files, key=_creation_key)
    return sorted(files, key=lambda p: p.name)


def reconcile_by_results(
    metadata: Sequence[ImageMetadata],
    results: Sequence[CompressionResult],
    output_dir: Path,
) -> list[ImageMetadata]:
    """同步模式：通过压缩器返回的原始路径与元数据的 input_path 直接关联。"""

    by_input = {result.original_path: result for result in results}
    for meta in sorted(metadata, key=lambda m: m.index):
        result = by_input.get(meta.input_path)
        observed = Path(result.compressed_path) if result else None
        if observed is None or not observed.is_file():
            _mark_failed(meta)
            continue
        _apply_pair(meta, observed, output_dir)

    _log_summary(metadata)
    return list(metadata)


def reconcile_by_order(
    metadata: Sequence[ImageMetadata],
    files: Sequence[Path],
    output_dir: Path,
    order: ReconcileOrder = ReconcileOrder.CREATION,
    *,
    staged: Optional[Collection[Path]] = None,
) -> list[ImageMetadata]:
    """按位置配对：输出文件按 order 排序，元数据按 index 排序。

    staged 给出时，只有真正写入 input 目录的条目参与配对，其余直接标记失败。
    外部工具的命名不受控制，创建时间排序在部分文件系统上并不稳定。
    """

    staged_set = {Path(p) for p in staged} if staged is not None else None
    ordered_meta = sorted(metadata, key=lambda m: m.index)
    eligible: list[ImageMetadata] = []
    for meta in ordered_meta:
        if staged_set is not None and Path(meta.input_path) not in staged_set:
            _mark_failed(meta)
        else:
            eligible.append(meta)

    try:
        ordered_files = sort_outputs([p for p in files if p.is_file()], order)
    except OSError as exc:
        LOGGER.warning("读取输出文件时间失败，改为按文件名排序: %s", exc)
        ordered_files = sort_outputs([p for p in files if p.exists()], ReconcileOrder.NAME)

    for position, meta in enumerate(eligible):
        if position < len(ordered_files):
            _apply_pair(meta, ordered_files[position], output_dir)
        else:
            LOGGER.info("未找到 metadata[%d] (%s) 的输出文件", meta.index, meta.original_name)
            _mark_failed(meta)

    if len(ordered_files) > len(eligible):
        LOGGER.warning("输出目录中有 %d 个文件无法对应到输入", len(ordered_files) - len(eligible))

    _log_summary(metadata)
    return list(metadata)


def _apply_pair(meta: ImageMetadata, observed: Path, output_dir: Path) -> None:
    """记录输出大小并重命名为 <原始名>_compressed.<ext>；重命名失败时保留原名。"""

    try:
        size = observed.stat().st_size
    except OSError as exc:
        LOGGER.warning("无法读取输出文件 %s: %s", observed, exc)
        _mark_failed(meta)
        return

    meta.compressed_size = size
    stem = Path(meta.original_name).stem or "image"
    desired_name = compressed_name(stem, observed.suffix)

    target = observed
    if not _is_canonical(observed.name, desired_name):
        try:
            target = dedupe_path(output_dir / desired_name)
            observed.rename(target)
        except (OSError, PathExhaustedError) as exc:
            LOGGER.warning("重命名 %s 失败，保留原文件名: %s", observed.name, exc)
            target = observed
        else:
            LOGGER.debug("已重命名 %s -> %s", observed.name, target.name)

    meta.output_path = str(target)
    meta.compressed_name = target.name


def _is_canonical(name: str, desired_name: str) -> bool:
    """已是规范名或其去重变体 (stem_N.ext) 时无需重命名。"""

    if name == desired_name:
        return True
    desired = Path(desired_name)
    pattern = rf"{re.escape(desired.stem)}_\d+{re.escape(desired.suffix)}"
    return re.fullmatch(pattern, name) is not None


def _mark_failed(meta: ImageMetadata) -> None:
    stem = Path(meta.original_name).stem or "image"
    meta.compressed_size = None
    meta.compressed_name = failed_name(stem)
    meta.output_path = ""


def _log_summary(metadata: Sequence[ImageMetadata]) -> None:
    produced = sum(1 for meta in metadata if meta.succeeded)
    LOGGER.info("对账完成：%d/%d 个条目找到输出", produced, len(metadata))

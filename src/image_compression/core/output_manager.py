"""输出文件命名、冲突去重与导出。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterator

from image_compression.core.exceptions import PathExhaustedError, StorageError
from image_compression.core.storage import list_files

LOGGER = logging.getLogger(__name__)

COMPRESSED_MARKER = "_compressed"
FAILED_MARKER = "_failed"
MAX_DEDUP_SUFFIX = 10_000


def _candidates(desired: Path) -> Iterator[Path]:
    yield desired
    for idx in range(1, MAX_DEDUP_SUFFIX + 1):
        yield desired.with_name(f"{desired.stem}_{idx}{desired.suffix}")


def dedupe_path(desired: Path) -> Path:
    """目标不存在时原样返回，否则依次尝试 stem_1.ext、stem_2.ext ……"""

    for candidate in _candidates(desired):
        if not candidate.exists():
            return candidate

    raise PathExhaustedError(f"{desired.name} 的去重后缀已超过 {MAX_DEDUP_SUFFIX}")


def reserve_path(desired: Path) -> Path:
    """与 dedupe_path 相同的候选顺序，但以独占方式创建空文件占用名称。

    “检查并创建”是一次原子操作，多个工作进程同时为同名输出取名时
    不会拿到同一个路径；调用者随后覆盖写入该文件。
    """

    for candidate in _candidates(desired):
        try:
            with open(candidate, "xb"):
                pass
        except FileExistsError:
            continue
        return candidate

    raise PathExhaustedError(f"{desired.name} 的去重后缀已超过 {MAX_DEDUP_SUFFIX}")


def compressed_name(stem: str, extension: str) -> str:
    """规范输出名：<stem>_compressed.<ext>。"""

    ext = extension.lstrip(".")
    return f"{stem}{COMPRESSED_MARKER}.{ext}" if ext else f"{stem}{COMPRESSED_MARKER}"


def failed_name(stem: str) -> str:
    return f"{stem}{FAILED_MARKER}"


def build_output_path(source: Path, output_dir: Path, extension: str) -> Path:
    """为压缩器占用一个去重后的输出路径（已创建为空文件）。"""

    return reserve_path(output_dir / compressed_name(source.stem, extension))


def export_outputs(output_dir: Path, destination: Path) -> list[Path]:
    """把输出目录中的每个文件复制到目标目录，保留文件名。"""

    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"无法创建导出目录 {destination}: {exc}") from exc

    exported: list[Path] = []
    for source in list_files(output_dir):
        target = destination / source.name
        try:
            shutil.copy2(source, target)
        except OSError as exc:
            raise StorageError(f"导出 {source.name} 失败: {exc}") from exc
        exported.append(target)

    LOGGER.info("已导出 %d 个文件到 %s", len(exported), destination)
    return exported

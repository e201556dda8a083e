"""压缩方式到压缩器的调度策略。

压缩方式选择的是一类行为而不是单一编码器：
无损模式下非 PNG/WebP 的文件改走 JPEG，WebP 模式下已经是 JPEG 的文件
也改走 JPEG 重压缩，而不是转码为 WebP。
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from image_compression.core.config import AppSettings, CompressionMethod
from image_compression.core.models import CompressionResult
from image_compression.processing.adapters import (
    JPEG_EXTENSIONS,
    LOSSLESS_EXTENSIONS,
    compress_lossless_png,
    compress_lossy_jpeg,
    compress_webp,
)


class AdapterId(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"


def _normalize_extension(extension: str) -> str:
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext


def select_adapter(method: CompressionMethod, extension: str) -> AdapterId:
    """根据压缩方式与文件扩展名选择压缩器，不涉及任何 I/O。"""

    ext = _normalize_extension(extension)

    if method == CompressionMethod.LOSSY:
        return AdapterId.JPEG
    if method == CompressionMethod.LOSSLESS:
        return AdapterId.PNG if ext in LOSSLESS_EXTENSIONS else AdapterId.JPEG
    if method.is_webp:
        return AdapterId.JPEG if ext in JPEG_EXTENSIONS else AdapterId.WEBP

    raise ValueError(f"未知的压缩方式: {method}")


def run_adapter(
    adapter_id: AdapterId,
    input_path: Path,
    output_dir: Path,
    settings: AppSettings,
    *,
    include_encoded: bool = True,
) -> CompressionResult:
    """执行选定的压缩器。"""

    quality = settings.quality_int
    if adapter_id == AdapterId.JPEG:
        return compress_lossy_jpeg(input_path, output_dir, quality, include_encoded=include_encoded)
    if adapter_id == AdapterId.PNG:
        return compress_lossless_png(input_path, output_dir, include_encoded=include_encoded)
    if adapter_id == AdapterId.WEBP:
        lossless = settings.method == CompressionMethod.WEBP_LOSSLESS
        return compress_webp(input_path, output_dir, quality, lossless, include_encoded=include_encoded)

    raise ValueError(f"未知的压缩器: {adapter_id}")


def dispatch(input_path: Path, output_dir: Path, settings: AppSettings, *, include_encoded: bool = True) -> CompressionResult:
    adapter_id = select_adapter(settings.method, input_path.suffix)
    return run_adapter(adapter_id, input_path, output_dir, settings, include_encoded=include_encoded)

"""单文件压缩器：JPEG 有损重编码、PNG 无损优化、WebP 编码。

每个压缩器接受一个输入文件和输出目录，成功时返回 CompressionResult，
失败时抛出 AdapterError，由工作进程转换为单文件失败。
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from image_compression.core.exceptions import AdapterError, UnsupportedInputError
from image_compression.core.models import CompressionResult, compute_reduction_percent
from image_compression.core.output_manager import build_output_path
from image_compression.processing.image_loader import load_image
from image_compression.utils.transport import encode_file

LOGGER = logging.getLogger(__name__)

JPEG_EXTENSIONS = {".jpg", ".jpeg"}
LOSSLESS_EXTENSIONS = {".png", ".webp"}
OXIPNG_TIMEOUT = 300


def compress_lossy_jpeg(
    input_path: Path,
    output_dir: Path,
    quality: int = 75,
    *,
    include_encoded: bool = True,
) -> CompressionResult:
    """解码任意支持的格式，重新编码为渐进式 JPEG。"""

    image = load_image(input_path, mode="RGB")
    try:
        output_path = build_output_path(input_path, output_dir, "jpg")
        try:
            image.save(
                output_path,
                format="JPEG",
                quality=max(1, min(100, int(quality))),
                progressive=True,
                optimize=True,
            )
        except (OSError, ValueError) as exc:
            _discard(output_path)
            raise AdapterError(f"写入 JPEG 失败: {output_path.name}: {exc}") from exc
    finally:
        image.close()

    return _build_result(input_path, output_path, include_encoded)


def compress_lossless_png(
    input_path: Path,
    output_dir: Path,
    *,
    include_encoded: bool = True,
) -> CompressionResult:
    """先复制源文件，再以最高强度原地优化并去除非必要的元数据块。"""

    suffix = input_path.suffix.lower()
    if suffix not in LOSSLESS_EXTENSIONS:
        raise UnsupportedInputError(f"无损压缩只接受 PNG/WebP: {input_path.name}")

    if suffix == ".webp":
        return compress_webp(input_path, output_dir, lossless=True, include_encoded=include_encoded)

    output_path = build_output_path(input_path, output_dir, "png")
    try:
        shutil.copyfile(input_path, output_path)
    except OSError as exc:
        _discard(output_path)
        raise AdapterError(f"复制 PNG 失败: {input_path.name}: {exc}") from exc

    try:
        engine = _optimize_png_in_place(output_path)
    except AdapterError:
        _discard(output_path)
        raise

    LOGGER.debug("PNG 优化完成 (%s): %s", engine, output_path.name)
    return _build_result(input_path, output_path, include_encoded)


def compress_webp(
    input_path: Path,
    output_dir: Path,
    quality: int = 75,
    lossless: bool = False,
    *,
    include_encoded: bool = True,
) -> CompressionResult:
    """解码为 RGBA（保留透明通道）后编码为 WebP。"""

    image = load_image(input_path, mode="RGBA")
    try:
        output_path = build_output_path(input_path, output_dir, "webp")
        save_params: dict[str, object] = {"method": 6}
        if lossless:
            save_params.update(lossless=True, quality=100)
        else:
            save_params.update(lossless=False, quality=max(1, min(100, int(quality))))
        try:
            image.save(output_path, format="WEBP", **save_params)
        except (OSError, ValueError) as exc:
            _discard(output_path)
            raise AdapterError(f"写入 WebP 失败: {output_path.name}: {exc}") from exc
    finally:
        image.close()

    return _build_result(input_path, output_path, include_encoded)


def _optimize_png_in_place(path: Path) -> str:
    """优先使用 oxipng，找不到可执行文件时使用 Pillow 重新保存。"""

    oxipng = shutil.which("oxipng")
    if oxipng and _run_oxipng(oxipng, path):
        return "oxipng"

    temp = path.with_name(f"{path.stem}.__opt{path.suffix}")
    try:
        with Image.open(path) as img:
            img.load()
            img.save(temp, format="PNG", optimize=True, compress_level=9)
    except (UnidentifiedImageError, OSError) as exc:
        _discard(temp)
        raise AdapterError(f"PNG 优化失败: {path.name}: {exc}") from exc

    if temp.stat().st_size < path.stat().st_size:
        temp.replace(path)
    else:
        temp.unlink()
    return "Pillow"


def _run_oxipng(executable: str, path: Path) -> bool:
    command = [executable, "-o", "max", "--strip", "safe", "--quiet", str(path)]
    try:
        result = subprocess.run(command, capture_output=True, timeout=OXIPNG_TIMEOUT, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        LOGGER.warning("oxipng 执行失败，改用 Pillow: %s", exc)
        return False
    if result.returncode != 0:
        LOGGER.warning("oxipng 返回码 %s: %s", result.returncode, result.stderr.decode(errors="replace").strip())
        return False
    return True


def _build_result(input_path: Path, output_path: Path, include_encoded: bool) -> CompressionResult:
    """从文件系统读取前后大小并生成结果。"""

    try:
        original_size = input_path.stat().st_size
        compressed_size = output_path.stat().st_size
    except OSError as exc:
        raise AdapterError(f"无法读取文件大小: {exc}") from exc

    reduction = compute_reduction_percent(original_size, compressed_size)
    LOGGER.info(
        "压缩 %s -> %s: %d -> %d 字节, %.2f%%",
        input_path.name,
        output_path.name,
        original_size,
        compressed_size,
        reduction,
    )

    original_encoded: Optional[str] = None
    compressed_encoded: Optional[str] = None
    if include_encoded:
        try:
            original_encoded = encode_file(input_path)
            compressed_encoded = encode_file(output_path)
        except OSError as exc:
            raise AdapterError(f"无法编码结果文件: {exc}") from exc

    return CompressionResult(
        original_path=str(input_path),
        compressed_path=str(output_path),
        original_size=original_size,
        compressed_size=compressed_size,
        reduction_percent=reduction,
        original_encoded=original_encoded,
        compressed_encoded=compressed_encoded,
    )


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("无法删除残留文件 %s: %s", path, exc)

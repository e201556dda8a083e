"""接收界面提交的图片：解码、签名检测、写入 input 目录并记录元数据。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Mapping, Optional, Sequence, Union

from image_compression.core.config import StoragePaths
from image_compression.core.exceptions import EmptyBatchError, TransportDecodeError
from image_compression.core.models import ImageMetadata, ImageRecord
from image_compression.core.output_manager import dedupe_path, failed_name
from image_compression.core.storage import clear
from image_compression.utils.transport import decode_transport

LOGGER = logging.getLogger(__name__)


class ImageSignature(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"
    BMP = "bmp"


@dataclass(slots=True)
class ImagePayload:
    """界面提交的一张图片：文件名 + header,base64 字符串。"""

    filename: str
    data: str

    @classmethod
    def coerce(cls, item: Union["ImagePayload", Mapping[str, Any]]) -> "ImagePayload":
        if isinstance(item, ImagePayload):
            return item
        try:
            return cls(filename=str(item["filename"]), data=str(item["data"]))
        except (KeyError, TypeError) as exc:
            raise TransportDecodeError(f"提交项缺少 filename/data 字段: {item!r:.80}") from exc


@dataclass(slots=True)
class IngestionResult:
    metadata: list[ImageMetadata]
    staged: list[Path]

    @property
    def valid_count(self) -> int:
        return len(self.staged)


def sniff_signature(data: bytes) -> Optional[ImageSignature]:
    """根据文件头魔数判断格式，无法识别时返回 None。"""

    if data[:3] == b"\xff\xd8\xff":
        return ImageSignature.JPEG
    if data[:4] == b"\x89PNG":
        return ImageSignature.PNG
    if data[:4] == b"GIF8":
        return ImageSignature.GIF
    if data[:4] == b"RIFF" and len(data) >= 12 and data[8:12] == b"WEBP":
        return ImageSignature.WEBP
    if data[:2] == b"BM":
        return ImageSignature.BMP
    return None


def _safe_filename(filename: str, index: int) -> str:
    # 只保留文件名部分，防止写出 input 目录
    name = PurePath(filename.replace("\\", "/")).name
    if not name or name in {".", ".."}:
        return f"image_{index}"
    return name


def decode_batch(images: Sequence[Union[ImagePayload, Mapping[str, Any]]]) -> list[ImageRecord]:
    """解码整批数据；任意一项传输格式错误都会使整批失败。"""

    records: list[ImageRecord] = []
    for index, item in enumerate(images):
        payload = ImagePayload.coerce(item)
        try:
            raw = decode_transport(payload.data)
        except TransportDecodeError as exc:
            raise TransportDecodeError(f"第 {index} 项 {payload.filename!r} 解码失败: {exc}") from exc
        records.append(ImageRecord(filename=_safe_filename(payload.filename, index), raw_bytes=raw))
    return records


def ingest_images(
    paths: StoragePaths,
    images: Sequence[Union[ImagePayload, Mapping[str, Any]]],
) -> IngestionResult:
    """解码、校验并写入 input 目录，返回按提交顺序排列的元数据。"""

    records = decode_batch(images)
    clear(paths, "input")

    metadata: list[ImageMetadata] = []
    staged: list[Path] = []

    for index, record in enumerate(records):
        stem = Path(record.filename).stem or "image"
        desired_input = paths.input_dir / record.filename
        meta = ImageMetadata(
            original_name=record.filename,
            compressed_name=failed_name(stem),
            original_size=len(record.raw_bytes),
            compressed_size=None,
            input_path=str(desired_input),
            output_path="",
            index=index,
        )
        metadata.append(meta)

        if not record.raw_bytes:
            LOGGER.warning("跳过空图片数据: %s", record.filename)
            continue

        signature = sniff_signature(record.raw_bytes)
        if signature is None:
            LOGGER.warning("无法识别 %s 的图片格式，仍尝试处理", record.filename)
        else:
            LOGGER.debug("%s 识别为 %s (%d 字节)", record.filename, signature.value, len(record.raw_bytes))

        input_path = dedupe_path(desired_input)
        try:
            input_path.write_bytes(record.raw_bytes)
        except OSError as exc:
            LOGGER.error("写入输入文件失败 %s: %s", input_path, exc)
            continue

        meta.input_path = str(input_path)
        staged.append(input_path)

    if not staged:
        raise EmptyBatchError(f"提交的 {len(records)} 张图片中没有有效图片")

    LOGGER.info("已接收 %d/%d 张图片", len(staged), len(records))
    return IngestionResult(metadata=metadata, staged=staged)

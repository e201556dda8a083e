"""界面传输用的 data URL（header,base64）编解码。"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from pathlib import Path

from image_compression.core.exceptions import TransportDecodeError

_EXTRA_MIME_TYPES = {".webp": "image/webp", ".bmp": "image/bmp"}


def decode_transport(data: str) -> bytes:
    """去掉第一个逗号之前的 header 并严格解码 base64。"""

    header, sep, payload = data.partition(",")
    if not sep:
        raise TransportDecodeError("传输数据缺少 header 分隔符 ','")

    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TransportDecodeError(f"base64 解码失败 (header={header[:40]!r}): {exc}") from exc


def guess_mime(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"


def encode_bytes(raw: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


def encode_file(path: Path) -> str:
    """读取文件并编码为 data URL。"""

    return encode_bytes(path.read_bytes(), guess_mime(path))

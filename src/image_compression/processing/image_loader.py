"""图片解码与像素模式归一化。"""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from image_compression.core.exceptions import AdapterError

LOGGER = logging.getLogger(__name__)


class ImageLoadingError(AdapterError):
    """图片解码失败。"""


def load_image(path: Path, mode: str = "RGB") -> Image.Image:
    """加载单张图片，执行 EXIF 旋转并转换到 RGB 或 RGBA。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    if mode not in {"RGB", "RGBA"}:
        raise ValueError(f"不支持的目标模式: {mode}")

    try:
        with Image.open(path) as img:
            img.load()
            img = ImageOps.exif_transpose(img)

            if mode == "RGBA":
                return img.convert("RGBA") if img.mode != "RGBA" else img.copy()
            if img.mode != "RGB":
                return _flatten_to_rgb(img)
            return img.copy()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise ImageLoadingError(f"无法加载图像: {path.name}: {exc}") from exc


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """将任意模式转换为 RGB，透明区域以白色铺底。"""

    if img.mode in {"RGBA", "LA"} or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background

    return img.convert("RGB")

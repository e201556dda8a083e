"""压缩前后画质对比：感知哈希距离与局部窗口 SSIM。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from image_compression.processing.image_loader import ImageLoadingError, load_image

LOGGER = logging.getLogger(__name__)

HASH_SIZE = 8
SSIM_WINDOW_SIGMA = 1.5
SSIM_C1 = (0.01 * 255) ** 2
SSIM_C2 = (0.03 * 255) ** 2


@dataclass(frozen=True, slots=True)
class FidelityMetrics:
    phash_distance: float
    ssim: float


def measure_fidelity(original_path: Path, compressed_path: Path) -> Optional[FidelityMetrics]:
    """读取两张图片并计算指标；任一图片无法解码时返回 None。"""

    try:
        original = load_image(original_path, mode="RGB")
        compressed = load_image(compressed_path, mode="RGB")
    except ImageLoadingError as exc:
        LOGGER.warning("无法计算画质指标 %s: %s", compressed_path.name, exc)
        return None

    try:
        return FidelityMetrics(
            phash_distance=phash_distance(original, compressed),
            ssim=windowed_ssim(original, compressed),
        )
    except cv2.error as exc:
        LOGGER.warning("OpenCV 计算指标失败 %s: %s", compressed_path.name, exc)
        return None
    finally:
        original.close()
        compressed.close()


def phash_distance(original: Image.Image, compressed: Image.Image) -> float:
    """两张图片 pHash 位阵列的汉明距离，0 表示感知上相同。"""

    bits_a = _phash_bits(original)
    bits_b = _phash_bits(compressed)
    return float(np.count_nonzero(bits_a != bits_b))


def windowed_ssim(original: Image.Image, compressed: Image.Image) -> float:
    """高斯窗口 SSIM 的平均值。

    原图会被缩放到压缩图的尺寸后再比较。
    """

    width, height = compressed.size
    if width <= 0 or height <= 0:
        return 0.0

    a = _gray(original, (width, height))
    b = _gray(compressed, (width, height))

    mu_a = _blur(a)
    mu_b = _blur(b)
    mu_a_sq = mu_a * mu_a
    mu_b_sq = mu_b * mu_b
    mu_ab = mu_a * mu_b
    sigma_a_sq = _blur(a * a) - mu_a_sq
    sigma_b_sq = _blur(b * b) - mu_b_sq
    sigma_ab = _blur(a * b) - mu_ab

    numerator = (2 * mu_ab + SSIM_C1) * (2 * sigma_ab + SSIM_C2)
    denominator = (mu_a_sq + mu_b_sq + SSIM_C1) * (sigma_a_sq + sigma_b_sq + SSIM_C2)
    ssim_map = numerator / denominator
    return float(np.clip(ssim_map.mean(), -1.0, 1.0))


def _phash_bits(image: Image.Image) -> np.ndarray:
    size = HASH_SIZE * 4
    gray = _gray(image, (size, size))
    low = cv2.dct(gray)[:HASH_SIZE, :HASH_SIZE]
    return low > np.median(low[1:, 1:])


def _gray(image: Image.Image, size: tuple[int, int]) -> np.ndarray:
    resized = image.convert("L").resize(size, Image.LANCZOS)
    return np.asarray(resized, dtype=np.float64)


def _blur(array: np.ndarray) -> np.ndarray:
    return cv2.GaussianBlur(array, (11, 11), SSIM_WINDOW_SIGMA)

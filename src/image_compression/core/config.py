"""压缩任务与应用设置的配置模型。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from image_compression.core.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from image_compression.processing.external import ExternalCompressor

LOGGER = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
METADATA_FILENAME = "metadata.json"


class CompressionMethod(str, Enum):
    """压缩方式，决定调度器选择哪一类压缩器。"""

    LOSSY = "lossy"
    LOSSLESS = "lossless"
    WEBP_LOSSY = "webp_lossy"
    WEBP_LOSSLESS = "webp_lossless"

    @classmethod
    def parse(cls, value: str) -> "CompressionMethod":
        """解析字符串；未知值回退到 webp_lossy。"""

        try:
            return cls(value)
        except ValueError:
            LOGGER.warning("未知的压缩方式 %r，使用默认值 webp_lossy", value)
            return cls.WEBP_LOSSY

    @property
    def is_webp(self) -> bool:
        return self in (CompressionMethod.WEBP_LOSSY, CompressionMethod.WEBP_LOSSLESS)


@dataclass(slots=True)
class AppSettings:
    """持久化的用户设置。"""

    compression_quality: float = 75.0
    method: CompressionMethod = CompressionMethod.WEBP_LOSSY

    def __post_init__(self) -> None:
        if isinstance(self.method, str) and not isinstance(self.method, CompressionMethod):
            self.method = CompressionMethod.parse(self.method)
        validate_quality(self.compression_quality)

    @property
    def quality_int(self) -> int:
        """编码器使用的整数质量值 (1~100)。"""

        return max(1, min(100, int(round(self.compression_quality))))

    def to_dict(self) -> dict[str, Any]:
        return {"compression_quality": float(self.compression_quality), "method": self.method.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppSettings":
        if not isinstance(data, Mapping):
            raise InvalidConfigurationError("设置内容必须是 JSON 对象")
        try:
            quality = float(data.get("compression_quality", 75.0))
        except (TypeError, ValueError) as exc:
            raise InvalidConfigurationError(f"无法解析压缩质量: {data.get('compression_quality')!r}") from exc
        method = CompressionMethod.parse(str(data.get("method", CompressionMethod.WEBP_LOSSY.value)))
        return cls(compression_quality=quality, method=method)


def validate_quality(value: float) -> None:
    """压缩质量必须位于 (0, 100]。"""

    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidConfigurationError(f"压缩质量必须为数字: {value!r}")
    if not 0 < value <= 100:
        raise InvalidConfigurationError(f"压缩质量必须位于 (0, 100]: {value}")


@dataclass(frozen=True, slots=True)
class StoragePaths:
    """初始化后固定的工作目录集合。"""

    base_dir: Path
    input_dir: Path
    output_dir: Path
    settings_dir: Path

    @property
    def settings_file(self) -> Path:
        return self.settings_dir / SETTINGS_FILENAME

    @property
    def metadata_file(self) -> Path:
        return self.base_dir / METADATA_FILENAME

    def role_dir(self, role: str) -> Path:
        """根据角色名 (input/output) 返回目录。"""

        if role == "input":
            return self.input_dir
        if role == "output":
            return self.output_dir
        raise InvalidConfigurationError(f"未知的目录角色: {role}")


@dataclass(slots=True)
class PipelineConfig:
    """单次批处理的运行参数（不持久化）。"""

    max_workers: int = 4
    poll_interval: float = 0.5
    poll_attempts: int = 60
    poll_backoff: float = 1.0
    max_poll_interval: float = 5.0
    include_encoded: bool = True
    validate: bool = False
    report_filename: str = "report.csv"
    external_compressor: Optional["ExternalCompressor"] = None

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise InvalidConfigurationError("max_workers 至少为 1")
        if self.poll_interval < 0:
            raise InvalidConfigurationError("poll_interval 不能为负数")
        if self.poll_attempts < 1:
            raise InvalidConfigurationError("poll_attempts 至少为 1")
        if self.poll_backoff < 1.0:
            raise InvalidConfigurationError("poll_backoff 不能小于 1.0")

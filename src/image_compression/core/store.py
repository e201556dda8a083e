"""设置文件与元数据文件的 JSON 持久化。"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

from image_compression.core.config import AppSettings, StoragePaths, validate_quality
from image_compression.core.exceptions import (
    InvalidConfigurationError,
    MetadataStoreError,
    SettingsStoreError,
)
from image_compression.core.models import ImageMetadata

LOGGER = logging.getLogger(__name__)


def load_settings(paths: StoragePaths) -> AppSettings:
    """读取设置；文件不存在时返回默认值。"""

    settings_file = paths.settings_file
    if not settings_file.exists():
        LOGGER.debug("未找到设置文件，使用默认设置")
        return AppSettings()

    try:
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        return AppSettings.from_dict(data)
    except (OSError, json.JSONDecodeError, InvalidConfigurationError) as exc:
        raise SettingsStoreError(f"无法读取设置文件 {settings_file}: {exc}") from exc


def save_settings(paths: StoragePaths, settings: AppSettings) -> Path:
    """校验并保存设置（整文件覆盖）。"""

    validate_quality(settings.compression_quality)
    settings_file = paths.settings_file
    try:
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        settings_file.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    except OSError as exc:
        raise SettingsStoreError(f"无法写入设置文件 {settings_file}: {exc}") from exc

    LOGGER.info("设置已保存: quality=%s method=%s", settings.compression_quality, settings.method.value)
    return settings_file


def load_metadata(paths: StoragePaths) -> list[ImageMetadata]:
    """读取元数据列表；文件不存在时返回空列表。"""

    metadata_file = paths.metadata_file
    if not metadata_file.exists():
        return []

    try:
        raw = json.loads(metadata_file.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError("元数据文件必须是 JSON 数组")
        entries = [ImageMetadata.from_dict(item) for item in raw]
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise MetadataStoreError(f"无法读取元数据文件 {metadata_file}: {exc}") from exc

    entries.sort(key=lambda meta: meta.index)
    return entries


def save_metadata(paths: StoragePaths, metadata: Iterable[ImageMetadata]) -> Path:
    """按 index 顺序覆盖写入元数据文件。"""

    metadata_file = paths.metadata_file
    ordered = sorted(metadata, key=lambda meta: meta.index)
    try:
        metadata_file.write_text(
            json.dumps([meta.to_dict() for meta in ordered], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
    except OSError as exc:
        raise MetadataStoreError(f"无法写入元数据文件 {metadata_file}: {exc}") from exc
    return metadata_file

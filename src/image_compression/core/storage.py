"""工作目录管理：input / output 两个队列目录与 settings 目录。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from image_compression.core.config import StoragePaths
from image_compression.core.exceptions import AlreadyInitializedError, StorageError

LOGGER = logging.getLogger(__name__)

ROLES = ("input", "output")


class StorageManager:
    """负责一次性创建工作目录，并发布只读的 StoragePaths。"""

    def __init__(self) -> None:
        self._paths: Optional[StoragePaths] = None

    @property
    def paths(self) -> StoragePaths:
        if self._paths is None:
            raise StorageError("存储区域尚未初始化")
        return self._paths

    def initialize(self, base_dir: Path) -> StoragePaths:
        """创建 input/output/settings 目录；同一实例只能初始化一次。"""

        if self._paths is not None:
            raise AlreadyInitializedError(f"存储区域已初始化于 {self._paths.base_dir}")

        base = base_dir.expanduser().resolve()
        paths = StoragePaths(
            base_dir=base,
            input_dir=base / "input",
            output_dir=base / "output",
            settings_dir=base / "settings",
        )
        for directory in (paths.input_dir, paths.output_dir, paths.settings_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"无法创建目录 {directory}: {exc}") from exc

        LOGGER.debug("工作目录已初始化: %s", base)
        self._paths = paths
        return paths


def clear(paths: StoragePaths, role: str) -> Path:
    """删除角色目录并重建为空目录。

    任何一步失败都抛出 StorageError，调用方应重试或放弃整批，
    不能把目录当作“部分清空”继续使用。
    """

    directory = paths.role_dir(role)
    try:
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"清理 {role} 目录失败 ({directory}): {exc}") from exc

    LOGGER.debug("已清空 %s 目录: %s", role, directory)
    return directory


def list_files(directory: Path) -> list[Path]:
    """列出目录下的普通文件（不递归），按文件名排序。"""

    if not directory.is_dir():
        return []
    return sorted((child for child in directory.iterdir() if child.is_file()), key=lambda p: p.name)

"""面向界面层的命令接口。"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from image_compression.core.config import AppSettings, PipelineConfig, StoragePaths
from image_compression.core.models import BatchResult, ImageMetadata
from image_compression.core.output_manager import export_outputs
from image_compression.core.progress import ProgressCallback
from image_compression.core.storage import StorageManager
from image_compression.core.store import load_metadata, load_settings, save_settings
from image_compression.processing.ingestion import ImagePayload
from image_compression.processing.pipeline import process_batch


class CompressionCommands:
    """把存储目录、设置与流水线组合成界面可调用的一组命令。

    每个实例在构造时初始化一次工作目录；同一时刻只处理一个批次。
    """

    def __init__(self, base_dir: Path, config: Optional[PipelineConfig] = None) -> None:
        self._storage = StorageManager()
        self._storage.initialize(base_dir)
        self.config = config or PipelineConfig()

    @property
    def paths(self) -> StoragePaths:
        return self._storage.paths

    def submit_images(
        self,
        images: Sequence[Union[ImagePayload, Mapping[str, Any]]],
        progress_callback: ProgressCallback = None,
        settings: Optional[AppSettings] = None,
    ) -> BatchResult:
        """处理一批图片；settings 为空时使用已保存的设置。"""

        return process_batch(
            self.paths,
            images,
            settings=settings,
            config=self.config,
            progress_callback=progress_callback,
        )

    def get_settings(self) -> AppSettings:
        return load_settings(self.paths)

    def save_settings(self, settings: Union[AppSettings, Mapping[str, Any]]) -> AppSettings:
        if not isinstance(settings, AppSettings):
            settings = AppSettings.from_dict(settings)
        save_settings(self.paths, settings)
        return settings

    def export_output(self, destination: Path) -> list[Path]:
        return export_outputs(self.paths.output_dir, destination.expanduser())

    def get_metadata(self) -> list[ImageMetadata]:
        return load_metadata(self.paths)

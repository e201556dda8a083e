"""并发压缩的工作单元。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from image_compression.core.config import AppSettings
from image_compression.core.exceptions import AdapterError
from image_compression.core.models import TaskOutcome
from image_compression.processing.dispatcher import dispatch

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CompressionTask:
    """描述单个文件的压缩任务。"""

    source_path: Path
    output_dir: Path
    settings: AppSettings
    include_encoded: bool = True


def run_task(task: CompressionTask) -> TaskOutcome:
    """在工作进程中执行调度与压缩，失败转换为 TaskOutcome 而不是向外抛出。"""

    try:
        result = dispatch(
            task.source_path,
            task.output_dir,
            task.settings,
            include_encoded=task.include_encoded,
        )
    except AdapterError as exc:
        LOGGER.warning("压缩失败 %s: %s", task.source_path.name, exc)
        return TaskOutcome(source_path=task.source_path, message=str(exc))
    except OSError as exc:
        LOGGER.warning("压缩时发生 I/O 错误 %s: %s", task.source_path.name, exc)
        return TaskOutcome(source_path=task.source_path, message=f"I/O 错误: {exc}")

    return TaskOutcome(source_path=task.source_path, result=result)

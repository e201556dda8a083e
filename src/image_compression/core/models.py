"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from image_compression.core.diagnostics import Diagnosis


def compute_reduction_percent(original_size: int, compressed_size: int) -> float:
    """带符号的压缩比：正数表示变小，负数表示变大。"""

    if original_size <= 0:
        return 0.0
    return 100.0 * (original_size - compressed_size) / original_size


@dataclass(slots=True)
class ImageRecord:
    """解码后、写盘前的单张图片。"""

    filename: str
    raw_bytes: bytes


@dataclass(frozen=True, slots=True)
class CompressionResult:
    """单个文件压缩成功后的结果。"""

    original_path: str
    compressed_path: str
    original_size: int
    compressed_size: int
    reduction_percent: float
    original_encoded: Optional[str] = None
    compressed_encoded: Optional[str] = None


@dataclass(slots=True)
class ImageMetadata:
    """批次追踪用的元数据，index 是提交顺序，也是输入与输出的关联键。"""

    original_name: str
    compressed_name: str
    original_size: int
    compressed_size: Optional[int]
    input_path: str
    output_path: str
    index: int

    @property
    def succeeded(self) -> bool:
        return self.compressed_size is not None

    @property
    def reduction_percent(self) -> Optional[float]:
        if self.compressed_size is None:
            return None
        return compute_reduction_percent(self.original_size, self.compressed_size)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImageMetadata":
        compressed_size = data.get("compressed_size")
        return cls(
            original_name=str(data["original_name"]),
            compressed_name=str(data["compressed_name"]),
            original_size=int(data["original_size"]),
            compressed_size=int(compressed_size) if compressed_size is not None else None,
            input_path=str(data["input_path"]),
            output_path=str(data["output_path"]),
            index=int(data["index"]),
        )


@dataclass(slots=True)
class TaskOutcome:
    """工作进程返回的单文件结果：成功带 result，失败带 message。"""

    source_path: Path
    result: Optional[CompressionResult] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass(slots=True)
class ExecutionOutcome:
    """并发执行阶段的产出，成功与失败分列。"""

    successes: list[CompressionResult] = field(default_factory=list)
    failures: list[TaskOutcome] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    """整批处理的最终结果。"""

    results: list[CompressionResult]
    failures: list[TaskOutcome]
    metadata: list[ImageMetadata]
    diagnosis: "Diagnosis"
    mode: str = "sync"

    @property
    def failed_metadata(self) -> list[ImageMetadata]:
        """返回未产生输出的条目，方便界面提示。"""

        return [meta for meta in self.metadata if not meta.succeeded]

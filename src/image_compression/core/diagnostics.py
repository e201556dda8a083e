"""根据期望数量与实际产出数量生成诊断说明（仅供提示，不影响流程）。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

POSSIBLE_CAUSES = (
    "文件损坏或内容不完整",
    "格式不受支持",
    "磁盘空间不足",
    "输出目录没有写入权限",
)


class DiagnosisStatus(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    NONE_SUCCEEDED = "none_succeeded"


@dataclass(frozen=True, slots=True)
class Diagnosis:
    status: DiagnosisStatus
    expected: int
    produced: int
    message: str

    @property
    def summary(self) -> str:
        """简短描述，例如 ``partial, 2/5``。"""

        label = {
            DiagnosisStatus.ALL_SUCCEEDED: "all",
            DiagnosisStatus.PARTIAL: "partial",
            DiagnosisStatus.NONE_SUCCEEDED: "none",
        }[self.status]
        return f"{label}, {self.produced}/{self.expected}"

    @property
    def missing(self) -> int:
        return max(0, self.expected - self.produced)


def diagnose(expected: int, produced: int) -> Diagnosis:
    causes = "；".join(POSSIBLE_CAUSES)

    if produced >= expected:
        if expected == 0:
            message = "没有需要处理的图片。"
        else:
            message = f"全部 {expected} 张图片压缩成功。"
        return Diagnosis(DiagnosisStatus.ALL_SUCCEEDED, expected, produced, message)

    if produced <= 0:
        message = f"{expected} 张图片均未能压缩。可能原因：{causes}。"
        return Diagnosis(DiagnosisStatus.NONE_SUCCEEDED, expected, 0, message)

    message = (
        f"部分成功：{produced}/{expected} 张图片已压缩，{expected - produced} 张失败。"
        f"可能原因：{causes}。"
    )
    return Diagnosis(DiagnosisStatus.PARTIAL, expected, produced, message)

"""处理流水线：接收图片、并发压缩（或外部工具 + 轮询）、对账与诊断。"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from image_compression.core.config import AppSettings, PipelineConfig, StoragePaths
from image_compression.core.diagnostics import Diagnosis, diagnose
from image_compression.core.exceptions import BatchFailedError
from image_compression.core.models import (
    BatchResult,
    CompressionResult,
    ExecutionOutcome,
    ImageMetadata,
    TaskOutcome,
    compute_reduction_percent,
)
from image_compression.core.progress import ProgressCallback, emit_progress
from image_compression.core.report import write_csv_report
from image_compression.core.storage import clear, list_files
from image_compression.core.store import load_settings, save_metadata
from image_compression.processing.external import run_external
from image_compression.processing.ingestion import ImagePayload, ingest_images
from image_compression.processing.reconcile import (
    ReconcileOrder,
    reconcile_by_order,
    reconcile_by_results,
)
from image_compression.processing.validation import measure_fidelity
from image_compression.processing.worker import CompressionTask, run_task
from image_compression.utils.transport import encode_file

LOGGER = logging.getLogger(__name__)


def run_parallel(
    files: Sequence[Path],
    output_dir: Path,
    settings: AppSettings,
    *,
    max_workers: int = 4,
    include_encoded: bool = True,
    progress_callback: ProgressCallback = None,
) -> ExecutionOutcome:
    """把文件列表分发到固定大小的进程池，成功与失败分别收集。"""

    outcome = ExecutionOutcome()
    total = len(files)
    tasks = [
        CompressionTask(source_path=path, output_dir=output_dir, settings=settings, include_encoded=include_encoded)
        for path in files
    ]
    completed = 0
    emit_progress(progress_callback, completed, total, "开始压缩")

    if max_workers <= 1 or total <= 1:
        for task in tasks:
            _record_outcome(run_task(task), outcome)
            completed += 1
            emit_progress(progress_callback, completed, total, f"完成 {task.source_path.name}")
        return outcome

    with ProcessPoolExecutor(max_workers=min(max_workers, total)) as executor:
        future_map = {executor.submit(run_task, task): task for task in tasks}
        for future in as_completed(future_map):
            task = future_map[future]
            try:
                task_outcome = future.result()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("任务执行异常：%s", exc)
                task_outcome = TaskOutcome(source_path=task.source_path, message=f"工作进程异常: {exc}")
            _record_outcome(task_outcome, outcome)
            completed += 1
            emit_progress(progress_callback, completed, total, f"完成 {task.source_path.name}")

    return outcome


def _record_outcome(task_outcome: TaskOutcome, outcome: ExecutionOutcome) -> None:
    if task_outcome.result is not None:
        outcome.successes.append(task_outcome.result)
    else:
        outcome.failures.append(task_outcome)


def process_batch(
    paths: StoragePaths,
    images: Sequence[Union[ImagePayload, Mapping[str, Any]]],
    *,
    settings: Optional[AppSettings] = None,
    config: Optional[PipelineConfig] = None,
    progress_callback: ProgressCallback = None,
) -> BatchResult:
    """批量处理入口。

    部分失败时返回成功的子集，失败条目在元数据中标记；
    全部失败时在保存元数据后抛出 BatchFailedError。
    """

    config = config or PipelineConfig()
    if settings is None:
        settings = load_settings(paths)
    LOGGER.info(
        "开始处理 %d 张图片 (method=%s, quality=%s)",
        len(images),
        settings.method.value,
        settings.compression_quality,
    )

    ingestion = ingest_images(paths, images)
    metadata = ingestion.metadata
    save_metadata(paths, metadata)

    try:
        clear(paths, "output")

        if config.external_compressor is None:
            mode = "sync"
            files = list_files(paths.input_dir)
            execution = run_parallel(
                files,
                paths.output_dir,
                settings,
                max_workers=config.max_workers,
                include_encoded=config.include_encoded,
                progress_callback=progress_callback,
            )
            reconcile_by_results(metadata, execution.successes, paths.output_dir)
            results = _refresh_results(execution.successes, metadata)
            failures = execution.failures
        else:
            mode = "external"
            external = run_external(
                config.external_compressor,
                paths.input_dir,
                paths.output_dir,
                expected=ingestion.valid_count,
                config=config,
                progress_callback=progress_callback,
            )
            LOGGER.info(
                "外部工具轮询结束: %s (轮询 %d 次，进度消息 %d 条)",
                external.state.value,
                external.attempts,
                external.messages,
            )
            reconcile_by_order(
                metadata,
                list_files(paths.output_dir),
                paths.output_dir,
                ReconcileOrder.CREATION,
                staged=ingestion.staged,
            )
            results = _results_from_metadata(metadata, config.include_encoded)
            failures = [
                TaskOutcome(source_path=Path(meta.input_path), message="外部压缩工具未产生输出")
                for meta in metadata
                if not meta.succeeded
            ]
    finally:
        save_metadata(paths, metadata)

    produced = sum(1 for meta in metadata if meta.succeeded)
    diagnosis = diagnose(len(metadata), produced)
    _log_diagnosis(diagnosis)

    metrics = _measure_quality(metadata) if config.validate else {}
    _write_report(paths, config, metadata, metrics)

    emit_progress(progress_callback, produced, len(metadata), diagnosis.message, status="done")

    if diagnosis.produced == 0:
        raise BatchFailedError(diagnosis.message)

    return BatchResult(
        results=results,
        failures=failures,
        metadata=metadata,
        diagnosis=diagnosis,
        mode=mode,
    )


def _refresh_results(results: Sequence[CompressionResult], metadata: Sequence[ImageMetadata]) -> list[CompressionResult]:
    """对账阶段可能重命名了输出文件，同步结果中的路径。"""

    renamed = {meta.input_path: meta.output_path for meta in metadata if meta.succeeded}
    refreshed: list[CompressionResult] = []
    for result in results:
        new_path = renamed.get(result.original_path)
        if new_path and new_path != result.compressed_path:
            result = replace(result, compressed_path=new_path)
        refreshed.append(result)
    return refreshed


def _results_from_metadata(metadata: Sequence[ImageMetadata], include_encoded: bool) -> list[CompressionResult]:
    """外部工具模式下没有压缩器返回值，根据落盘文件生成结果。"""

    results: list[CompressionResult] = []
    for meta in metadata:
        if meta.compressed_size is None:
            continue
        input_path = Path(meta.input_path)
        output_path = Path(meta.output_path)
        try:
            original_size = input_path.stat().st_size
        except OSError:
            original_size = meta.original_size
        original_encoded = compressed_encoded = None
        if include_encoded:
            try:
                original_encoded = encode_file(input_path)
                compressed_encoded = encode_file(output_path)
            except OSError as exc:
                LOGGER.warning("无法编码 %s: %s", output_path.name, exc)
        results.append(
            CompressionResult(
                original_path=str(input_path),
                compressed_path=str(output_path),
                original_size=original_size,
                compressed_size=meta.compressed_size,
                reduction_percent=compute_reduction_percent(original_size, meta.compressed_size),
                original_encoded=original_encoded,
                compressed_encoded=compressed_encoded,
            )
        )
    return results


def _log_diagnosis(diagnosis: Diagnosis) -> None:
    if diagnosis.missing:
        LOGGER.warning("诊断 [%s]: %s", diagnosis.summary, diagnosis.message)
    else:
        LOGGER.info("诊断 [%s]: %s", diagnosis.summary, diagnosis.message)


def _measure_quality(metadata: Sequence[ImageMetadata]) -> dict[int, tuple[Optional[float], Optional[float]]]:
    metrics: dict[int, tuple[Optional[float], Optional[float]]] = {}
    for meta in metadata:
        if not meta.succeeded:
            continue
        fidelity = measure_fidelity(Path(meta.input_path), Path(meta.output_path))
        if fidelity is not None:
            metrics[meta.index] = (fidelity.phash_distance, fidelity.ssim)
    return metrics


def _write_report(
    paths: StoragePaths,
    config: PipelineConfig,
    metadata: Sequence[ImageMetadata],
    metrics: Mapping[int, tuple[Optional[float], Optional[float]]],
) -> None:
    try:
        write_csv_report(metadata, paths.base_dir, config.report_filename, metrics)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)

"""外部（后台）压缩工具模式。

外部工具被提交后立即返回，只通过进度通道报告状态；是否完成由
OutputWatcher 轮询输出目录的文件数量判断：

    SUBMITTED -> POLLING -> RECONCILED | TIMED_OUT   (等待被打断时为 CANCELLED)

超出轮询次数不算错误，流水线会带着已有的输出继续对账。
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from image_compression.core.config import PipelineConfig
from image_compression.core.exceptions import ExternalToolError
from image_compression.core.output_manager import reserve_path
from image_compression.core.progress import ProgressCallback, emit_progress
from image_compression.core.storage import list_files
from image_compression.processing.image_loader import ImageLoadingError, load_image

LOGGER = logging.getLogger(__name__)

WaitFunc = Callable[[float], bool]


class WatchState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    RECONCILED = "reconciled"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (WatchState.RECONCILED, WatchState.TIMED_OUT, WatchState.CANCELLED)


class ExternalCompressor(Protocol):
    """后台批量压缩工具：start 必须立即返回，结束时向通道放入 None。"""

    name: str

    def start(self, input_dir: Path, output_dir: Path, progress: "queue.Queue[Optional[str]]") -> None:
        ...


class PillowFolderCompressor:
    """在后台线程池中把整个目录压缩为 JPEG，输出名为 <stem>.jpg。"""

    name = "pillow-folder"

    def __init__(self, quality: int = 80, thread_count: int = 4) -> None:
        self.quality = max(1, min(100, int(quality)))
        self.thread_count = max(1, thread_count)

    def start(self, input_dir: Path, output_dir: Path, progress: "queue.Queue[Optional[str]]") -> None:
        threading.Thread(
            target=self._run,
            args=(input_dir, output_dir, progress),
            name="pillow-folder-compressor",
            daemon=True,
        ).start()

    def _run(self, input_dir: Path, output_dir: Path, progress: "queue.Queue[Optional[str]]") -> None:
        try:
            files = list_files(input_dir)
            with ThreadPoolExecutor(max_workers=self.thread_count) as pool:
                futures = {pool.submit(self._compress_one, path, output_dir): path for path in files}
                for future in as_completed(futures):
                    progress.put(future.result())
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("后台压缩异常：%s", exc)
            progress.put(f"后台压缩异常: {exc}")
        finally:
            progress.put(None)

    def _compress_one(self, source: Path, output_dir: Path) -> str:
        target = reserve_path(output_dir / f"{source.stem}.jpg")
        try:
            image = load_image(source, mode="RGB")
            try:
                image.save(target, format="JPEG", quality=self.quality, optimize=True)
            finally:
                image.close()
        except (ImageLoadingError, OSError) as exc:
            target.unlink(missing_ok=True)
            LOGGER.warning("后台压缩失败 %s: %s", source.name, exc)
            return f"失败 {source.name}: {exc}"
        return f"完成 {source.name}"


class CommandFolderCompressor:
    """调用外部可执行程序压缩整个目录，标准输出逐行作为进度。

    command 中的 ``{input}`` 与 ``{output}`` 会被替换为目录路径。
    """

    name = "command"

    def __init__(self, command: Sequence[str]) -> None:
        if not command:
            raise ExternalToolError("外部压缩命令不能为空")
        self.command = list(command)
        self._process: Optional[subprocess.Popen[str]] = None

    def build_args(self, input_dir: Path, output_dir: Path) -> list[str]:
        return [part.replace("{input}", str(input_dir)).replace("{output}", str(output_dir)) for part in self.command]

    def start(self, input_dir: Path, output_dir: Path, progress: "queue.Queue[Optional[str]]") -> None:
        args = self.build_args(input_dir, output_dir)
        try:
            self._process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise ExternalToolError(f"无法启动外部压缩工具 {args[0]}: {exc}") from exc

        LOGGER.info("已启动外部压缩工具: %s", " ".join(args))
        threading.Thread(
            target=self._pump_output,
            args=(self._process, progress),
            name="external-compressor-output",
            daemon=True,
        ).start()

    @staticmethod
    def _pump_output(process: "subprocess.Popen[str]", progress: "queue.Queue[Optional[str]]") -> None:
        try:
            assert process.stdout is not None
            for line in process.stdout:
                line = line.rstrip()
                if line:
                    progress.put(line)
            returncode = process.wait()
            if returncode != 0:
                LOGGER.warning("外部压缩工具退出码 %s", returncode)
            progress.put(f"外部压缩工具结束 (exit={returncode})")
        finally:
            progress.put(None)


class OutputWatcher:
    """轮询输出目录，直到文件数达到预期或用完轮询次数。

    wait 与 clock 可注入：wait(seconds) 返回 True 表示等待被打断。
    """

    def __init__(
        self,
        output_dir: Path,
        expected: int,
        *,
        interval: float = 0.5,
        max_attempts: int = 60,
        backoff: float = 1.0,
        max_interval: float = 5.0,
        wait: Optional[WaitFunc] = None,
        clock: Callable[[], float] = time.monotonic,
        counter: Optional[Callable[[], int]] = None,
    ) -> None:
        self.output_dir = output_dir
        self.expected = expected
        self.interval = interval
        self.max_attempts = max(1, max_attempts)
        self.backoff = max(1.0, backoff)
        self.max_interval = max(interval, max_interval)
        self.state = WatchState.SUBMITTED
        self.attempts = 0
        self.observed = 0
        self.elapsed = 0.0
        self._cancel = threading.Event()
        self._wait = wait or self._cancel.wait
        self._clock = clock
        self._counter = counter or (lambda: len(list_files(self.output_dir)))

    def cancel(self) -> None:
        self._cancel.set()

    def next_interval(self) -> float:
        return min(self.interval * self.backoff ** max(0, self.attempts - 1), self.max_interval)

    def poll_once(self) -> WatchState:
        """执行一次检查并推进状态。"""

        if self.state.terminal:
            return self.state

        self.state = WatchState.POLLING
        self.attempts += 1
        self.observed = self._counter()
        LOGGER.debug("轮询 #%d: %d/%d 个输出文件", self.attempts, self.observed, self.expected)

        if self.observed >= self.expected:
            self.state = WatchState.RECONCILED
        elif self.attempts >= self.max_attempts:
            self.state = WatchState.TIMED_OUT
        return self.state

    def run(self) -> WatchState:
        started = self._clock()
        while not self.poll_once().terminal:
            if self._wait(self.next_interval()) or self._cancel.is_set():
                self.state = WatchState.CANCELLED
                break
        self.elapsed = self._clock() - started

        if self.state == WatchState.RECONCILED:
            LOGGER.info("外部压缩完成：%d 个输出 (%.1fs)", self.observed, self.elapsed)
        else:
            LOGGER.warning(
                "停止轮询 (%s)：%d/%d 个输出，已尝试 %d 次",
                self.state.value,
                self.observed,
                self.expected,
                self.attempts,
            )
        return self.state

    def submit(self, executor: ThreadPoolExecutor) -> "Future[WatchState]":
        return executor.submit(self.run)


@dataclass(slots=True)
class ExternalRunResult:
    state: WatchState
    attempts: int
    observed: int
    messages: int


def run_external(
    compressor: ExternalCompressor,
    input_dir: Path,
    output_dir: Path,
    *,
    expected: int,
    config: Optional[PipelineConfig] = None,
    progress_callback: ProgressCallback = None,
    wait: Optional[WaitFunc] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ExternalRunResult:
    """提交外部工具、排空进度通道并轮询输出目录；返回前保证监听任务已结束。"""

    config = config or PipelineConfig()
    channel: "queue.Queue[Optional[str]]" = queue.Queue()
    stop = threading.Event()
    watcher = OutputWatcher(
        output_dir,
        expected,
        interval=config.poll_interval,
        max_attempts=config.poll_attempts,
        backoff=config.poll_backoff,
        max_interval=config.max_poll_interval,
        wait=wait,
        clock=clock,
    )

    LOGGER.info("提交外部压缩工具 %s，预期 %d 个输出", compressor.name, expected)
    compressor.start(input_dir, output_dir, channel)

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="external") as pool:
        monitor = pool.submit(_drain_progress, channel, stop, progress_callback, expected)
        watch = watcher.submit(pool)
        try:
            state = watch.result()
            messages = monitor.result()
        except BaseException:
            watcher.cancel()
            stop.set()
            raise

    return ExternalRunResult(state=state, attempts=watcher.attempts, observed=watcher.observed, messages=messages)


def _drain_progress(
    channel: "queue.Queue[Optional[str]]",
    stop: threading.Event,
    progress_callback: ProgressCallback,
    expected: int,
) -> int:
    """读取进度通道直到收到 None（通道关闭）。"""

    received = 0
    while not stop.is_set():
        try:
            message = channel.get(timeout=0.2)
        except queue.Empty:
            continue
        if message is None:
            break
        received += 1
        LOGGER.debug("外部工具: %s", message)
        emit_progress(progress_callback, min(received, expected), expected, message, status="polling")
    return received

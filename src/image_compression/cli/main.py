"""命令行入口。"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from image_compression.api.commands import CompressionCommands
from image_compression.core.config import AppSettings, CompressionMethod, PipelineConfig
from image_compression.core.exceptions import ImageCompressionError
from image_compression.core.progress import ProgressUpdate
from image_compression.processing.external import (
    CommandFolderCompressor,
    ExternalCompressor,
    PillowFolderCompressor,
)
from image_compression.processing.ingestion import ImagePayload
from image_compression.utils.logging import setup_logging
from image_compression.utils.transport import encode_file

APP_NAME = "image-compression"

app = typer.Typer(help="批量图片压缩工具。")
settings_app = typer.Typer(help="查看或修改保存的压缩设置。")
app.add_typer(settings_app, name="settings")

console = Console()


def _default_base_dir() -> Path:
    return Path(typer.get_app_dir(APP_NAME))


BASE_DIR_OPTION = typer.Option(None, "--base-dir", "-b", help="工作目录，默认使用应用数据目录")


def _open_commands(base_dir: Optional[Path], config: Optional[PipelineConfig] = None) -> CompressionCommands:
    try:
        return CompressionCommands(base_dir or _default_base_dir(), config=config)
    except ImageCompressionError as exc:
        _fail(exc)


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[bold red]错误：[/] {exc}")
    raise typer.Exit(code=1)


def _parse_method(value: Optional[str]) -> Optional[CompressionMethod]:
    if value is None:
        return None
    try:
        return CompressionMethod(value)
    except ValueError as exc:
        choices = ", ".join(m.value for m in CompressionMethod)
        raise typer.BadParameter(f"压缩方式必须是 {choices} 之一") from exc


def _build_external(command: Optional[str], background: bool) -> Optional[ExternalCompressor]:
    if command:
        return CommandFolderCompressor(shlex.split(command))
    if background:
        return PillowFolderCompressor()
    return None


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("压缩图片", total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message and update.status != "running":
            progress.log(update.message)

    return callback


@app.command("compress")
def compress_cli(  # noqa: PLR0913
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="要压缩的图片文件"),
    base_dir: Optional[Path] = BASE_DIR_OPTION,
    method: Optional[str] = typer.Option(None, "--method", "-m", help="本次使用的压缩方式，默认读取设置"),
    quality: Optional[float] = typer.Option(None, "--quality", "-q", help="本次使用的压缩质量 (0, 100]"),
    max_workers: int = typer.Option(4, "--workers", "-w", help="并发进程数量"),
    external_command: Optional[str] = typer.Option(
        None, "--external-command", help="外部压缩命令，可使用 {input} 与 {output} 占位符"
    ),
    background: bool = typer.Option(False, "--background", help="使用内置的后台目录压缩器（输出 JPEG）"),
    auto_validate: bool = typer.Option(False, "--auto-validate", help="处理后计算 pHash 距离与 SSIM"),
    export: Optional[Path] = typer.Option(None, "--export", help="完成后把输出目录复制到此处"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """压缩一批图片并写入工作目录的 output/。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO, rich_output=True)

    parsed_method = _parse_method(method)
    try:
        config = PipelineConfig(
            max_workers=max_workers,
            include_encoded=False,
            validate=auto_validate,
            external_compressor=_build_external(external_command, background),
        )
    except ImageCompressionError as exc:
        _fail(exc)

    commands = _open_commands(base_dir, config)

    try:
        settings = commands.get_settings()
        if parsed_method is not None or quality is not None:
            settings = AppSettings(
                compression_quality=quality if quality is not None else settings.compression_quality,
                method=parsed_method or settings.method,
            )
        payloads = [ImagePayload(filename=path.name, data=encode_file(path)) for path in files]
    except (ImageCompressionError, OSError) as exc:
        _fail(exc)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )

    try:
        with progress:
            result = commands.submit_images(
                payloads,
                progress_callback=_build_progress_callback(progress),
                settings=settings,
            )
        exported = commands.export_output(export) if export else []
    except ImageCompressionError as exc:
        _fail(exc)

    typer.echo(f"处理完成：成功 {len(result.results)} 张，失败 {len(result.failed_metadata)} 张。")
    typer.echo(f"诊断：{result.diagnosis.summary}")
    typer.echo(f"输出目录：{commands.paths.output_dir}")
    if export:
        typer.echo(f"已导出 {len(exported)} 个文件到 {export}")


@app.command("export")
def export_cli(
    destination: Path = typer.Argument(..., file_okay=False, help="导出目标目录"),
    base_dir: Optional[Path] = BASE_DIR_OPTION,
) -> None:
    """把最近一批输出复制到目标目录。"""

    setup_logging(rich_output=True)
    commands = _open_commands(base_dir)
    try:
        exported = commands.export_output(destination)
    except ImageCompressionError as exc:
        _fail(exc)
    typer.echo(f"已导出 {len(exported)} 个文件到 {destination}")


@app.command("metadata")
def metadata_cli(base_dir: Optional[Path] = BASE_DIR_OPTION) -> None:
    """显示最近一批的元数据。"""

    commands = _open_commands(base_dir)
    try:
        entries = commands.get_metadata()
    except ImageCompressionError as exc:
        _fail(exc)

    if not entries:
        typer.echo("暂无元数据。")
        return

    table = Table(title="最近一批")
    for column in ("#", "原文件", "输出文件", "原大小", "压缩后", "压缩率"):
        table.add_column(column)
    for meta in entries:
        reduction = meta.reduction_percent
        table.add_row(
            str(meta.index),
            meta.original_name,
            meta.compressed_name,
            str(meta.original_size),
            "-" if meta.compressed_size is None else str(meta.compressed_size),
            "-" if reduction is None else f"{reduction:.1f}%",
        )
    console.print(table)


@settings_app.command("show")
def settings_show_cli(base_dir: Optional[Path] = BASE_DIR_OPTION) -> None:
    """显示当前设置。"""

    commands = _open_commands(base_dir)
    try:
        settings = commands.get_settings()
    except ImageCompressionError as exc:
        _fail(exc)
    typer.echo(f"method: {settings.method.value}")
    typer.echo(f"compression_quality: {settings.compression_quality:g}")


@settings_app.command("set")
def settings_set_cli(
    base_dir: Optional[Path] = BASE_DIR_OPTION,
    method: Optional[str] = typer.Option(None, "--method", "-m", help="压缩方式"),
    quality: Optional[float] = typer.Option(None, "--quality", "-q", help="压缩质量 (0, 100]"),
) -> None:
    """修改并保存设置，未指定的项保持不变。"""

    parsed_method = _parse_method(method)
    commands = _open_commands(base_dir)
    try:
        current = commands.get_settings()
        updated = commands.save_settings(
            AppSettings(
                compression_quality=quality if quality is not None else current.compression_quality,
                method=parsed_method or current.method,
            )
        )
    except ImageCompressionError as exc:
        _fail(exc)
    typer.echo(f"已保存：method={updated.method.value} compression_quality={updated.compression_quality:g}")


if __name__ == "__main__":
    app()

"""命令行入口。"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from photo_datestamp.core.config import JobConfig, SizeClass, ValidationConfig, WatermarkStyle
from photo_datestamp.core.exceptions import InvalidConfigurationError, OutputDirectoryError
from photo_datestamp.core.models import ProcessingSummary
from photo_datestamp.core.progress import ProgressUpdate
from photo_datestamp.core.scanner import collect_sources
from photo_datestamp.processing.pipeline import run_batch
from photo_datestamp.utils.colors import resolve_color
from photo_datestamp.utils.logging import setup_logging

app = typer.Typer(help="批量为照片添加拍摄日期水印。")


@app.callback()
def main() -> None:
    """照片日期水印工具。"""


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("处理图片", total=update.total)
        description = f"处理图片 {update.current_file}" if update.current_file else "处理图片"
        progress.update(task_id, completed=update.completed, description=description)

    return callback


def _run_cancellable(job: JobConfig, progress: Progress) -> ProcessingSummary:
    """在后台线程执行批处理，主线程收到 Ctrl-C 时设置取消标记并等待收尾。"""

    cancel_event = threading.Event()
    outcome: dict = {}

    def target() -> None:
        try:
            outcome["summary"] = run_batch(
                job,
                progress_callback=_build_progress_callback(progress),
                cancel_event=cancel_event,
            )
        except Exception as exc:  # noqa: BLE001
            outcome["error"] = exc

    worker = threading.Thread(target=target, name="batch-coordinator")
    worker.start()
    while worker.is_alive():
        try:
            worker.join(timeout=0.2)
        except KeyboardInterrupt:
            if not cancel_event.is_set():
                progress.log("正在取消，等待进行中的任务完成当前阶段…")
                cancel_event.set()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["summary"]


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="源图片文件或目录，可指定多个"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录，不存在时自动创建"),
    color: str = typer.Option(
        "#FFD900",
        "--color",
        help="文字颜色：预设名（柯达黄/橙红/玫红/天蓝/翠绿或英文别名）或 HEX（可带 Alpha）",
    ),
    font: Optional[str] = typer.Option(None, "--font", help="字体文件路径或字体名称"),
    weight: str = typer.Option("regular", "--weight", help="字重 regular/bold"),
    size: SizeClass = typer.Option(SizeClass.SMALL, "--size", help="字号档位"),
    pattern: str = typer.Option("yyyy-MM-dd", "--pattern", help="日期格式，支持 yyyy/yy/MM/dd/HH/mm/ss"),
    max_workers: int = typer.Option(4, "--workers", "-w", help="并发任务数量"),
    allow_recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描目录"),
    conflict_strategy: str = typer.Option("overwrite", "--on-conflict", help="文件名冲突策略 overwrite/rename"),
    auto_validate: bool = typer.Option(False, "--auto-validate", help="编码后重新解码并计算相似度指标"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量处理。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        rgba = resolve_color(color)
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--color") from exc
    if weight not in {"regular", "bold"}:
        raise typer.BadParameter("字重必须为 regular 或 bold", param_hint="--weight")

    scan = collect_sources(source, recursive=allow_recursive)
    for path in scan.unsupported:
        typer.echo(f"不支持的格式，已跳过：{path}", err=True)

    job = JobConfig(
        sources=scan.sources,
        output_dir=output.expanduser().resolve(),
        style=WatermarkStyle(
            color=rgba,
            font_family=font,
            font_weight=weight,
            size_class=size,
            date_pattern=pattern,
        ),
        max_workers=max_workers,
        conflict_strategy=conflict_strategy,
        validation=ValidationConfig(enabled=auto_validate),
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    try:
        with progress:
            summary = _run_cancellable(job, progress)
    except OutputDirectoryError as exc:
        typer.echo(f"无法创建输出目录：{exc}", err=True)
        raise typer.Exit(code=1) from exc
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    _print_summary(summary, job.output_dir, len(scan.unsupported))


def _print_summary(summary: ProcessingSummary, output_dir: Path, unsupported: int) -> None:
    status = "已取消" if summary.cancelled else "处理完成"
    typer.echo(
        f"{status}：成功 {summary.success_count} 张，失败 {summary.failure_count} 张，"
        f"未处理 {summary.cancelled_count} 张，不支持 {unsupported} 个。"
    )
    for detail in summary.failure_details:
        typer.echo(f"  - {detail}")
    typer.echo(f"保存位置：{output_dir}")


if __name__ == "__main__":
    app()

"""批处理协调器：有界并发派发、进度汇报与协作式取消。"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Set

from photo_datestamp.core.config import JobConfig
from photo_datestamp.core.exceptions import InvalidConfigurationError
from photo_datestamp.core.models import JobStatus, ProcessingJob, ProcessingResult, ProcessingSummary
from photo_datestamp.core.output_manager import OutputManager
from photo_datestamp.core.progress import ProgressCallback, ProgressState
from photo_datestamp.processing.worker import run_job

LOGGER = logging.getLogger(__name__)


def run_batch(
    config: JobConfig,
    progress_callback: ProgressCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> ProcessingSummary:
    """批量处理入口。

    输出目录无法创建时抛出 ``OutputDirectoryError``，此时没有任何任务开始；
    其余单个任务的错误都记录在汇总结果中，批次继续执行。
    """

    if config.max_workers < 1:
        raise InvalidConfigurationError(f"并发数必须大于 0: {config.max_workers}")

    if cancel_event is None:
        cancel_event = threading.Event()
    output_manager = OutputManager(config.output_dir, config.conflict_strategy)
    jobs = _build_jobs(config, output_manager)
    total = len(jobs)

    summary = ProcessingSummary(total=total)
    state = ProgressState(total=total, capacity=config.max_workers, callback=progress_callback)
    LOGGER.info("开始处理 %d 张图片，并发上限 %d，输出目录 %s", total, config.max_workers, output_manager.output_dir)

    if total == 0:
        state.emit("没有需要处理的图片", status="finished")
        return summary

    slots = threading.BoundedSemaphore(config.max_workers)
    results: list[ProcessingResult] = []
    results_lock = threading.Lock()
    futures: list[Future] = []

    def execute(job: ProcessingJob) -> None:
        try:
            result = _run_tracked(job, state, cancel_event)
            with results_lock:
                results.append(result)
        finally:
            slots.release()

    dispatched = 0
    with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="datestamp") as executor:
        for job in jobs:
            # 等待空闲名额；拿到名额后再次确认是否已取消。
            slots.acquire()
            if cancel_event.is_set():
                slots.release()
                break
            futures.append(executor.submit(execute, job))
            dispatched += 1

    for job in jobs[dispatched:]:
        results.append(
            ProcessingResult(
                source_path=job.source.source_path,
                status=JobStatus.CANCELLED,
                message="已取消（未开始）",
            )
        )

    for future in futures:
        # execute 内部已捕获所有任务异常，这里只暴露协调器自身的缺陷。
        future.result()

    for result in results:
        summary.record(result)
    summary.cancelled = cancel_event.is_set()
    summary.peak_in_flight = state.peak_in_flight

    if summary.cancelled:
        LOGGER.info(
            "批处理已取消：成功 %d，失败 %d，取消 %d",
            summary.success_count,
            summary.failure_count,
            summary.cancelled_count,
        )
    else:
        LOGGER.info("批处理完成：成功 %d，失败 %d", summary.success_count, summary.failure_count)
    state.emit("处理已取消" if summary.cancelled else "处理完成", status="finished")
    return summary


def _run_tracked(job: ProcessingJob, state: ProgressState, cancel_event: threading.Event) -> ProcessingResult:
    name = job.source.name
    state.begin(name)
    try:
        result = run_job(job, cancel_event)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", name)
        result = ProcessingResult(source_path=job.source.source_path, status=JobStatus.FAILURE, message=str(exc))

    if result.status is JobStatus.CANCELLED:
        state.release()
    else:
        state.finish(name, result.message)
    return result


def _build_jobs(config: JobConfig, output_manager: OutputManager) -> list[ProcessingJob]:
    """为每个源文件生成不可变任务快照，并提前确定输出路径。"""

    reserved_paths: Set[Path] = set()
    return [
        ProcessingJob(
            source=source,
            style=config.style,
            dest_path=output_manager.decide_destination(source, reserved_paths=reserved_paths),
            encode_options=config.encode_options,
            validate=config.validation.enabled,
        )
        for source in config.sources
    ]

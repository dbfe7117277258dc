"""单个任务的完整处理流程：取时间 -> 解码 -> 合成 -> 编码 -> 写入。"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from photo_datestamp.core.exceptions import (
    DecodeError,
    EncodeError,
    InvalidConfigurationError,
    ProcessingAborted,
    WriteError,
)
from photo_datestamp.core.models import JobStatus, ProcessingJob, ProcessingResult
from photo_datestamp.core.output_manager import write_atomic
from photo_datestamp.processing.codec import DecodedImage, decode, encode
from photo_datestamp.processing.compositor import composite_frames
from photo_datestamp.processing.layout import compute_layout
from photo_datestamp.processing.metadata import extract_date
from photo_datestamp.processing.validation import verify_encoded
from photo_datestamp.utils.dates import format_capture_date

LOGGER = logging.getLogger(__name__)


def run_job(job: ProcessingJob, cancel_event: Optional[threading.Event] = None) -> ProcessingResult:
    """执行一个任务。各阶段的失败都转换为结果对象，不向外抛出。"""

    source_path = job.source.source_path
    decoded: Optional[DecodedImage] = None

    try:
        _check_cancelled(cancel_event, "开始前")
        capture_time = extract_date(source_path)
        date_text = format_capture_date(capture_time, job.style.date_pattern)

        _check_cancelled(cancel_event, "解码前")
        try:
            decoded = decode(source_path)
        except DecodeError as exc:
            return _failure(job, str(exc), capture_time)

        layout = compute_layout(decoded.width, decoded.height, job.style.size_class.scale_factor)
        LOGGER.debug(
            "%s: %dx%d, %d 帧, 字号 %.1f, 边距 %.1f",
            source_path.name,
            decoded.native_size[0],
            decoded.native_size[1],
            decoded.frame_count,
            layout.font_size,
            layout.margin,
        )
        try:
            watermarked = decoded.with_frames(composite_frames(decoded.frames, date_text, job.style, layout))
        except (OSError, ValueError) as exc:
            return _failure(job, f"水印合成失败: {exc}", capture_time)

        _check_cancelled(cancel_event, "编码前")
        try:
            payload = encode(watermarked, job.encode_options)
            metrics = verify_encoded(decoded, payload) if job.validate else None
        except EncodeError as exc:
            return _failure(job, str(exc), capture_time)

        _check_cancelled(cancel_event, "写入前")
        try:
            write_atomic(payload, job.dest_path)
        except WriteError as exc:
            return _failure(job, str(exc), capture_time)
    except ProcessingAborted as exc:
        return ProcessingResult(source_path=source_path, status=JobStatus.CANCELLED, message=str(exc))
    except InvalidConfigurationError as exc:
        return _failure(job, str(exc))
    finally:
        if decoded is not None:
            _close_frames(decoded)

    return ProcessingResult(
        source_path=source_path,
        status=JobStatus.SUCCESS,
        output_path=job.dest_path,
        message=f"{date_text} -> {job.dest_path.name}",
        capture_time=capture_time,
        phash_distance=metrics.phash_distance if metrics else None,
        ssim=metrics.ssim if metrics else None,
    )


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingAborted(f"已取消（{stage}）")


def _failure(job: ProcessingJob, message: str, capture_time: Optional[datetime] = None) -> ProcessingResult:
    LOGGER.warning("处理失败 %s: %s", job.source.source_path.name, message)
    return ProcessingResult(
        source_path=job.source.source_path,
        status=JobStatus.FAILURE,
        message=message,
        capture_time=capture_time,
    )


def _close_frames(decoded: DecodedImage) -> None:
    for frame in decoded.frames:
        frame.close()

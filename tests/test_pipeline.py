"""批处理协调器测试：结果汇总、并发上限、进度与取消。"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from pathlib import Path

import pytest
from PIL import ExifTags, Image, ImageChops

from photo_datestamp.core.config import JobConfig, SizeClass, ValidationConfig, WatermarkStyle
from photo_datestamp.core.exceptions import InvalidConfigurationError, OutputDirectoryError
from photo_datestamp.core.models import JobStatus, ProcessingResult, SourceImage
from photo_datestamp.core.progress import ProgressUpdate
from photo_datestamp.core.scanner import collect_sources
from photo_datestamp.processing import pipeline, worker
from photo_datestamp.processing.metadata import extract_date
from photo_datestamp.processing.pipeline import run_batch


def make_images(folder: Path, count: int, size: tuple[int, int] = (96, 64)) -> list[SourceImage]:
    folder.mkdir(parents=True, exist_ok=True)
    for index in range(count):
        Image.new("RGB", size, (index * 20 % 256, 80, 160)).save(folder / f"img_{index:02d}.png")
    return collect_sources([folder]).sources


def test_valid_and_corrupt_files_are_reported_separately(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()
    Image.new("RGB", (64, 64), "blue").save(source / "valid.png")
    (source / "corrupted.png").write_text("not an image")

    summary = run_batch(JobConfig(sources=collect_sources([source]).sources, output_dir=tmp_path / "out"))

    assert summary.total == 2
    assert summary.success_count == 1
    assert summary.failure_count == 1
    assert summary.failure_details[0].startswith("corrupted.png: ")
    output_path = summary.succeeded[0].output_path
    assert output_path == (tmp_path / "out" / "valid.png").resolve()
    with Image.open(output_path) as img:
        assert img.size == (64, 64)
    assert not (tmp_path / "out" / "corrupted.png").exists()


def test_output_directory_is_created_with_parents(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 2)
    output = tmp_path / "nested" / "deeper" / "out"

    summary = run_batch(JobConfig(sources=sources, output_dir=output))

    assert summary.success_count == 2
    assert sorted(p.name for p in output.iterdir()) == ["img_00.png", "img_01.png"]


def test_uncreatable_output_directory_aborts_before_any_job(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 2)
    blocker = tmp_path / "blocker"
    blocker.write_text("regular file")
    updates: list[ProgressUpdate] = []

    with pytest.raises(OutputDirectoryError):
        run_batch(JobConfig(sources=sources, output_dir=blocker / "out"), progress_callback=updates.append)

    assert updates == []


def test_invalid_worker_count_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigurationError):
        run_batch(JobConfig(sources=[], output_dir=tmp_path / "out", max_workers=0))


def test_empty_batch_finishes_immediately(tmp_path: Path) -> None:
    updates: list[ProgressUpdate] = []

    summary = run_batch(JobConfig(sources=[], output_dir=tmp_path / "out"), progress_callback=updates.append)

    assert summary.total == 0
    assert [update.status for update in updates] == ["finished"]
    assert updates[-1].fraction == 1.0


def test_concurrency_never_exceeds_cap(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def fake_run_job(job, cancel_event=None):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
        return ProcessingResult(source_path=job.source.source_path, status=JobStatus.SUCCESS, output_path=job.dest_path)

    monkeypatch.setattr(pipeline, "run_job", fake_run_job)
    sources = [SourceImage.from_path(tmp_path / f"photo_{index:02d}.jpg") for index in range(50)]
    completed: list[int] = []
    reported_in_flight: list[int] = []

    def on_progress(update: ProgressUpdate) -> None:
        reported_in_flight.append(update.in_flight)
        if update.status == "completed":
            completed.append(update.completed)

    summary = run_batch(
        JobConfig(sources=sources, output_dir=tmp_path / "out", max_workers=4),
        progress_callback=on_progress,
    )

    assert peak <= 4
    assert max(reported_in_flight) <= 4
    assert summary.peak_in_flight <= 4
    assert summary.success_count == 50
    assert completed == list(range(1, 51))


def test_progress_is_monotonic_and_reaches_total(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 12)
    updates: list[ProgressUpdate] = []

    summary = run_batch(
        JobConfig(sources=sources, output_dir=tmp_path / "out", max_workers=3),
        progress_callback=updates.append,
    )

    completed = [update.completed for update in updates]
    assert completed == sorted(completed)
    assert updates[-1].status == "finished"
    assert updates[-1].completed == 12
    assert updates[-1].fraction == 1.0
    assert summary.success_count == 12
    assert 1 <= summary.peak_in_flight <= 3


def test_cancel_after_first_completion_leaves_no_partial_files(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 8)
    output = tmp_path / "out"
    cancel_event = threading.Event()

    def on_progress(update: ProgressUpdate) -> None:
        if update.status == "completed":
            cancel_event.set()

    summary = run_batch(
        JobConfig(sources=sources, output_dir=output, max_workers=1),
        progress_callback=on_progress,
        cancel_event=cancel_event,
    )

    assert summary.cancelled
    assert summary.success_count == 1
    assert summary.cancelled_count == 7
    assert summary.failure_count == 0
    assert [p.name for p in output.iterdir()] == ["img_00.png"]


def test_cancel_before_start_runs_nothing(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 3)
    output = tmp_path / "out"
    cancel_event = threading.Event()
    cancel_event.set()
    updates: list[ProgressUpdate] = []

    summary = run_batch(
        JobConfig(sources=sources, output_dir=output),
        progress_callback=updates.append,
        cancel_event=cancel_event,
    )

    assert summary.cancelled
    assert summary.cancelled_count == 3
    assert all(update.status != "started" for update in updates)
    assert list(output.iterdir()) == []


def test_cancel_inside_running_jobs_stops_before_encode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    sources = make_images(tmp_path / "input", 10)
    output = tmp_path / "out"
    cancel_event = threading.Event()
    real_composite_frames = worker.composite_frames
    updates: list[ProgressUpdate] = []

    def composite_then_cancel(*args, **kwargs):
        cancel_event.set()
        return real_composite_frames(*args, **kwargs)

    monkeypatch.setattr(worker, "composite_frames", composite_then_cancel)

    summary = run_batch(
        JobConfig(sources=sources, output_dir=output, max_workers=4),
        progress_callback=updates.append,
        cancel_event=cancel_event,
    )

    assert summary.cancelled
    assert summary.success_count + summary.failure_count + summary.cancelled_count == summary.total
    assert summary.success_count == 0
    assert summary.failure_count == 0
    assert summary.cancelled_count == 10
    assert any("编码前" in (result.message or "") for result in summary.cancelled_results)
    assert updates[-1].completed == 0
    assert updates[-1].in_flight == 0
    assert list(output.iterdir()) == []


def test_failing_progress_callback_does_not_abort_batch(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 5)

    def broken_callback(update: ProgressUpdate) -> None:
        raise RuntimeError("界面已关闭")

    summary = run_batch(
        JobConfig(sources=sources, output_dir=tmp_path / "out", max_workers=2),
        progress_callback=broken_callback,
    )

    assert summary.success_count == 5
    assert len(list((tmp_path / "out").iterdir())) == 5


def test_rename_strategy_keeps_existing_output(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 1)
    output = tmp_path / "out"
    output.mkdir()
    (output / "img_00.png").write_bytes(b"existing")

    summary = run_batch(JobConfig(sources=sources, output_dir=output, conflict_strategy="rename"))

    assert summary.succeeded[0].output_path.name == "img_00_1.png"
    assert (output / "img_00.png").read_bytes() == b"existing"


def test_auto_validation_reports_metrics(tmp_path: Path) -> None:
    sources = make_images(tmp_path / "input", 1, size=(320, 240))

    summary = run_batch(
        JobConfig(sources=sources, output_dir=tmp_path / "out", validation=ValidationConfig(enabled=True))
    )

    result = summary.succeeded[0]
    assert result.phash_distance is not None
    assert result.ssim is not None
    assert 0 <= result.phash_distance <= 64
    assert -1.0 <= result.ssim <= 1.0


def test_animated_gif_keeps_all_frames(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()
    frames = [Image.new("RGB", (120, 80), color) for color in ("red", "green", "blue", "white")]
    frames[0].save(source / "anim.gif", save_all=True, append_images=frames[1:], duration=120, loop=0)

    summary = run_batch(JobConfig(sources=collect_sources([source]).sources, output_dir=tmp_path / "out"))

    with Image.open(summary.succeeded[0].output_path) as img:
        assert img.n_frames == 4
        assert img.size == (120, 80)


def test_twelve_megapixel_jpeg_keeps_size_and_capture_date(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()
    exif = Image.Exif()
    exif[ExifTags.IFD.Exif] = {36867: "2024:06:01 10:00:00"}
    original = Image.new("RGB", (4000, 3000), (30, 60, 90))
    original.save(source / "IMG_0001.jpg", format="JPEG", exif=exif.tobytes())

    style = WatermarkStyle(size_class=SizeClass.MEDIUM, date_pattern="yyyy-MM-dd")
    summary = run_batch(
        JobConfig(sources=collect_sources([source]).sources, output_dir=tmp_path / "out", style=style)
    )

    result = summary.succeeded[0]
    assert result.capture_time == datetime(2024, 6, 1, 10, 0, 0)
    assert result.message.startswith("2024-06-01")
    assert extract_date(result.output_path) == datetime(2024, 6, 1, 10, 0, 0)
    with Image.open(result.output_path) as img:
        assert img.format == "JPEG"
        assert img.size == (4000, 3000)
        corner = img.convert("RGB").crop((3000, 2500, 4000, 3000))
        reference = original.crop((3000, 2500, 4000, 3000))
        assert ImageChops.difference(corner, reference).getextrema()[0][1] > 100

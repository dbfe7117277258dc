"""输出路径决策与原子写入测试。"""

from __future__ import annotations

from pathlib import Path

import pytest

from photo_datestamp.core.exceptions import InvalidConfigurationError, OutputDirectoryError, WriteError
from photo_datestamp.core.models import SourceImage
from photo_datestamp.core.output_manager import OutputManager, prepare_output_dir, write_atomic


def test_prepare_output_dir_rejects_regular_file(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x")

    with pytest.raises(OutputDirectoryError):
        prepare_output_dir(target)


def test_unknown_conflict_strategy(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigurationError):
        OutputManager(tmp_path, conflict_strategy="skip")


def test_overwrite_keeps_source_file_name(tmp_path: Path) -> None:
    manager = OutputManager(tmp_path / "out")
    (tmp_path / "out" / "photo.jpg").write_bytes(b"old")

    destination = manager.decide_destination(SourceImage.from_path(tmp_path / "src" / "photo.jpg"))

    assert destination == manager.output_dir / "photo.jpg"


def test_rename_avoids_existing_and_reserved_paths(tmp_path: Path) -> None:
    manager = OutputManager(tmp_path / "out", conflict_strategy="rename")
    (manager.output_dir / "photo.jpg").write_bytes(b"old")
    reserved: set[Path] = set()

    first = manager.decide_destination(SourceImage.from_path(tmp_path / "a" / "photo.jpg"), reserved)
    second = manager.decide_destination(SourceImage.from_path(tmp_path / "b" / "photo.jpg"), reserved)

    assert first.name == "photo_1.jpg"
    assert second.name == "photo_2.jpg"


def test_write_atomic_replaces_destination(tmp_path: Path) -> None:
    destination = tmp_path / "photo.png"
    destination.write_bytes(b"old")

    write_atomic(b"new content", destination)

    assert destination.read_bytes() == b"new content"
    assert [p.name for p in tmp_path.iterdir()] == ["photo.png"]


def test_write_failure_raises_and_cleans_up(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("regular file")

    with pytest.raises(WriteError):
        write_atomic(b"data", blocker / "photo.png")

    assert [p.name for p in tmp_path.iterdir()] == ["blocker"]

"""输出目录、冲突策略与原子写入。"""

from __future__ import annotations

import logging
import os
import uuid
from itertools import count
from pathlib import Path
from typing import Optional, Set

from photo_datestamp.core.exceptions import InvalidConfigurationError, OutputDirectoryError, WriteError
from photo_datestamp.core.models import SourceImage

LOGGER = logging.getLogger(__name__)

CONFLICT_STRATEGIES = {"overwrite", "rename"}


def prepare_output_dir(output_dir: Path) -> Path:
    """创建输出目录（含中间目录）。失败时整个批次无法继续。"""

    resolved = output_dir.expanduser().resolve()
    try:
        resolved.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputDirectoryError(f"无法创建输出目录: {resolved} ({exc})") from exc
    if not resolved.is_dir():
        raise OutputDirectoryError(f"输出路径不是目录: {resolved}")
    return resolved


class OutputManager:
    """负责输出路径决策与文件写入。"""

    def __init__(self, output_dir: Path, conflict_strategy: str = "overwrite") -> None:
        if conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {conflict_strategy}")
        self.conflict_strategy = conflict_strategy
        self.output_dir = prepare_output_dir(output_dir)

    def decide_destination(self, source: SourceImage, reserved_paths: Optional[Set[Path]] = None) -> Path:
        """保持源文件名不变；rename 策略下为冲突文件追加序号。"""

        reserved = reserved_paths if reserved_paths is not None else set()
        destination = self.output_dir / source.source_path.name

        if self.conflict_strategy == "rename" and self._is_taken(destination, reserved):
            destination = self._generate_renamed_path(destination, reserved)
            LOGGER.debug("目标已存在，重命名为 %s", destination.name)

        reserved.add(destination)
        return destination

    def _generate_renamed_path(self, destination: Path, reserved: Set[Path]) -> Path:
        stem = destination.stem
        suffix = destination.suffix

        for idx in count(1):
            candidate = destination.with_name(f"{stem}_{idx}{suffix}")
            if not self._is_taken(candidate, reserved):
                return candidate

        raise AssertionError("unreachable")

    @staticmethod
    def _is_taken(path: Path, reserved: Set[Path]) -> bool:
        return path in reserved or path.exists()


def write_atomic(data: bytes, destination: Path) -> Path:
    """先写入同目录下的临时文件再替换，目标文件要么完整存在，要么不存在。"""

    temp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.part")
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, destination)
    except OSError as exc:
        _remove_quietly(temp_path)
        raise WriteError(f"写入文件失败: {destination} ({exc})") from exc
    return destination


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("无法清理临时文件 %s: %s", path, exc)

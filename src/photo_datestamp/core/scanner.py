"""文件扫描与筛选逻辑。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from photo_datestamp.core.models import SUPPORTED_EXTENSIONS, SourceImage


@dataclass(slots=True)
class ScanResult:
    """扫描结果：可处理的源图片与被拒绝的文件。"""

    sources: list[SourceImage] = field(default_factory=list)
    unsupported: list[Path] = field(default_factory=list)


def _is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历路径下的所有文件，跳过隐藏文件与目录。"""

    if path.is_file():
        yield path
        return

    if not path.is_dir():
        return

    for child in sorted(path.iterdir(), key=lambda p: p.name.lower()):
        if _is_hidden(child):
            continue
        if child.is_dir():
            if recursive:
                yield from _iter_candidate_files(child, recursive)
        elif child.is_file():
            yield child


def collect_sources(paths: Iterable[Path], recursive: bool = True) -> ScanResult:
    """按调用方给出的顺序展开文件与目录，拆分为支持与不支持两类。"""

    result = ScanResult()
    seen_paths: set[Path] = set()

    for root in paths:
        for candidate in _iter_candidate_files(root.expanduser().resolve(), recursive):
            if candidate in seen_paths:
                continue
            seen_paths.add(candidate)

            if candidate.suffix.lower() not in SUPPORTED_EXTENSIONS:
                result.unsupported.append(candidate)
                continue
            result.sources.append(SourceImage.from_path(candidate))

    return result

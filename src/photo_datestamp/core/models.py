"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from photo_datestamp.core.exceptions import UnsupportedFormatError

if TYPE_CHECKING:
    from photo_datestamp.core.config import EncodeOptions, WatermarkStyle


class ImageFormat(Enum):
    """支持的栅格格式。每个成员对应一条编解码路径。"""

    JPEG = "JPEG"
    PNG = "PNG"
    TIFF = "TIFF"
    GIF = "GIF"
    HEIC = "HEIF"
    BMP = "BMP"

    @property
    def pil_format(self) -> str:
        """Pillow 中注册的格式名称。"""

        return self.value

    @property
    def honors_orientation(self) -> bool:
        """该格式是否需要处理 EXIF Orientation。"""

        return self in {ImageFormat.JPEG, ImageFormat.TIFF, ImageFormat.HEIC}

    @classmethod
    def from_path(cls, path: Path) -> "ImageFormat":
        suffix = path.suffix.lower()
        try:
            return _EXTENSION_FORMATS[suffix]
        except KeyError:
            raise UnsupportedFormatError(f"不支持的图片格式: {path.name}") from None


_EXTENSION_FORMATS = {
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".png": ImageFormat.PNG,
    ".tif": ImageFormat.TIFF,
    ".tiff": ImageFormat.TIFF,
    ".gif": ImageFormat.GIF,
    ".heic": ImageFormat.HEIC,
    ".heif": ImageFormat.HEIC,
    ".bmp": ImageFormat.BMP,
}

SUPPORTED_EXTENSIONS = frozenset(_EXTENSION_FORMATS)


@dataclass(frozen=True, slots=True)
class SourceImage:
    """待处理的源图片，格式标签由扩展名推导。"""

    source_path: Path
    format: ImageFormat

    @classmethod
    def from_path(cls, path: Path) -> "SourceImage":
        return cls(source_path=path, format=ImageFormat.from_path(path))

    @property
    def name(self) -> str:
        return self.source_path.name


@dataclass(frozen=True, slots=True)
class LayoutMetrics:
    """根据图片像素尺寸推导出的字号与边距。"""

    font_size: float
    margin: float


@dataclass(frozen=True, slots=True)
class ProcessingJob:
    """单张图片的处理任务，派发时生成的不可变快照。"""

    source: SourceImage
    style: "WatermarkStyle"
    dest_path: Path
    encode_options: "EncodeOptions"
    validate: bool = False


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ProcessingResult:
    """记录单个文件的处理结果。"""

    source_path: Path
    status: JobStatus
    output_path: Optional[Path] = None
    message: Optional[str] = None
    capture_time: Optional[datetime] = None
    phash_distance: Optional[float] = None
    ssim: Optional[float] = None


@dataclass(slots=True)
class ProcessingSummary:
    """批处理的最终汇总。"""

    total: int
    succeeded: list[ProcessingResult] = field(default_factory=list)
    failed: list[ProcessingResult] = field(default_factory=list)
    cancelled_results: list[ProcessingResult] = field(default_factory=list)
    cancelled: bool = False
    peak_in_flight: int = 0

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def cancelled_count(self) -> int:
        return len(self.cancelled_results)

    @property
    def failure_details(self) -> list[str]:
        return [f"{record.source_path.name}: {record.message or '未知错误'}" for record in self.failed]

    def record(self, result: ProcessingResult) -> None:
        """按状态归档一条结果。"""

        if result.status is JobStatus.SUCCESS:
            self.succeeded.append(result)
        elif result.status is JobStatus.CANCELLED:
            self.cancelled_results.append(result)
        else:
            self.failed.append(result)

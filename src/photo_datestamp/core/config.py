"""处理任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Tuple

from photo_datestamp.core.models import SourceImage

RGBA = Tuple[int, int, int, int]

KODAK_YELLOW: RGBA = (255, 217, 0, 255)

# 预设颜色，中文名与英文别名均可在命令行中使用。
COLOR_PRESETS: dict[str, RGBA] = {
    "柯达黄": KODAK_YELLOW,
    "橙红": (255, 51, 0, 255),
    "玫红": (255, 51, 153, 255),
    "天蓝": (51, 153, 255, 255),
    "翠绿": (51, 204, 51, 255),
}

COLOR_PRESET_ALIASES = {
    "kodak-yellow": "柯达黄",
    "orange-red": "橙红",
    "rose": "玫红",
    "sky-blue": "天蓝",
    "emerald": "翠绿",
}

DATE_PATTERN_PRESETS = ("yyyy-MM-dd", "yy.MM.dd", "yyyy/MM/dd", "yyyy.MM.dd")


class SizeClass(str, Enum):
    """水印字号档位，对应相对图片对角线的缩放系数。"""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def scale_factor(self) -> float:
        return _SCALE_FACTORS[self]


_SCALE_FACTORS = {
    SizeClass.SMALL: 0.02,
    SizeClass.MEDIUM: 0.025,
    SizeClass.LARGE: 0.03,
}


@dataclass(frozen=True, slots=True)
class WatermarkStyle:
    """水印样式。一次批处理内不可变，所有任务共享只读。"""

    color: RGBA = KODAK_YELLOW
    font_family: Optional[str] = None  # 字体文件路径或字体名称，None 表示默认字体
    font_weight: str = "regular"  # regular | bold
    size_class: SizeClass = SizeClass.SMALL
    date_pattern: str = "yyyy-MM-dd"


@dataclass(frozen=True, slots=True)
class EncodeOptions:
    """各格式的编码参数。"""

    jpeg_quality: int = 85
    heic_quality: int = 85
    png_compress_level: int = 9
    tiff_compression: str = "tiff_lzw"


@dataclass(slots=True)
class ValidationConfig:
    """输出校验配置。"""

    enabled: bool = False


@dataclass(slots=True)
class JobConfig:
    """单次批处理任务的配置集合。"""

    sources: Sequence[SourceImage]
    output_dir: Path
    style: WatermarkStyle = field(default_factory=WatermarkStyle)
    max_workers: int = 4
    conflict_strategy: str = "overwrite"  # overwrite | rename
    encode_options: EncodeOptions = field(default_factory=EncodeOptions)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

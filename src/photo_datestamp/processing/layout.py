"""根据图片像素尺寸计算自适应字号与边距。

预览与最终编码共用同一个函数，保证两者视觉一致。
"""

from __future__ import annotations

import math

from photo_datestamp.core.exceptions import InvalidConfigurationError
from photo_datestamp.core.models import LayoutMetrics

MIN_FONT_SIZE = 16.0
MAX_FONT_SIZE = 200.0
MARGIN_RATIO = 0.03
MIN_MARGIN = 20.0
MAX_MARGIN = 100.0


def compute_layout(width: int, height: int, scale_factor: float) -> LayoutMetrics:
    """字号取对角线长度乘以缩放系数，边距取短边的 3%，两者都做上下限截断。"""

    if width <= 0 or height <= 0:
        raise InvalidConfigurationError(f"图片尺寸必须为正数: {width}x{height}")

    diagonal = math.hypot(width, height)
    font_size = _clamp(diagonal * scale_factor, MIN_FONT_SIZE, MAX_FONT_SIZE)
    margin = _clamp(min(width, height) * MARGIN_RATIO, MIN_MARGIN, MAX_MARGIN)
    return LayoutMetrics(font_size=font_size, margin=margin)


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(max(value, lower), upper)

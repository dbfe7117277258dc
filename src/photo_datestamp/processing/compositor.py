"""水印合成：把日期文字绘制到全分辨率像素缓冲区的副本上。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from PIL import Image, ImageDraw, ImageFont

from photo_datestamp.core.config import WatermarkStyle
from photo_datestamp.core.models import LayoutMetrics
from photo_datestamp.processing.layout import compute_layout

LOGGER = logging.getLogger(__name__)

Font = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

_FONT_CANDIDATES = {
    "regular": (
        "DejaVuSans.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "arial.ttf",
        "/Library/Fonts/Arial.ttf",
        "/System/Library/Fonts/Helvetica.ttc",
    ),
    "bold": (
        "DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "arialbd.ttf",
        "/Library/Fonts/Arial Bold.ttf",
    ),
}

# 没有粗体字形时用描边模拟，描边宽度与字号成比例。
_SYNTHETIC_BOLD_RATIO = 1 / 30


@dataclass(frozen=True, slots=True)
class ResolvedFont:
    font: Font
    stroke_width: int = 0


def resolve_font(family: Optional[str], weight: str, size: float) -> ResolvedFont:
    """按 显式字体 -> 系统常见字体 -> Pillow 默认字体 的顺序解析。"""

    weight = weight if weight in _FONT_CANDIDATES else "regular"
    candidates: list[str] = []
    if family:
        candidates.append(family)
    candidates.extend(_FONT_CANDIDATES[weight])

    for candidate in candidates:
        try:
            font = ImageFont.truetype(candidate, size)
        except OSError:
            continue
        if candidate == family and weight == "bold":
            return ResolvedFont(font, _synthetic_bold_width(size))
        return ResolvedFont(font)

    if family:
        LOGGER.warning("无法加载字体 %s，改用默认字体", family)

    font = ImageFont.load_default(size=size)
    stroke = _synthetic_bold_width(size) if weight == "bold" else 0
    return ResolvedFont(font, stroke)


def _synthetic_bold_width(size: float) -> int:
    return max(1, round(size * _SYNTHETIC_BOLD_RATIO))


def composite(
    pixels: Image.Image,
    date_text: str,
    style: WatermarkStyle,
    layout: LayoutMetrics,
    font: Optional[ResolvedFont] = None,
) -> Image.Image:
    """返回绘制了水印的新 RGBA 图像，尺寸与输入完全一致，输入不被修改。

    文字右下角对齐：``x = 宽度 - 文字宽度 - 边距``，文字的下沿位于底边上方
    ``边距`` 像素处。文字过长时 x 可以为负，不会自动缩小或换行。
    """

    base = pixels if pixels.mode == "RGBA" else pixels.convert("RGBA")
    resolved = font or resolve_font(style.font_family, style.font_weight, layout.font_size)

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.fontmode = "L"

    x, y, anchor = _text_origin(draw, base.size, date_text, resolved, layout.margin)
    draw.text(
        (x, y),
        date_text,
        font=resolved.font,
        fill=style.color,
        anchor=anchor,
        stroke_width=resolved.stroke_width,
        stroke_fill=style.color,
    )

    return Image.alpha_composite(base, overlay)


def composite_frames(
    frames: Sequence[Image.Image],
    date_text: str,
    style: WatermarkStyle,
    layout: LayoutMetrics,
) -> list[Image.Image]:
    """对每一帧独立合成，所有帧共用同一组布局参数与字体。"""

    resolved = resolve_font(style.font_family, style.font_weight, layout.font_size)
    return [composite(frame, date_text, style, layout, font=resolved) for frame in frames]


def render_preview(
    pixels: Image.Image,
    date_text: str,
    style: WatermarkStyle,
    max_size: tuple[int, int],
) -> Image.Image:
    """按最终编码相同的布局在原始分辨率上绘制，再缩小用于显示。"""

    layout = compute_layout(pixels.width, pixels.height, style.size_class.scale_factor)
    preview = composite(pixels, date_text, style, layout)
    preview.thumbnail(max_size, Image.Resampling.LANCZOS)
    return preview


def _text_origin(
    draw: ImageDraw.ImageDraw,
    size: tuple[int, int],
    text: str,
    resolved: ResolvedFont,
    margin: float,
) -> tuple[float, float, Optional[str]]:
    width, height = size
    stroke = resolved.stroke_width
    text_width = draw.textlength(text, font=resolved.font) + 2 * stroke
    x = width - text_width - margin + stroke

    if isinstance(resolved.font, ImageFont.FreeTypeFont):
        return x, height - margin - stroke, "ld"

    # 位图字体不支持 anchor，按包围盒换算。
    left, top, right, bottom = draw.textbbox((0, 0), text, font=resolved.font, stroke_width=stroke)
    return x, height - margin - bottom, None

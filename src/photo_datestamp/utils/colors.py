"""颜色工具函数。"""

from __future__ import annotations

import re
from typing import Tuple

from photo_datestamp.core.config import COLOR_PRESET_ALIASES, COLOR_PRESETS
from photo_datestamp.core.exceptions import InvalidConfigurationError

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def parse_hex_color(value: str) -> Tuple[int, int, int, int]:
    """将 HEX 字符串解析为 RGBA 四元组，未给出 Alpha 时视为不透明。"""

    if not value:
        raise InvalidConfigurationError("颜色值不能为空")

    match = HEX_COLOR_RE.match(value.strip())
    if not match:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}")

    hex_value = match.group(1)
    if len(hex_value) == 3:
        hex_value = "".join(ch * 2 for ch in hex_value)
    if len(hex_value) == 6:
        hex_value += "ff"

    r = int(hex_value[0:2], 16)
    g = int(hex_value[2:4], 16)
    b = int(hex_value[4:6], 16)
    a = int(hex_value[6:8], 16)
    return r, g, b, a


def resolve_color(value: str) -> Tuple[int, int, int, int]:
    """预设颜色名（中文名或英文别名）优先，否则按 HEX 解析。"""

    name = value.strip()
    name = COLOR_PRESET_ALIASES.get(name.lower(), name)
    if name in COLOR_PRESETS:
        return COLOR_PRESETS[name]
    return parse_hex_color(value)

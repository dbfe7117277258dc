"""日期格式模板（yyyy/MM/dd 风格）转换。"""

from __future__ import annotations

import re
from datetime import datetime

from photo_datestamp.core.exceptions import InvalidConfigurationError

_TOKEN_RE = re.compile(r"yyyy|yy|MM|dd|HH|mm|ss")

_TOKEN_FORMATTERS = {
    "yyyy": lambda dt: f"{dt.year:04d}",
    "yy": lambda dt: f"{dt.year % 100:02d}",
    "MM": lambda dt: f"{dt.month:02d}",
    "dd": lambda dt: f"{dt.day:02d}",
    "HH": lambda dt: f"{dt.hour:02d}",
    "mm": lambda dt: f"{dt.minute:02d}",
    "ss": lambda dt: f"{dt.second:02d}",
}


def format_capture_date(value: datetime, pattern: str) -> str:
    """按模板渲染日期，模板中非占位符的字符原样保留。"""

    if not pattern:
        raise InvalidConfigurationError("日期格式不能为空")
    return _TOKEN_RE.sub(lambda match: _TOKEN_FORMATTERS[match.group(0)](value), pattern)

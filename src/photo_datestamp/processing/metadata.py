"""拍摄时间提取：EXIF -> 容器时间戳 -> 文件系统时间 -> 当前时间。"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import ExifTags, Image, UnidentifiedImageError

from photo_datestamp.processing.codec import register_plugins

LOGGER = logging.getLogger(__name__)

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

TAG_DATETIME = 306
TAG_DATETIME_ORIGINAL = 36867
TAG_DATETIME_DIGITIZED = 36868


def extract_date(path: Path) -> datetime:
    """返回源图片的权威时间戳，永不抛出异常。"""

    embedded = _read_embedded_date(path)
    if embedded is not None:
        return embedded

    filesystem = _filesystem_timestamp(path)
    if filesystem is not None:
        LOGGER.debug("未找到元数据时间，使用文件系统时间: %s", path.name)
        return filesystem

    LOGGER.debug("无法获取任何时间信息，使用当前时间: %s", path.name)
    return datetime.now()


def _read_embedded_date(path: Path) -> Optional[datetime]:
    register_plugins()
    try:
        with Image.open(path) as img:
            exif = img.getexif()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOGGER.debug("读取元数据失败 %s: %s", path, exc)
        return None

    exif_ifd = _safe_get_ifd(exif, ExifTags.IFD.Exif)
    for tag in (TAG_DATETIME_ORIGINAL, TAG_DATETIME_DIGITIZED):
        parsed = parse_exif_datetime(exif_ifd.get(tag))
        if parsed is not None:
            return parsed

    return parse_exif_datetime(exif.get(TAG_DATETIME))


def _safe_get_ifd(exif: Image.Exif, ifd: int) -> dict:
    try:
        return exif.get_ifd(ifd)
    except (KeyError, ValueError, OSError) as exc:
        LOGGER.debug("EXIF 子目录损坏: %s", exc)
        return {}


def parse_exif_datetime(value: object) -> Optional[datetime]:
    """解析 ``YYYY:MM:DD HH:MM:SS`` 格式的 EXIF 时间，无效时返回 None。"""

    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None

    text = value.strip("\x00 \t\r\n")
    if not text:
        return None
    try:
        return datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
    except ValueError:
        LOGGER.debug("无法解析 EXIF 时间: %r", value)
        return None


def _filesystem_timestamp(path: Path) -> Optional[datetime]:
    try:
        stat = path.stat()
    except OSError:
        return None

    birthtime = getattr(stat, "st_birthtime", None)
    if birthtime is not None:
        timestamp = birthtime
    elif sys.platform.startswith("win"):
        timestamp = stat.st_ctime
    else:
        # Linux 通常不提供创建时间，退回到修改时间。
        timestamp = stat.st_mtime

    try:
        return datetime.fromtimestamp(timestamp)
    except (OverflowError, OSError, ValueError):
        return None

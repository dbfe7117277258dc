"""按格式的解码与编码。

解码得到“正向”（已按 EXIF Orientation 校正）的 RGBA 帧序列，供水印合成使用；
编码时把像素转回原始存储方向并重新写入方向标记，因此输出文件的容器像素尺寸
始终等于源文件的容器像素尺寸。
"""

from __future__ import annotations

import io
import logging
import struct
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional

from PIL import Image, ImageSequence, TiffImagePlugin, UnidentifiedImageError
from pillow_heif import register_heif_opener

from photo_datestamp.core.config import EncodeOptions
from photo_datestamp.core.exceptions import DecodeError, EncodeError
from photo_datestamp.core.models import ImageFormat

LOGGER = logging.getLogger(__name__)

TAG_ORIENTATION = 274
TAG_X_RESOLUTION = 282
TAG_Y_RESOLUTION = 283
TAG_RESOLUTION_UNIT = 296
HEIF_ORIGINAL_ORIENTATION = "original_orientation"
RESOLUTION_UNIT_INCH = 2

# 输出统一为 RGB(A)，其他色彩模式的 ICC 配置文件不再适用。
RGB_PROFILE_MODES = frozenset({"RGB", "RGBA", "RGBX", "P", "PA"})

# TIFF 输出时从源文件 IFD0 复制的描述性标签。
TIFF_CARRIED_TAGS = (270, 271, 272, 305, 306, 315, 33432)

_TRANSPOSE = Image.Transpose

_TO_UPRIGHT = {
    2: _TRANSPOSE.FLIP_LEFT_RIGHT,
    3: _TRANSPOSE.ROTATE_180,
    4: _TRANSPOSE.FLIP_TOP_BOTTOM,
    5: _TRANSPOSE.TRANSPOSE,
    6: _TRANSPOSE.ROTATE_270,
    7: _TRANSPOSE.TRANSVERSE,
    8: _TRANSPOSE.ROTATE_90,
}

_TO_STORED = {
    2: _TRANSPOSE.FLIP_LEFT_RIGHT,
    3: _TRANSPOSE.ROTATE_180,
    4: _TRANSPOSE.FLIP_TOP_BOTTOM,
    5: _TRANSPOSE.TRANSPOSE,
    6: _TRANSPOSE.ROTATE_90,
    7: _TRANSPOSE.TRANSVERSE,
    8: _TRANSPOSE.ROTATE_270,
}

_DECODE_ERRORS = (UnidentifiedImageError, OSError, ValueError, EOFError, SyntaxError, Image.DecompressionBombError)
_ENCODE_ERRORS = (OSError, ValueError, KeyError, TypeError, struct.error)

_plugins_lock = threading.Lock()
_plugins_registered = False


def register_plugins() -> None:
    """注册 HEIF 解码/编码插件（幂等）。"""

    global _plugins_registered
    with _plugins_lock:
        if not _plugins_registered:
            register_heif_opener()
            _plugins_registered = True


@dataclass(slots=True)
class DecodedImage:
    """解码结果：正向 RGBA 帧与重新编码所需的全部元数据。"""

    format: ImageFormat
    frames: list[Image.Image]
    native_size: tuple[int, int]
    source_mode: str
    has_alpha: bool = False
    orientation: int = 1
    exif: Optional[Image.Exif] = None
    icc_profile: Optional[bytes] = None
    dpi: Optional[tuple[float, float]] = None
    durations: list[Optional[int]] = field(default_factory=list)
    loop: Optional[int] = None

    @property
    def pixels(self) -> Image.Image:
        return self.frames[0]

    @property
    def width(self) -> int:
        return self.frames[0].width

    @property
    def height(self) -> int:
        return self.frames[0].height

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    def with_frames(self, frames: Iterable[Image.Image]) -> "DecodedImage":
        """替换像素帧，保留其余元数据。"""

        new_frames = list(frames)
        if len(new_frames) != len(self.frames):
            raise ValueError(f"帧数不一致: {len(new_frames)} != {len(self.frames)}")
        return replace(self, frames=new_frames)


def decode(path: Path) -> DecodedImage:
    """读取源文件。不支持的扩展名在打开文件之前就被拒绝。"""

    image_format = ImageFormat.from_path(path)
    register_plugins()
    try:
        with Image.open(path) as img:
            return _decode_opened(img, image_format)
    except _DECODE_ERRORS as exc:
        LOGGER.debug("无法解码图像 %s: %s", path, exc)
        raise DecodeError(f"无法加载图像: {path.name} ({exc})") from exc


def decode_bytes(payload: bytes, image_format: ImageFormat) -> DecodedImage:
    register_plugins()
    try:
        with Image.open(io.BytesIO(payload)) as img:
            return _decode_opened(img, image_format)
    except _DECODE_ERRORS as exc:
        raise DecodeError(f"无法解码 {image_format.name} 数据: {exc}") from exc


def _decode_opened(img: Image.Image, image_format: ImageFormat) -> DecodedImage:
    native_size = _container_size(img)
    info = dict(img.info)
    source_mode = img.mode
    has_alpha = _has_alpha(img)
    loop = info.get("loop")

    exif = img.getexif()
    # pillow-heif 打开时已按方向旋转像素，EXIF 中的方向被重置为 1，原值在 original_orientation。
    decoder_rotated = HEIF_ORIGINAL_ORIENTATION in info
    if decoder_rotated:
        orientation = _valid_orientation(info[HEIF_ORIGINAL_ORIENTATION])
    elif image_format.honors_orientation:
        orientation = _valid_orientation(exif.get(TAG_ORIENTATION, 1))
    else:
        orientation = 1

    frames: list[Image.Image] = []
    durations: list[Optional[int]] = []
    if image_format is ImageFormat.GIF:
        for frame in ImageSequence.Iterator(img):
            durations.append(frame.info.get("duration"))
            frames.append(frame.convert("RGBA"))
    else:
        img.load()
        frames.append(img.convert("RGBA"))

    transpose = None if decoder_rotated else _TO_UPRIGHT.get(orientation)
    if transpose is not None:
        frames = [frame.transpose(transpose) for frame in frames]

    return DecodedImage(
        format=image_format,
        frames=frames,
        native_size=native_size,
        source_mode=source_mode,
        has_alpha=has_alpha,
        orientation=orientation,
        exif=exif if len(exif) else None,
        icc_profile=info.get("icc_profile") if source_mode in RGB_PROFILE_MODES else None,
        dpi=_resolve_dpi(info, exif),
        durations=durations,
        loop=loop if isinstance(loop, int) else None,
    )


def encode(decoded: DecodedImage, options: Optional[EncodeOptions] = None) -> bytes:
    """按源格式重新编码，返回文件字节。"""

    options = options or EncodeOptions()
    encoder = _ENCODERS[decoded.format]

    stored_frames = [_to_stored(frame, decoded.orientation) for frame in decoded.frames]
    for frame in stored_frames:
        if frame.size != decoded.native_size:
            raise EncodeError(f"像素缓冲区尺寸 {frame.size} 与原始尺寸 {decoded.native_size} 不一致")

    buffer = io.BytesIO()
    try:
        encoder(stored_frames, decoded, options, buffer)
    except _ENCODE_ERRORS as exc:
        raise EncodeError(f"{decoded.format.name} 编码失败: {exc}") from exc

    payload = buffer.getvalue()
    if not payload:
        raise EncodeError(f"{decoded.format.name} 编码结果为空")

    encoded_size = read_native_size(payload)
    if encoded_size != decoded.native_size:
        raise EncodeError(f"编码后尺寸 {encoded_size} 与原始尺寸 {decoded.native_size} 不一致")
    return payload


def read_native_size(payload: bytes) -> tuple[int, int]:
    """读取容器头部声明的像素尺寸。"""

    register_plugins()
    try:
        with Image.open(io.BytesIO(payload)) as img:
            return _container_size(img)
    except _DECODE_ERRORS as exc:
        raise EncodeError(f"编码结果无法读取: {exc}") from exc


def _encode_jpeg(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    image = frames[0].convert("RGB")
    image.save(fp, format="JPEG", quality=options.jpeg_quality, optimize=True, **_common_metadata(decoded))


def _encode_png(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    image = frames[0].convert(_output_mode(decoded))
    image.save(fp, format="PNG", compress_level=options.png_compress_level, **_common_metadata(decoded))


def _encode_tiff(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    image = frames[0].convert(_output_mode(decoded))
    params: dict = {"compression": options.tiff_compression, "tiffinfo": _tiff_tags(decoded)}
    if decoded.dpi:
        params["dpi"] = decoded.dpi
    if decoded.icc_profile:
        params["icc_profile"] = decoded.icc_profile
    image.save(fp, format="TIFF", **params)


def _encode_gif(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    params: dict = {"save_all": True, "append_images": frames[1:]}
    # 源文件没有的属性不写入，避免凭空生成默认延时。
    if any(duration is not None for duration in decoded.durations):
        params["duration"] = [duration if duration is not None else 0 for duration in decoded.durations]
    if decoded.loop is not None:
        params["loop"] = decoded.loop
    frames[0].save(fp, format="GIF", **params)


def _encode_heic(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    image = frames[0].convert(_output_mode(decoded))
    # 解码时继承的 info 含已重置的 EXIF 与方向记录，只使用下面显式给出的参数。
    image.info = {}
    params: dict = {"quality": options.heic_quality}

    # HEIF 没有独立的 DPI 字段，分辨率写入 EXIF。
    exif = _copy_exif(decoded.exif)
    if decoded.dpi:
        exif[TAG_X_RESOLUTION] = TiffImagePlugin.IFDRational(decoded.dpi[0])
        exif[TAG_Y_RESOLUTION] = TiffImagePlugin.IFDRational(decoded.dpi[1])
        exif[TAG_RESOLUTION_UNIT] = RESOLUTION_UNIT_INCH
    if decoded.orientation != 1:
        exif[TAG_ORIENTATION] = decoded.orientation
    if len(exif):
        params["exif"] = exif.tobytes()
    if decoded.icc_profile:
        params["icc_profile"] = decoded.icc_profile
    image.save(fp, format=ImageFormat.HEIC.pil_format, **params)


def _encode_bmp(frames: list[Image.Image], decoded: DecodedImage, options: EncodeOptions, fp: BinaryIO) -> None:
    image = frames[0].convert(_output_mode(decoded))
    params: dict = {}
    if decoded.dpi:
        params["dpi"] = decoded.dpi
    image.save(fp, format="BMP", **params)


Encoder = Callable[[list[Image.Image], DecodedImage, EncodeOptions, BinaryIO], None]

_ENCODERS: dict[ImageFormat, Encoder] = {
    ImageFormat.JPEG: _encode_jpeg,
    ImageFormat.PNG: _encode_png,
    ImageFormat.TIFF: _encode_tiff,
    ImageFormat.GIF: _encode_gif,
    ImageFormat.HEIC: _encode_heic,
    ImageFormat.BMP: _encode_bmp,
}


def _common_metadata(decoded: DecodedImage) -> dict:
    params: dict = {}
    if decoded.exif is not None:
        params["exif"] = decoded.exif.tobytes()
    if decoded.icc_profile:
        params["icc_profile"] = decoded.icc_profile
    if decoded.dpi:
        params["dpi"] = decoded.dpi
    return params


def _tiff_tags(decoded: DecodedImage) -> dict:
    tags: dict = {}
    if decoded.exif is not None:
        for tag in TIFF_CARRIED_TAGS:
            value = decoded.exif.get(tag)
            if value:
                tags[tag] = value
    if decoded.orientation != 1:
        tags[TAG_ORIENTATION] = decoded.orientation
    return tags


def _copy_exif(exif: Optional[Image.Exif]) -> Image.Exif:
    copied = Image.Exif()
    if exif is not None:
        copied.load(exif.tobytes())
    return copied


def _output_mode(decoded: DecodedImage) -> str:
    return "RGBA" if decoded.has_alpha else "RGB"


def _to_stored(frame: Image.Image, orientation: int) -> Image.Image:
    transpose = _TO_STORED.get(orientation)
    if transpose is None:
        return frame
    return frame.transpose(transpose)


def _container_size(img: Image.Image) -> tuple[int, int]:
    """存储方向下的像素尺寸；pillow-heif 返回的是已旋转的尺寸，需要换回。"""

    width, height = img.size
    if _valid_orientation(img.info.get(HEIF_ORIGINAL_ORIENTATION, 1)) >= 5:
        return height, width
    return width, height


def _valid_orientation(value: object) -> int:
    if isinstance(value, int) and 1 <= value <= 8:
        return value
    return 1


def _has_alpha(img: Image.Image) -> bool:
    if img.mode in {"RGBA", "LA", "PA", "RGBa", "La"}:
        return True
    return img.mode == "P" and "transparency" in img.info


def _resolve_dpi(info: dict, exif: Image.Exif) -> Optional[tuple[float, float]]:
    dpi = info.get("dpi")
    if dpi and len(dpi) == 2:
        return float(dpi[0]), float(dpi[1])

    x_res = exif.get(TAG_X_RESOLUTION)
    y_res = exif.get(TAG_Y_RESOLUTION)
    unit = exif.get(TAG_RESOLUTION_UNIT, RESOLUTION_UNIT_INCH)
    if x_res and y_res and unit == RESOLUTION_UNIT_INCH:
        try:
            return float(x_res), float(y_res)
        except (TypeError, ValueError, ZeroDivisionError):
            return None
    return None

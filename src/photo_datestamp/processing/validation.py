"""编码结果校验：尺寸一致性与相似度指标。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np
from PIL import Image

from photo_datestamp.core.exceptions import DecodeError, EncodeError
from photo_datestamp.processing.codec import DecodedImage, decode_bytes


@dataclass(frozen=True, slots=True)
class ValidationMetrics:
    phash_distance: float
    ssim: float


def verify_encoded(source: DecodedImage, payload: bytes) -> ValidationMetrics:
    """重新解码编码结果，检查容器尺寸与帧数，并计算与源图的相似度。"""

    try:
        encoded = decode_bytes(payload, source.format)
    except DecodeError as exc:
        raise EncodeError(f"编码结果无法重新解码: {exc}") from exc

    if encoded.native_size != source.native_size:
        raise EncodeError(f"输出尺寸 {encoded.native_size} 与源图尺寸 {source.native_size} 不一致")
    if encoded.frame_count != source.frame_count:
        raise EncodeError(f"输出帧数 {encoded.frame_count} 与源图帧数 {source.frame_count} 不一致")

    original = source.pixels
    processed = encoded.pixels
    return ValidationMetrics(
        phash_distance=compute_phash_distance(original, processed),
        ssim=compute_ssim(original, processed),
    )


def compute_phash_distance(original: Image.Image, processed: Image.Image) -> float:
    """计算两张图片的感知哈希距离（pHash）。"""

    hash_a = _phash(original)
    hash_b = _phash(processed)
    distance = np.count_nonzero(hash_a != hash_b)
    return float(distance)


def compute_ssim(original: Image.Image, processed: Image.Image) -> float:
    """计算两张图片的全局结构相似度（SSIM）。"""

    size = processed.size
    if size[0] <= 0 or size[1] <= 0:
        return 0.0

    img_a = _to_gray_array(original, size)
    img_b = _to_gray_array(processed, size)

    mu_a = img_a.mean()
    mu_b = img_b.mean()
    sigma_a_sq = ((img_a - mu_a) ** 2).mean()
    sigma_b_sq = ((img_b - mu_b) ** 2).mean()
    sigma_ab = ((img_a - mu_a) * (img_b - mu_b)).mean()

    c1 = (0.01 * 255) ** 2
    c2 = (0.03 * 255) ** 2

    numerator = (2 * mu_a * mu_b + c1) * (2 * sigma_ab + c2)
    denominator = (mu_a**2 + mu_b**2 + c1) * (sigma_a_sq + sigma_b_sq + c2)
    if denominator == 0:
        return 0.0

    value = numerator / denominator
    return float(max(min(value, 1.0), -1.0))


def _phash(image: Image.Image) -> np.ndarray:
    resized = image.convert("L").resize((32, 32), Image.Resampling.LANCZOS)
    array = np.asarray(resized, dtype=np.float32)
    dct = cv2.dct(array)
    low_freq = dct[:8, :8]
    median = np.median(low_freq[1:, 1:])
    return low_freq > median


def _to_gray_array(image: Image.Image, size: Tuple[int, int]) -> np.ndarray:
    resized = image.convert("L").resize(size, Image.Resampling.LANCZOS)
    return np.asarray(resized, dtype=np.float32)

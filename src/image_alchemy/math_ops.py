"""
像素级运算核函数 (numpy / colour)

All kernels take float32 arrays shaped HxWxC holding the colour bands only
(alpha is split off by the engine) with values in [0, max_value], and
return a new array; the input is never modified so cached frames stay valid.
"""
import math
from typing import List, Optional, Sequence, Tuple

import colour
import numpy as np
from PIL import Image, ImageDraw

from image_alchemy.enums import MaskShape

# =========================================================
# 辅助函数
# =========================================================

_SRGB = colour.RGB_COLOURSPACES["sRGB"]

SEPIA_MATRIX = np.array([
    [0.3588, 0.7044, 0.1368],
    [0.2990, 0.5870, 0.1140],
    [0.2392, 0.4696, 0.0912],
], dtype=np.float32)


def get_luminance_coeffs(colourspace=_SRGB) -> np.ndarray:
    """从 colour 空间对象中提取 RGB -> Y (Luminance) 的系数"""
    # RGB_to_XYZ 矩阵的第二行就是 Y 通道的系数 [Lr, Lg, Lb]
    return np.asarray(colourspace.matrix_RGB_to_XYZ[1, :], dtype=np.float32)


def as_rgb(pixels: np.ndarray) -> np.ndarray:
    """Grey images are expanded to three bands before colour work"""
    if pixels.shape[2] == 1:
        return np.repeat(pixels, 3, axis=2)
    return pixels


def luminance(pixels: np.ndarray) -> np.ndarray:
    if pixels.shape[2] == 1:
        return pixels[:, :, 0]
    return np.dot(pixels[:, :, :3], get_luminance_coeffs())


def rgb_to_lab(rgb01: np.ndarray) -> np.ndarray:
    return colour.XYZ_to_Lab(colour.sRGB_to_XYZ(rgb01))


def lab_to_rgb(lab: np.ndarray) -> np.ndarray:
    return np.clip(colour.XYZ_to_sRGB(colour.Lab_to_XYZ(lab)), 0.0, 1.0)


def colour_to_lab(rgba: Sequence[int]) -> np.ndarray:
    rgb01 = np.asarray(rgba[:3], dtype=np.float64) / 255.0
    return rgb_to_lab(rgb01)


# =========================================================
# 色调 / 对比度
# =========================================================

def apply_gamma(pixels: np.ndarray, max_value: float, gamma: float) -> np.ndarray:
    normalised = np.clip(pixels / max_value, 0.0, 1.0)
    return (normalised ** (1.0 / gamma)) * max_value


def apply_brightness(pixels: np.ndarray, max_value: float, brightness: int) -> np.ndarray:
    return np.clip(pixels + (brightness / 100.0) * max_value, 0.0, max_value)


def _sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def apply_contrast(pixels: np.ndarray, max_value: float, contrast: int) -> np.ndarray:
    """
    Sigmoidal contrast around the mid-point.

    Positive values steepen the curve, negative values apply its inverse, so
    con=N followed by con=-N is (numerically) the identity.
    """
    strength = abs(contrast) / 4.0
    if strength == 0:
        return pixels.copy()

    x = np.clip(pixels / max_value, 0.0, 1.0)
    low = _sigmoid(-strength / 2.0)
    high = _sigmoid(strength / 2.0)

    if contrast > 0:
        y = (_sigmoid(strength * (x - 0.5)) - low) / (high - low)
    else:
        inner = np.clip(x * (high - low) + low, 1e-7, 1.0 - 1e-7)
        y = 0.5 - np.log(1.0 / inner - 1.0) / strength

    return np.clip(y, 0.0, 1.0) * max_value


# =========================================================
# 色彩 (Lab / LCh)
# =========================================================

def apply_saturation(pixels: np.ndarray, max_value: float, saturation: float) -> np.ndarray:
    """Scale the LCh chroma; 0 leaves a neutral grey of the same lightness"""
    if pixels.shape[2] == 1:
        return pixels.copy()
    lch = colour.Lab_to_LCHab(rgb_to_lab(pixels / max_value))
    lch[..., 1] *= saturation
    return lab_to_rgb(colour.LCHab_to_Lab(lch)) * max_value


def apply_tint(pixels: np.ndarray, max_value: float, tint: Sequence[int]) -> np.ndarray:
    """Keep the image lightness, take the chroma (a, b) from the tint colour"""
    lab = rgb_to_lab(as_rgb(pixels) / max_value)
    tint_lab = colour_to_lab(tint)
    lab[..., 1] = tint_lab[1]
    lab[..., 2] = tint_lab[2]
    return lab_to_rgb(lab) * max_value


def apply_greyscale(pixels: np.ndarray, max_value: float) -> np.ndarray:
    return luminance(pixels)[:, :, np.newaxis].copy()


def apply_sepia(pixels: np.ndarray, max_value: float) -> np.ndarray:
    rgb = as_rgb(pixels)
    return np.clip(rgb @ SEPIA_MATRIX.T, 0.0, max_value)


def apply_duotone(pixels: np.ndarray, max_value: float,
                  start: Sequence[int], stop: Sequence[int]) -> np.ndarray:
    """Map luminance onto a Lab ramp between two colours"""
    t = np.clip(luminance(pixels) / max_value, 0.0, 1.0)[..., np.newaxis]
    start_lab = colour_to_lab(start)
    stop_lab = colour_to_lab(stop)
    lab = start_lab + t * (stop_lab - start_lab)
    return lab_to_rgb(lab) * max_value


def apply_negate(pixels: np.ndarray, max_value: float) -> np.ndarray:
    return max_value - pixels


# =========================================================
# 裁边 (需要实际像素)
# =========================================================

def find_trim_box(pixels: np.ndarray, threshold: float) -> Optional[Tuple[int, int, int, int]]:
    """
    Bounding box (left, top, width, height) of everything that differs from
    the top-left pixel by more than threshold on any band, or None when the
    whole image is background.
    """
    background = pixels[0, 0, :]
    differs = np.abs(pixels - background).max(axis=2) > threshold
    rows = np.flatnonzero(differs.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(differs.any(axis=0))
    left, top = int(cols[0]), int(rows[0])
    return left, top, int(cols[-1]) - left + 1, int(rows[-1]) - top + 1


# =========================================================
# 蒙版形状
# =========================================================

def _regular_polygon(cx: float, cy: float, radius: float, sides: int,
                     start_deg: float) -> List[Tuple[float, float]]:
    step = 360.0 / sides
    return [
        (cx + radius * math.cos(math.radians(start_deg + i * step)),
         cy + radius * math.sin(math.radians(start_deg + i * step)))
        for i in range(sides)
    ]


def _star(cx: float, cy: float, radius: float) -> List[Tuple[float, float]]:
    inner = radius * 0.382
    points = []
    for i in range(10):
        r = radius if i % 2 == 0 else inner
        angle = math.radians(-90 + i * 36)
        points.append((cx + r * math.cos(angle), cy + r * math.sin(angle)))
    return points


def _heart(left: float, top: float, size: float) -> List[Tuple[float, float]]:
    points = []
    for i in range(120):
        t = 2 * math.pi * i / 120
        x = 16 * math.sin(t) ** 3
        y = 13 * math.cos(t) - 5 * math.cos(2 * t) - 2 * math.cos(3 * t) - math.cos(4 * t)
        # the curve spans x in [-16, 16] and y in [-17, 12]
        points.append((left + (x + 16) / 32 * size, top + (12 - y) / 29 * size))
    return points


def render_mask(shape: MaskShape, width: int, height: int) -> Image.Image:
    """8-bit mask, 255 inside the shape. Shapes other than ellipse sit in the centred square."""
    mask = Image.new("L", (width, height), 0)
    draw = ImageDraw.Draw(mask)

    if shape is MaskShape.ELLIPSE:
        draw.ellipse((0, 0, width - 1, height - 1), fill=255)
        return mask

    size = min(width, height)
    left = (width - size) / 2.0
    top = (height - size) / 2.0
    cx, cy, radius = left + size / 2.0, top + size / 2.0, size / 2.0

    if shape is MaskShape.CIRCLE:
        draw.ellipse((left, top, left + size - 1, top + size - 1), fill=255)
    elif shape is MaskShape.SQUARE:
        draw.rectangle((left, top, left + size - 1, top + size - 1), fill=255)
    elif shape is MaskShape.TRIANGLE:
        draw.polygon([(cx, top), (left + size, top + size), (left, top + size)], fill=255)
    elif shape is MaskShape.TRIANGLE_180:
        draw.polygon([(left, top), (left + size, top), (cx, top + size)], fill=255)
    elif shape is MaskShape.PENTAGON:
        draw.polygon(_regular_polygon(cx, cy, radius, 5, -90), fill=255)
    elif shape is MaskShape.PENTAGON_180:
        draw.polygon(_regular_polygon(cx, cy, radius, 5, 90), fill=255)
    elif shape is MaskShape.HEXAGON:
        draw.polygon(_regular_polygon(cx, cy, radius, 6, 0), fill=255)
    elif shape is MaskShape.STAR:
        draw.polygon(_star(cx, cy, radius), fill=255)
    elif shape is MaskShape.HEART:
        draw.polygon(_heart(left, top, size), fill=255)
    return mask

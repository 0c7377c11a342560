"""
处理阶段
每个阶段是一个纯函数 apply(image, params) -> LazyImage，参数为不可变 dataclass。
除 trim 之外，所有阶段只构建惰性计算图，不读取像素。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from PIL import ImageFilter

from image_alchemy import math_ops
from image_alchemy.engine import LazyImage
from image_alchemy.enums import Anchor, FilterType, Fit, Kernel, MaskShape, OutputFormat
from image_alchemy.geometry import (
    anchored_position,
    focal_crop_position,
    page_aware_height,
    resolve_crop_rectangle,
    resolve_thumbnail_size,
    rotation_for_angle,
)
from image_alchemy.metadata import describe, support_alpha_channel

Color = Tuple[int, int, int, int]

MULTI_PAGE_OUTPUTS = (OutputFormat.GIF, OutputFormat.WEBP, OutputFormat.TIFF)
SIXTEEN_BIT_OUTPUTS = (OutputFormat.PNG, OutputFormat.TIFF)


class StageKind(Enum):
    ORIENTATION = "orientation"
    TRIM = "trim"
    CROP = "crop"
    THUMBNAIL = "thumbnail"
    POST_CROP = "post_crop"
    ROTATE = "rotate"
    EMBED = "embed"
    MASK = "mask"
    BACKGROUND = "background"
    BLUR = "blur"
    SHARPEN = "sharpen"
    GAMMA = "gamma"
    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    SATURATE = "saturate"
    TINT = "tint"
    FILTER = "filter"
    FINALIZE = "finalize"


# =========================================================
# Stage parameters
# =========================================================

@dataclass(frozen=True)
class OrientationParams:
    angle: int
    flop: bool


@dataclass(frozen=True)
class TrimParams:
    threshold: int


@dataclass(frozen=True)
class CropParams:
    x: Optional[int]
    y: Optional[int]
    width: Optional[int]
    height: Optional[int]


@dataclass(frozen=True)
class ThumbnailParams:
    width: Optional[int]
    height: Optional[int]
    fit: Fit
    without_enlargement: bool
    kernel: Kernel


@dataclass(frozen=True)
class PostCropParams:
    width: int
    height: int
    anchor: Anchor
    focal_x: int
    focal_y: int


@dataclass(frozen=True)
class RotateParams:
    angle: int
    flip: bool
    flop: bool


@dataclass(frozen=True)
class EmbedParams:
    width: int
    height: int
    anchor: Anchor
    background: Color


@dataclass(frozen=True)
class MaskParams:
    shape: MaskShape
    background: Color
    trim: bool


@dataclass(frozen=True)
class BackgroundParams:
    color: Color


@dataclass(frozen=True)
class SigmaParams:
    """blur / sharpen; sigma 0.0 selects the mild 3x3 kernel"""
    sigma: float


@dataclass(frozen=True)
class ValueParams:
    """gamma / brightness / contrast / saturate"""
    value: float


@dataclass(frozen=True)
class TintParams:
    color: Color


@dataclass(frozen=True)
class FilterParams:
    filter: FilterType
    start: Color
    stop: Color


@dataclass(frozen=True)
class FinalizeParams:
    output: OutputFormat
    background: Color


@dataclass(frozen=True)
class Stage:
    kind: StageKind
    params: object


# =========================================================
# Geometry stages
# =========================================================

def _page_height(image: LazyImage) -> int:
    return page_aware_height(describe(image))


def apply_orientation(image: LazyImage, params: OrientationParams) -> LazyImage:
    image = image.rotate(rotation_for_angle(params.angle))
    if params.flop:
        image = image.flop()
    return image.with_header(orientation=0)


def apply_trim(image: LazyImage, params: TrimParams) -> LazyImage:
    # the only stage that reads pixels while the plan is being applied
    box = image.find_trim(params.threshold)
    if box is None:
        return image
    left, top, width, height = box
    return image.crop(left, top, width, height)


def apply_crop(image: LazyImage, params: CropParams) -> LazyImage:
    left, top, width, height = resolve_crop_rectangle(
        image.width, _page_height(image), params.x, params.y, params.width, params.height
    )
    return image.crop(left, top, width, height)


def apply_thumbnail(image: LazyImage, params: ThumbnailParams) -> LazyImage:
    page_height = _page_height(image)
    size = resolve_thumbnail_size(
        image.width, page_height, params.width, params.height, params.fit, params.without_enlargement
    )
    if (size.width, size.height) == (image.width, page_height):
        return image
    return image.resize(size.width, size.height, params.kernel)


def apply_post_crop(image: LazyImage, params: PostCropParams) -> LazyImage:
    page_height = _page_height(image)
    width = min(image.width, params.width)
    height = min(page_height, params.height)
    if (width, height) == (image.width, page_height):
        return image
    if params.anchor is Anchor.FOCAL:
        left, top = focal_crop_position(
            image.width, page_height, width, height, params.focal_x, params.focal_y
        )
    else:
        left, top = anchored_position(image.width, page_height, width, height, params.anchor)
        left, top = -left, -top
    return image.crop(left, top, width, height)


def apply_rotate(image: LazyImage, params: RotateParams) -> LazyImage:
    image = image.rotate(rotation_for_angle(params.angle))
    if params.flip:
        image = image.flip()
    if params.flop:
        image = image.flop()
    return image


def apply_embed(image: LazyImage, params: EmbedParams) -> LazyImage:
    page_height = _page_height(image)
    if (image.width, page_height) == (params.width, params.height):
        return image
    left, top = anchored_position(image.width, page_height, params.width, params.height, params.anchor)
    return image.embed(left, top, params.width, params.height, params.background)


def apply_mask(image: LazyImage, params: MaskParams) -> LazyImage:
    width, height = image.width, _page_height(image)
    image = image.apply_mask(
        lambda w, h: math_ops.render_mask(params.shape, w, h), params.background
    )
    if params.trim:
        box = math_ops.render_mask(params.shape, width, height).getbbox()
        if box is not None:
            left, top, right, bottom = box
            image = image.crop(left, top, right - left, bottom - top)
    return image


def apply_background(image: LazyImage, params: BackgroundParams) -> LazyImage:
    return image.composite_background(params.color)


# =========================================================
# Pixel stages
# =========================================================

def apply_blur(image: LazyImage, params: SigmaParams) -> LazyImage:
    if params.sigma == 0.0:
        return image.filter(ImageFilter.BoxBlur(1), "blur")
    return image.filter(ImageFilter.GaussianBlur(params.sigma), "blur")


def apply_sharpen(image: LazyImage, params: SigmaParams) -> LazyImage:
    if params.sigma == 0.0:
        return image.filter(ImageFilter.SHARPEN, "sharpen")
    return image.filter(ImageFilter.UnsharpMask(radius=params.sigma, percent=150, threshold=0), "sharpen")


def apply_gamma(image: LazyImage, params: ValueParams) -> LazyImage:
    return image.map_pixels(lambda px, m: math_ops.apply_gamma(px, m, params.value), "gamma")


def apply_brightness(image: LazyImage, params: ValueParams) -> LazyImage:
    return image.map_pixels(lambda px, m: math_ops.apply_brightness(px, m, int(params.value)), "brightness")


def apply_contrast(image: LazyImage, params: ValueParams) -> LazyImage:
    return image.map_pixels(lambda px, m: math_ops.apply_contrast(px, m, int(params.value)), "contrast")


def apply_saturate(image: LazyImage, params: ValueParams) -> LazyImage:
    return image.map_pixels(lambda px, m: math_ops.apply_saturation(px, m, params.value), "saturate")


def apply_tint(image: LazyImage, params: TintParams) -> LazyImage:
    return image.map_pixels(lambda px, m: math_ops.apply_tint(px, m, params.color), "tint", out_bands=3)


def apply_filter(image: LazyImage, params: FilterParams) -> LazyImage:
    if params.filter is FilterType.GREYSCALE:
        return image.map_pixels(math_ops.apply_greyscale, "filter", out_bands=1)
    if params.filter is FilterType.SEPIA:
        return image.map_pixels(math_ops.apply_sepia, "filter", out_bands=3)
    if params.filter is FilterType.DUOTONE:
        return image.map_pixels(
            lambda px, m: math_ops.apply_duotone(px, m, params.start, params.stop), "filter", out_bands=3
        )
    return image.map_pixels(math_ops.apply_negate, "filter")


# =========================================================
# Finalize
# =========================================================

def apply_finalize(image: LazyImage, params: FinalizeParams) -> LazyImage:
    """Make the image storable in the output format"""
    if image.has_alpha and not support_alpha_channel(params.output):
        image = image.flatten(params.background)
    if image.n_pages > 1 and params.output not in MULTI_PAGE_OUTPUTS:
        image = image.crop(0, 0, image.width, image.page_height)
    if params.output not in SIXTEEN_BIT_OUTPUTS:
        image = image.to_uchar()
    return image

"""
Geometry resolver: anchored positions, thumbnail sizes, crop rectangles and
rotation helpers. Pure integer arithmetic, no I/O.

All products that could leave the signed 32-bit range go through
checked_mul so that oversized requests fail with GeometryError instead of
producing a wrapped size further down the pipeline.
"""
from typing import NamedTuple, Optional, Tuple

from loguru import logger

from image_alchemy.enums import Anchor, Fit
from image_alchemy.errors import GeometryError

INT32_MAX = 2 ** 31 - 1
INT32_MIN = -(2 ** 31)


class ThumbnailSize(NamedTuple):
    width: int
    height: int
    crop_needed: bool


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > INT32_MAX or result < INT32_MIN:
        raise GeometryError(f"Integer overflow computing {a} x {b}")
    return result


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > INT32_MAX or result < INT32_MIN:
        raise GeometryError(f"Integer overflow computing {a} + {b}")
    return result


def _half(value: int) -> int:
    # truncate toward zero so a negative surplus mirrors a positive one
    return -((-value) // 2) if value < 0 else value // 2


def anchored_position(inner_w: int, inner_h: int, outer_w: int, outer_h: int,
                      anchor: Anchor) -> Tuple[int, int]:
    """
    (left, top) of an inner_w x inner_h region placed inside outer_w x outer_h.

    A negative result means the inner region is larger than the outer one,
    which is what cropping asks for: negate it to get the crop offset.
    """
    dx = outer_w - inner_w
    dy = outer_h - inner_h

    if anchor is Anchor.TOP:
        return _half(dx), 0
    if anchor is Anchor.RIGHT:
        return dx, _half(dy)
    if anchor is Anchor.BOTTOM:
        return _half(dx), dy
    if anchor is Anchor.LEFT:
        return 0, _half(dy)
    if anchor is Anchor.TOP_LEFT:
        return 0, 0
    if anchor is Anchor.TOP_RIGHT:
        return dx, 0
    if anchor is Anchor.BOTTOM_LEFT:
        return 0, dy
    if anchor is Anchor.BOTTOM_RIGHT:
        return dx, dy
    # center, and focal when no focal point applies
    return _half(dx), _half(dy)


def focal_crop_position(width: int, height: int, crop_w: int, crop_h: int,
                        focal_x: int, focal_y: int) -> Tuple[int, int]:
    """Crop offset centred on a focal point given in percent, kept inside the image"""
    center_x = _scale_round(width, focal_x, 100)
    center_y = _scale_round(height, focal_y, 100)
    left = min(max(center_x - crop_w // 2, 0), max(width - crop_w, 0))
    top = min(max(center_y - crop_h // 2, 0), max(height - crop_h, 0))
    return left, top


def _scale_round(value: int, numerator: int, denominator: int) -> int:
    """round(value * numerator / denominator) with overflow detection"""
    product = checked_mul(value, numerator)
    return (2 * product + denominator) // (2 * denominator)


def resolve_thumbnail_size(src_w: int, src_h: int,
                           req_w: Optional[int], req_h: Optional[int],
                           fit: Fit, without_enlargement: bool = False) -> ThumbnailSize:
    if src_w <= 0 or src_h <= 0:
        raise GeometryError(f"Invalid source size {src_w}x{src_h}")
    if (req_w is not None and req_w <= 0) or (req_h is not None and req_h <= 0):
        raise GeometryError(f"Invalid target size {req_w}x{req_h}")

    if req_w is None and req_h is None:
        return ThumbnailSize(src_w, src_h, False)

    if req_w is None or req_h is None:
        # only one side given, derive the other from the aspect ratio
        if req_w is not None:
            width, height = req_w, max(1, _scale_round(src_h, req_w, src_w))
        else:
            width, height = max(1, _scale_round(src_w, req_h, src_h)), req_h
        if without_enlargement and width > src_w:
            width, height = src_w, src_h
        return ThumbnailSize(width, height, False)

    if fit is Fit.FILL:
        width, height = req_w, req_h
        if without_enlargement:
            width, height = min(width, src_w), min(height, src_h)
        return ThumbnailSize(width, height, False)

    # compare src_w / src_h against req_w / req_h without division
    src_cross = checked_mul(src_w, req_h)
    req_cross = checked_mul(src_h, req_w)
    wider = src_cross > req_cross

    if fit in (Fit.COVER, Fit.OUTSIDE):
        # the constraining side is the one that must fill the box
        if wider:
            width, height = max(1, _scale_round(src_w, req_h, src_h)), req_h
        else:
            width, height = req_w, max(1, _scale_round(src_h, req_w, src_w))
    else:
        # contain / inside
        if wider:
            width, height = req_w, max(1, _scale_round(src_h, req_w, src_w))
        else:
            width, height = max(1, _scale_round(src_w, req_h, src_h)), req_h

    if without_enlargement and (width > src_w or height > src_h):
        width, height = src_w, src_h

    checked_mul(width, height)

    crop_needed = fit is Fit.COVER and (width > req_w or height > req_h)
    return ThumbnailSize(width, height, crop_needed)


def resolve_crop_rectangle(width: int, height: int,
                           x: Optional[int], y: Optional[int],
                           crop_w: Optional[int], crop_h: Optional[int]) -> Tuple[int, int, int, int]:
    """Explicit crop rectangle clamped to the image; missing sides extend to the edge"""
    left = x or 0
    top = y or 0
    if left >= width or top >= height:
        raise GeometryError(
            f"Crop origin ({left}, {top}) lies outside the {width}x{height} image"
        )
    right = width if crop_w is None else min(checked_add(left, crop_w), width)
    bottom = height if crop_h is None else min(checked_add(top, crop_h), height)
    return left, top, right - left, bottom - top


def page_aware_height(descriptor) -> int:
    """
    Height of a single page for multi-page images.

    Falls back to the full height whenever the declared page height is not
    plausible, so that slicing can never reach past the image bounds.
    """
    height = descriptor.height
    page_height = descriptor.page_height
    if not descriptor.supports_pages or page_height is None:
        return height
    if 0 < page_height <= height and height % page_height == 0:
        return page_height
    return height


def rotation_for_angle(angle: int) -> int:
    """Clockwise rotation for a non-negative multiple of 90"""
    if angle in (0, 90, 180, 270):
        return angle
    logger.warning(f"[Geometry] Unexpected rotation angle {angle}, using 0")
    return 0


def snap_angle(angle: float) -> int:
    """Normalise to [0, 360) and snap to the nearest multiple of 90 (ties go up)"""
    normalised = angle % 360
    return int(((normalised + 45) // 90) * 90) % 360


# EXIF orientation -> (clockwise rotation, mirror horizontally afterwards)
_EXIF_TRANSFORMS = {
    1: (0, False),
    2: (0, True),
    3: (180, False),
    4: (180, True),
    5: (90, True),
    6: (90, False),
    7: (270, True),
    8: (270, False),
}


def exif_orientation_transform(orientation: int) -> Tuple[int, bool]:
    return _EXIF_TRANSFORMS.get(orientation, (0, False))

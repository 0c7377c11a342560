from types import SimpleNamespace

import pytest

from image_alchemy.enums import Anchor, Fit
from image_alchemy.errors import GeometryError
from image_alchemy.geometry import (
    INT32_MAX,
    anchored_position,
    checked_add,
    checked_mul,
    exif_orientation_transform,
    focal_crop_position,
    page_aware_height,
    resolve_crop_rectangle,
    resolve_thumbnail_size,
    rotation_for_angle,
    snap_angle,
)


@pytest.mark.parametrize("anchor", list(Anchor))
def test_anchor_same_size_is_origin(anchor):
    assert anchored_position(120, 80, 120, 80, anchor) == (0, 0)


def test_anchor_grid():
    assert anchored_position(50, 50, 100, 100, Anchor.CENTER) == (25, 25)
    assert anchored_position(50, 50, 100, 100, Anchor.TOP) == (25, 0)
    assert anchored_position(50, 50, 100, 100, Anchor.BOTTOM_RIGHT) == (50, 50)
    assert anchored_position(50, 50, 100, 100, Anchor.LEFT) == (0, 25)


def test_anchor_negative_surplus_mirrors_positive():
    # cropping a 101 wide image to 100 and embedding 100 into 101 both give an offset of 0
    assert anchored_position(101, 100, 100, 100, Anchor.CENTER) == (0, 0)
    assert anchored_position(103, 100, 100, 100, Anchor.CENTER) == (-1, 0)
    assert anchored_position(100, 100, 103, 100, Anchor.CENTER) == (1, 0)


@pytest.mark.parametrize("src,box", [
    ((400, 200), (100, 100)),
    ((200, 400), (100, 100)),
    ((1920, 1080), (300, 200)),
    ((7, 3), (5, 5)),
    ((1000, 1), (64, 64)),
])
@pytest.mark.parametrize("fit", [Fit.INSIDE, Fit.CONTAIN])
def test_contain_stays_inside_box_and_keeps_aspect(src, box, fit):
    size = resolve_thumbnail_size(src[0], src[1], box[0], box[1], fit)
    assert size.width <= box[0] and size.height <= box[1]
    assert size.width == box[0] or size.height == box[1]
    assert not size.crop_needed
    # aspect within rounding error
    assert abs(size.width * src[1] - size.height * src[0]) <= max(src)


def test_cover_fills_box_and_requests_crop():
    size = resolve_thumbnail_size(400, 200, 100, 100, Fit.COVER)
    assert (size.width, size.height) == (200, 100)
    assert size.crop_needed


def test_outside_never_below_box():
    size = resolve_thumbnail_size(400, 200, 100, 100, Fit.OUTSIDE)
    assert (size.width, size.height) == (200, 100)
    assert not size.crop_needed


def test_fill_is_exact():
    assert resolve_thumbnail_size(400, 200, 123, 45, Fit.FILL)[:2] == (123, 45)


def test_single_dimension_derives_the_other():
    assert resolve_thumbnail_size(400, 200, 100, None, Fit.INSIDE)[:2] == (100, 50)
    assert resolve_thumbnail_size(400, 200, None, 50, Fit.COVER)[:2] == (100, 50)
    assert resolve_thumbnail_size(1000, 1, 10, None, Fit.INSIDE)[:2] == (10, 1)


def test_without_enlargement_caps_scale():
    assert resolve_thumbnail_size(50, 25, 100, 100, Fit.INSIDE, True)[:2] == (50, 25)
    assert resolve_thumbnail_size(50, 25, 200, None, Fit.INSIDE, True)[:2] == (50, 25)


def test_invalid_sizes():
    with pytest.raises(GeometryError):
        resolve_thumbnail_size(0, 10, 10, 10, Fit.INSIDE)
    with pytest.raises(GeometryError):
        resolve_thumbnail_size(10, 10, -1, 10, Fit.INSIDE)


def test_overflow_is_detected():
    with pytest.raises(GeometryError):
        checked_mul(2 ** 20, 2 ** 20)
    with pytest.raises(GeometryError):
        checked_add(INT32_MAX, 1)
    with pytest.raises(GeometryError):
        resolve_thumbnail_size(2 ** 30, 2 ** 30, 2 ** 30, 2 ** 30, Fit.COVER)
    assert checked_mul(46340, 46340) == 46340 * 46340


def test_crop_rectangle_is_clamped():
    assert resolve_crop_rectangle(100, 80, 10, 10, 200, None) == (10, 10, 90, 70)
    assert resolve_crop_rectangle(100, 80, None, None, 20, 20) == (0, 0, 20, 20)


def test_crop_rectangle_outside_image():
    with pytest.raises(GeometryError):
        resolve_crop_rectangle(100, 80, 100, 0, 10, 10)


def test_focal_crop_position():
    assert focal_crop_position(200, 100, 100, 100, 50, 50) == (50, 0)
    assert focal_crop_position(200, 100, 100, 100, 0, 50) == (0, 0)
    assert focal_crop_position(200, 100, 100, 100, 100, 50) == (100, 0)


def test_page_aware_height():
    desc = SimpleNamespace(height=90, page_height=30, supports_pages=True)
    assert page_aware_height(desc) == 30
    assert page_aware_height(SimpleNamespace(height=90, page_height=40, supports_pages=True)) == 90
    assert page_aware_height(SimpleNamespace(height=90, page_height=0, supports_pages=True)) == 90
    assert page_aware_height(SimpleNamespace(height=90, page_height=30, supports_pages=False)) == 90
    assert page_aware_height(SimpleNamespace(height=90, page_height=None, supports_pages=True)) == 90


def test_rotation_helpers():
    assert rotation_for_angle(270) == 270
    assert rotation_for_angle(45) == 0
    assert snap_angle(44) == 0
    assert snap_angle(45) == 90
    assert snap_angle(-90) == 270
    assert snap_angle(360) == 0
    assert snap_angle(315) == 0


def test_exif_orientation_transform():
    assert exif_orientation_transform(1) == (0, False)
    assert exif_orientation_transform(6) == (90, False)
    assert exif_orientation_transform(5) == (90, True)
    assert exif_orientation_transform(8) == (270, False)
    assert exif_orientation_transform(0) == (0, False)

import numpy as np
import pytest
from PIL import Image

from conftest import encode_image
from image_alchemy import engine
from image_alchemy.enums import Anchor, FilterType, Fit, Kernel, MaskShape, OutputFormat
from image_alchemy.errors import StageError
from image_alchemy.pipeline import stages
from image_alchemy.pipeline.stages import (
    BackgroundParams,
    CropParams,
    EmbedParams,
    FilterParams,
    FinalizeParams,
    MaskParams,
    OrientationParams,
    PostCropParams,
    RotateParams,
    SigmaParams,
    ThumbnailParams,
    TintParams,
    TrimParams,
    ValueParams,
)

RED, BLUE = (255, 0, 0, 255), (0, 0, 255, 255)


def pixels(image) -> np.ndarray:
    return np.asarray(image.realize()[0]).astype(int)


def solid(mode, size, color) -> engine.LazyImage:
    return engine.load(encode_image(Image.new(mode, size, color), "PNG"))


def test_trim_keeps_only_the_foreground(trim_png):
    image = stages.apply_trim(engine.load(trim_png), TrimParams(10))
    assert (image.width, image.height) == (20, 30)
    assert pixels(image).max() < 10


def test_trim_leaves_uniform_images_alone():
    image = solid("RGB", (50, 40), (10, 20, 30))
    assert stages.apply_trim(image, TrimParams(10)) is image


def test_crop_stage():
    image = stages.apply_crop(solid("RGB", (100, 80), "white"), CropParams(10, 10, 200, None))
    assert (image.width, image.height) == (90, 70)


def test_crop_keeps_first_page_only(animated_gif):
    image = engine.load(animated_gif, pages=-1)
    assert image.n_pages == 3
    image = stages.apply_crop(image, CropParams(0, 0, 10, 10))
    assert (image.n_pages, image.height) == (1, 10)
    assert tuple(pixels(image)[0, 0][:3]) == (255, 0, 0)
    assert image.header.delays is None


def test_thumbnail_is_page_aware(animated_gif):
    image = engine.load(animated_gif, pages=-1)
    image = stages.apply_thumbnail(image, ThumbnailParams(20, None, Fit.INSIDE, False, Kernel.LANCZOS3))
    assert (image.width, image.page_height, image.n_pages, image.height) == (20, 15, 3, 45)
    frames = image.realize()
    assert len(frames) == 3
    assert all(frame.size == (20, 15) for frame in frames)


def test_post_crop_uses_anchor(jpeg_400x200):
    image = engine.load(jpeg_400x200)
    image = stages.apply_thumbnail(image, ThumbnailParams(100, 100, Fit.COVER, False, Kernel.LINEAR))
    assert (image.width, image.height) == (200, 100)
    cropped = stages.apply_post_crop(image, PostCropParams(100, 100, Anchor.RIGHT, 50, 50))
    assert (cropped.width, cropped.height) == (100, 100)
    # the gradient grows to the right, so the right-anchored crop is brighter
    left = stages.apply_post_crop(image, PostCropParams(100, 100, Anchor.LEFT, 50, 50))
    assert pixels(cropped)[:, :, 0].mean() > pixels(left)[:, :, 0].mean()


def test_orientation_stage_clears_tag():
    image = solid("RGB", (100, 50), "white").with_header(orientation=6)
    image = stages.apply_orientation(image, OrientationParams(90, False))
    assert (image.width, image.height) == (50, 100)
    assert image.header.orientation == 0


def test_embed_adds_transparent_padding():
    image = stages.apply_embed(
        solid("RGB", (100, 50), (0, 255, 0)), EmbedParams(100, 100, Anchor.CENTER, (0, 0, 0, 0))
    )
    assert image.mode == "RGBA"
    px = pixels(image)
    assert px.shape == (100, 100, 4)
    assert px[0, 0, 3] == 0
    assert tuple(px[50, 50]) == (0, 255, 0, 255)
    assert px[24, 50, 3] == 0 and px[25, 50, 3] == 255


def test_mask_circle():
    image = stages.apply_mask(solid("RGB", (100, 100), "white"), MaskParams(MaskShape.CIRCLE, (0, 0, 0, 0), False))
    px = pixels(image)
    assert image.mode == "RGBA"
    assert px[0, 0, 3] == 0
    assert px[50, 50, 3] == 255


def test_mask_trim_crops_to_the_shape():
    image = stages.apply_mask(solid("RGB", (200, 100), "white"), MaskParams(MaskShape.CIRCLE, RED, True))
    assert (image.width, image.height) == (100, 100)
    assert image.mode == "RGB"


def test_background_flattens_with_opaque_colour(rgba_png):
    image = stages.apply_background(engine.load(rgba_png), BackgroundParams(BLUE))
    assert image.mode == "RGB"
    r, g, b = pixels(image)[0, 0]
    assert abs(r - 100) <= 2 and abs(g - 25) <= 2 and abs(b - 152) <= 2


def test_saturation_zero_keeps_alpha(rgba_png):
    image = stages.apply_saturate(engine.load(rgba_png), ValueParams(0.0))
    assert image.mode == "RGBA"
    r, g, b, a = pixels(image)[0, 0]
    assert a == 128
    assert max(r, g, b) - min(r, g, b) <= 2


def test_greyscale_filter_keeps_alpha(rgba_png):
    image = stages.apply_filter(
        engine.load(rgba_png), FilterParams(FilterType.GREYSCALE, RED, BLUE)
    )
    assert image.mode == "LA"
    assert pixels(image)[0, 0, 1] == 128


def test_negate():
    image = stages.apply_filter(solid("L", (4, 4), 100), FilterParams(FilterType.NEGATE, RED, BLUE))
    assert pixels(image)[0, 0] == 155


def test_duotone_and_sepia_are_colour():
    for filter_type in (FilterType.DUOTONE, FilterType.SEPIA):
        image = stages.apply_filter(solid("L", (4, 4), 100), FilterParams(filter_type, RED, BLUE))
        assert image.mode == "RGB"
        assert pixels(image).shape == (4, 4, 3)


def test_tint_turns_grey_into_colour():
    image = stages.apply_tint(solid("L", (4, 4), 128), TintParams(RED))
    r, g, b = pixels(image)[0, 0]
    assert image.mode == "RGB"
    assert r > g and r > b


def test_brightness_and_gamma():
    bright = stages.apply_brightness(solid("L", (4, 4), 100), ValueParams(50))
    assert abs(pixels(bright)[0, 0] - 228) <= 1
    gamma = stages.apply_gamma(solid("L", (4, 4), 64), ValueParams(2.0))
    assert abs(pixels(gamma)[0, 0] - 128) <= 1


def test_contrast_spreads_values():
    image = engine.load(encode_image(Image.fromarray(np.array([[64, 192]], dtype=np.uint8)), "PNG"))
    low, high = pixels(stages.apply_contrast(image, ValueParams(40)))[0]
    assert low < 64 and high > 192


def test_blur_and_sharpen_keep_size(jpeg_400x200):
    image = engine.load(jpeg_400x200)
    for result in (
        stages.apply_blur(image, SigmaParams(0.0)),
        stages.apply_blur(image, SigmaParams(2.0)),
        stages.apply_sharpen(image, SigmaParams(0.0)),
        stages.apply_sharpen(image, SigmaParams(1.5)),
    ):
        assert result.realize()[0].size == (400, 200)


def test_finalize_for_jpeg_flattens_onto_white():
    image = engine.load(encode_image(Image.new("RGBA", (10, 10), (0, 0, 0, 0)), "PNG"))
    image = stages.apply_finalize(image, FinalizeParams(OutputFormat.JPEG, (255, 255, 255, 255)))
    assert image.mode == "RGB"
    assert tuple(pixels(image)[0, 0]) == (255, 255, 255)


def test_finalize_reduces_16_bit_for_jpeg(grey16_png):
    image = engine.load(grey16_png)
    assert image.mode == "I;16"
    assert stages.apply_finalize(image, FinalizeParams(OutputFormat.PNG, (255, 255, 255, 255))).mode == "I;16"
    assert stages.apply_finalize(image, FinalizeParams(OutputFormat.JPEG, (255, 255, 255, 255))).mode == "L"


def test_finalize_keeps_first_page_for_png(animated_gif):
    image = engine.load(animated_gif, pages=-1)
    assert stages.apply_finalize(image, FinalizeParams(OutputFormat.PNG, RED)).n_pages == 1
    assert stages.apply_finalize(image, FinalizeParams(OutputFormat.GIF, RED)).n_pages == 3


def test_engine_failures_name_the_stage():
    image = solid("RGB", (10, 10), "white")

    def broken(px, max_value):
        raise ValueError("kernel exploded")

    with engine.stage_context("gamma"):
        failing = image.map_pixels(broken, "gamma")
    with pytest.raises(StageError) as excinfo:
        failing.realize()
    assert excinfo.value.stage == "gamma"


def test_rotate_by_quarter_turn():
    image = stages.apply_rotate(solid("RGB", (100, 50), "white"), RotateParams(270, False, True))
    assert (image.width, image.height) == (50, 100)


def test_unexpected_rotation_angle_leaves_image_upright():
    image = solid("RGB", (100, 50), "white")
    rotated = stages.apply_rotate(image, RotateParams(45, False, False))
    assert (rotated.width, rotated.height) == (100, 50)
    oriented = stages.apply_orientation(image, OrientationParams(135, False))
    assert oriented.realize()[0].size == (100, 50)

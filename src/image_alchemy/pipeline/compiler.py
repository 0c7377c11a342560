"""
ProcessorParams + ImageDescriptor -> ProcessingPlan.

The plan is a fixed-order tuple of stages plus the resolved save options.
Stages whose parameters are the identity are left out. Compilation only
looks at the descriptor, never at pixels.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from loguru import logger

from image_alchemy.config import DEFAULT_CONFIG, Config
from image_alchemy.enums import Fit, OutputFormat
from image_alchemy.errors import GeometryError, UnsupportedFormatError
from image_alchemy.geometry import (
    checked_mul,
    exif_orientation_transform,
    page_aware_height,
    resolve_crop_rectangle,
    resolve_thumbnail_size,
)
from image_alchemy.metadata import (
    ImageDescriptor,
    determine_image_extension,
    support_alpha_channel,
    to_output,
)
from image_alchemy.pipeline.request import ProcessorParams
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
    Stage,
    StageKind,
    ThumbnailParams,
    TintParams,
    TrimParams,
    ValueParams,
)

TRANSPARENT = (0, 0, 0, 0)
WHITE = (255, 255, 255, 255)


@dataclass(frozen=True)
class SaveOptions:
    output: OutputFormat
    quality: int = 85
    interlace: bool = False
    compression_level: int = 6
    lossless: bool = False

    @property
    def extension(self) -> str:
        return determine_image_extension(self.output)


@dataclass(frozen=True)
class ProcessingPlan:
    stages: Tuple[Stage, ...]
    save: SaveOptions

    @property
    def kinds(self) -> Tuple[StageKind, ...]:
        return tuple(stage.kind for stage in self.stages)


def resolve_output(params: ProcessorParams, descriptor: ImageDescriptor) -> OutputFormat:
    if params.output is not None:
        return params.output
    return to_output(descriptor.image_type)


def _scaled(value: Optional[int], dpr: float, limit: int) -> Optional[int]:
    if value is None:
        return None
    return max(1, min(int(round(value * dpr)), limit))


def _check_alpha_request(params: ProcessorParams, output: OutputFormat) -> None:
    """An explicit output without alpha cannot honour an explicitly transparent colour"""
    if params.output is None or support_alpha_channel(output):
        return
    for key, color in (("bg", params.background), ("mbg", params.mask_background)):
        if color is not None and color[3] < 255:
            raise UnsupportedFormatError(
                output.value,
                f"Output format '{output.value}' cannot store the transparency requested by '{key}'",
            )


def _check_output_pixels(width: int, height: int, pages: int, config: Config) -> None:
    """The largest frame set any stage will allocate must stay under max_output_pixels"""
    total = checked_mul(checked_mul(width, height), pages)
    if total > config.max_output_pixels:
        raise GeometryError(
            f"Output image exceeds pixel limit: {width}x{height}x{pages} > {config.max_output_pixels}"
        )


def compile_plan(params: ProcessorParams, descriptor: ImageDescriptor,
                 config: Optional[Config] = None) -> ProcessingPlan:
    """
    Build the ordered stage list for one request.

    Raises:
        UnsupportedFormatError: transparency requested for an output without alpha
        GeometryError: the requested geometry overflows or is impossible
    """
    config = config or DEFAULT_CONFIG
    output = resolve_output(params, descriptor)
    save = SaveOptions(
        output=output,
        quality=params.quality,
        interlace=params.interlace,
        compression_level=params.compression_level,
        lossless=params.lossless,
    )
    if output is OutputFormat.JSON:
        return ProcessingPlan((), save)

    _check_alpha_request(params, output)
    alpha_output = support_alpha_channel(output)
    stages: List[Stage] = []

    # predicted geometry of the current page, used to decide on post_crop
    width, height = descriptor.width, page_aware_height(descriptor)
    pages = max(1, descriptor.height // height)

    # 1. orientation
    if params.auto_orient and 2 <= descriptor.orientation <= 8:
        angle, flop = exif_orientation_transform(descriptor.orientation)
        stages.append(Stage(StageKind.ORIENTATION, OrientationParams(angle, flop)))
        if angle in (90, 270):
            width, height = height, width

    # 2. trim
    if params.trim is not None:
        stages.append(Stage(StageKind.TRIM, TrimParams(params.trim)))
        pages = 1

    # 3. crop
    if any(v is not None for v in (params.crop_x, params.crop_y, params.crop_width, params.crop_height)):
        stages.append(Stage(StageKind.CROP, CropParams(
            params.crop_x, params.crop_y, params.crop_width, params.crop_height
        )))
        pages = 1
        if params.trim is None:
            _, _, width, height = resolve_crop_rectangle(
                width, height, params.crop_x, params.crop_y, params.crop_width, params.crop_height
            )

    # 4. thumbnail / 5. post_crop
    box_w = _scaled(params.width, params.dpr, config.max_width)
    box_h = _scaled(params.height, params.dpr, config.max_height)
    if box_w is not None or box_h is not None:
        stages.append(Stage(StageKind.THUMBNAIL, ThumbnailParams(
            box_w, box_h, params.fit, params.without_enlargement, params.kernel
        )))
        predicted = resolve_thumbnail_size(
            width, height, box_w, box_h, params.fit, params.without_enlargement
        )
        _check_output_pixels(predicted.width, predicted.height, pages, config)
        if params.fit is Fit.CONTAIN and box_w is not None and box_h is not None:
            _check_output_pixels(box_w, box_h, pages, config)
        if params.fit is Fit.COVER and box_w is not None and box_h is not None:
            if params.trim is not None or predicted.width > box_w or predicted.height > box_h:
                stages.append(Stage(StageKind.POST_CROP, PostCropParams(
                    box_w, box_h, params.anchor, params.focal_x, params.focal_y
                )))

    # 6. rotate
    if params.rotation or params.flip or params.flop:
        stages.append(Stage(StageKind.ROTATE, RotateParams(params.rotation, params.flip, params.flop)))

    # 7. embed, mask, background
    will_have_alpha = descriptor.has_alpha
    if params.fit is Fit.CONTAIN and box_w is not None and box_h is not None:
        embed_bg = params.background or (TRANSPARENT if alpha_output else WHITE)
        if not alpha_output and embed_bg[3] < 255:
            embed_bg = WHITE
        stages.append(Stage(StageKind.EMBED, EmbedParams(box_w, box_h, params.anchor, embed_bg)))
        will_have_alpha = will_have_alpha or embed_bg[3] < 255

    if params.mask is not None:
        mask_bg = params.mask_background or (TRANSPARENT if alpha_output else WHITE)
        if not alpha_output and mask_bg[3] < 255:
            mask_bg = WHITE
        stages.append(Stage(StageKind.MASK, MaskParams(params.mask, mask_bg, params.mask_trim)))
        will_have_alpha = will_have_alpha or mask_bg[3] < 255

    if params.background is not None and will_have_alpha:
        stages.append(Stage(StageKind.BACKGROUND, BackgroundParams(params.background)))

    # 8. adjustments
    if params.blur is not None:
        stages.append(Stage(StageKind.BLUR, SigmaParams(params.blur)))
    if params.sharpen is not None:
        stages.append(Stage(StageKind.SHARPEN, SigmaParams(params.sharpen)))
    if params.gamma is not None:
        stages.append(Stage(StageKind.GAMMA, ValueParams(params.gamma)))
    if params.brightness:
        stages.append(Stage(StageKind.BRIGHTNESS, ValueParams(params.brightness)))
    if params.contrast:
        stages.append(Stage(StageKind.CONTRAST, ValueParams(params.contrast)))
    if params.saturation is not None and params.saturation != 1.0:
        stages.append(Stage(StageKind.SATURATE, ValueParams(params.saturation)))
    if params.tint is not None:
        stages.append(Stage(StageKind.TINT, TintParams(params.tint)))
    if params.filter is not None:
        stages.append(Stage(StageKind.FILTER, FilterParams(
            params.filter, params.duotone_start, params.duotone_stop
        )))

    # 9. finalize
    flatten_bg = params.background if params.background is not None and params.background[3] == 255 else WHITE
    stages.append(Stage(StageKind.FINALIZE, FinalizeParams(output, flatten_bg)))

    plan = ProcessingPlan(tuple(stages), save)
    logger.debug(f"[Compiler] {output.value}: {' -> '.join(k.value for k in plan.kinds)}")
    return plan

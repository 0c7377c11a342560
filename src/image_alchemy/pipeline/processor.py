"""
流水线执行器
validate -> load -> compile -> stages -> encode -> write，所有失败在一个边界转换为 Status。
"""
import itertools
import threading
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from image_alchemy import engine
from image_alchemy.config import DEFAULT_CONFIG, Config
from image_alchemy.engine import LazyImage
from image_alchemy.enums import OutputFormat
from image_alchemy.errors import ImageAlchemyError, Status, StatusCode
from image_alchemy.file_io import BufferSource, BufferTarget, FileSource, FileTarget, encode
from image_alchemy.logger import create_logger
from image_alchemy.metadata import describe, report_json
from image_alchemy.pipeline import stages
from image_alchemy.pipeline.compiler import ProcessingPlan, compile_plan
from image_alchemy.pipeline.request import parse_query, validate
from image_alchemy.pipeline.stages import StageKind

STAGE_HANDLERS: Dict[StageKind, Callable[[LazyImage, object], LazyImage]] = {
    StageKind.ORIENTATION: stages.apply_orientation,
    StageKind.TRIM: stages.apply_trim,
    StageKind.CROP: stages.apply_crop,
    StageKind.THUMBNAIL: stages.apply_thumbnail,
    StageKind.POST_CROP: stages.apply_post_crop,
    StageKind.ROTATE: stages.apply_rotate,
    StageKind.EMBED: stages.apply_embed,
    StageKind.MASK: stages.apply_mask,
    StageKind.BACKGROUND: stages.apply_background,
    StageKind.BLUR: stages.apply_blur,
    StageKind.SHARPEN: stages.apply_sharpen,
    StageKind.GAMMA: stages.apply_gamma,
    StageKind.BRIGHTNESS: stages.apply_brightness,
    StageKind.CONTRAST: stages.apply_contrast,
    StageKind.SATURATE: stages.apply_saturate,
    StageKind.TINT: stages.apply_tint,
    StageKind.FILTER: stages.apply_filter,
    StageKind.FINALIZE: stages.apply_finalize,
}


class ImageProcessor:
    """
    Runs one request at a time per calling thread:
    validate -> load -> compile -> stages -> encode -> write.

    Instances hold no per-request state and may be shared between threads;
    engine state is thread-local and released at the end of every request.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or DEFAULT_CONFIG
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _next_id(self) -> str:
        with self._lock:
            return f"req-{next(self._ids)}"

    def _exception_handler(self, query: str, error: Exception) -> Status:
        """The single place where a failed request becomes a Status"""
        if isinstance(error, ImageAlchemyError):
            logger.error(f"[Processor] {type(error).__name__}: {error} (query: {query!r})")
            return Status.from_error(error.kind, str(error), query)
        logger.opt(exception=error).error(f"[Processor] Unexpected failure (query: {query!r})")
        return Status.from_error(StatusCode.UNKNOWN, f"Unknown error: {error}", query)

    def process(self, query: str, source, target) -> Status:
        """
        Process one request.

        Args:
            query: raw query string, e.g. "w=300&h=200&fit=cover"
            source: object with read() -> bytes
            target: object with write(bytes); written once, only on success
        """
        request_log = create_logger(self._next_id())
        try:
            with engine.request_scope(self.config):
                data = self._run(query, source, request_log)
            # engine state is already released when the target is written
            target.write(data)
        except Exception as e:
            return self._exception_handler(query, e)

        request_log.success(f"Done ({len(data)} bytes)")
        return Status.ok(query)

    def _run(self, query: str, source, request_log) -> bytes:
        params = validate(parse_query(query), self.config)
        request_log.debug(f"Query: {query!r}")

        with engine.stage_context("load"):
            image = engine.load(source.read(), params.pages, params.page, self.config)
        descriptor = describe(image)
        request_log.info(
            f"Loaded {descriptor.image_type.value} {descriptor.width}x{descriptor.height} "
            f"({descriptor.interpretation}, {descriptor.bands} bands)"
        )

        if params.output is OutputFormat.JSON:
            return report_json(descriptor)

        plan = compile_plan(params, descriptor, self.config)
        image = self.apply_plan(image, plan, request_log)
        with engine.stage_context("save"):
            return encode(image, plan.save, request_log)

    def apply_plan(self, image: LazyImage, plan: ProcessingPlan, request_log=None) -> LazyImage:
        for stage in plan.stages:
            with engine.stage_context(stage.kind.value):
                image = STAGE_HANDLERS[stage.kind](image, stage.params)
            if request_log is not None:
                request_log.debug(f"  {stage.kind.value}: {image.mode} {image.width}x{image.height}")
        return image

    def process_file(self, query: str, in_path: str, out_path: str) -> Status:
        return self.process(query, FileSource(in_path), FileTarget(out_path))

    def process_buffer(self, query: str, data: bytes) -> Tuple[Status, bytes]:
        target = BufferTarget()
        status = self.process(query, BufferSource(data), target)
        return status, target.data if status else b""


"""
Lazy image handle over Pillow.

A LazyImage knows its header (mode, size, pages and the source facts used
for reporting) as soon as it is created, but no pixels are computed until
realize() is called. Every operation returns a new handle that refers to its
parent; nothing is modified in place, so a chain of handles forms a single
linear computation from load to save.

Realised frames are memoised in a per-thread LRU cache which must be
released at the end of every request (see request_scope).

Multi-page images are kept as a list of equally sized frames; the header
exposes them as a vertical strip (height == page_height * n_pages).
"""
import itertools
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from io import BytesIO
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pillow_heif
from loguru import logger
from PIL import Image, ImageFilter, JpegImagePlugin

from image_alchemy import math_ops
from image_alchemy.config import DEFAULT_CONFIG, Config
from image_alchemy.enums import Kernel
from image_alchemy.errors import GeometryError, ImageAlchemyError, StageError
from image_alchemy.geometry import checked_mul
from image_alchemy.logger import install_engine_log_handler, remove_engine_log_handler
from image_alchemy.metadata import image_loader_supports_page
from image_alchemy.pipeline.cache_manager import ImageCacheManager

pillow_heif.register_heif_opener()

MODE_BANDS = {"L": 1, "LA": 2, "RGB": 3, "RGBA": 4, "I;16": 1}
ALPHA_MODES = {"L": "LA", "LA": "LA", "RGB": "RGBA", "RGBA": "RGBA", "I;16": "LA"}
OPAQUE_MODES = {"L": "L", "LA": "L", "RGB": "RGB", "RGBA": "RGB", "I;16": "I;16"}

RESAMPLE = {
    Kernel.NEAREST: Image.Resampling.NEAREST,
    Kernel.BOX: Image.Resampling.BOX,
    Kernel.LINEAR: Image.Resampling.BILINEAR,
    Kernel.HAMMING: Image.Resampling.HAMMING,
    Kernel.CUBIC: Image.Resampling.BICUBIC,
    Kernel.LANCZOS3: Image.Resampling.LANCZOS,
}

# clockwise angle -> Pillow transpose (Pillow rotates counter-clockwise)
_ROTATIONS = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

_SUBSAMPLING = {0: "4:4:4", 1: "4:2:2", 2: "4:2:0"}


@dataclass(frozen=True)
class ImageHeader:
    mode: str
    width: int
    page_height: int
    n_pages: int = 1
    loader: str = ""
    xres: float = 1.0  # pixels per millimetre
    icc_profile: Optional[bytes] = None
    orientation: int = 0
    source_pages: Optional[int] = None
    loop: Optional[int] = None
    delays: Optional[Tuple[int, ...]] = None
    palette_bit_depth: Optional[int] = None
    chroma_subsampling: Optional[str] = None
    progressive: bool = False
    primary_page: Optional[int] = None

    @property
    def height(self) -> int:
        return self.page_height * self.n_pages

    @property
    def bands(self) -> int:
        return MODE_BANDS[self.mode]

    @property
    def has_alpha(self) -> bool:
        return self.mode in ("LA", "RGBA")

    @property
    def interpretation(self) -> str:
        if self.mode == "I;16":
            return "grey16"
        return "b-w" if self.mode in ("L", "LA") else "srgb"

    @property
    def band_format(self) -> str:
        return "ushort" if self.mode == "I;16" else "uchar"


# =========================================================
# Thread-local engine state
# =========================================================

_local = threading.local()
_node_ids = itertools.count(1)


def thread_cache() -> ImageCacheManager:
    cache = getattr(_local, "cache", None)
    if cache is None:
        cache = ImageCacheManager(DEFAULT_CONFIG.cache_items, DEFAULT_CONFIG.cache_memory_mb)
        _local.cache = cache
    return cache


def current_stage() -> Optional[str]:
    return getattr(_local, "stage", None)


@contextmanager
def stage_context(name: str) -> Iterator[None]:
    """Label the nodes created inside the block so engine failures name their stage"""
    previous = current_stage()
    _local.stage = name
    try:
        yield
    finally:
        _local.stage = previous


def release_thread_state() -> None:
    cache = getattr(_local, "cache", None)
    if cache is not None:
        cache.clear()
    _local.cache = None
    _local.stage = None


@contextmanager
def request_scope(config: Optional[Config] = None) -> Iterator[None]:
    """
    Per-request engine state: installs the PIL log interceptor and a fresh
    realisation cache, and releases both on every exit path.
    """
    config = config or DEFAULT_CONFIG
    install_engine_log_handler()
    _local.cache = ImageCacheManager(config.cache_items, config.cache_memory_mb)
    try:
        yield
    finally:
        release_thread_state()
        remove_engine_log_handler()


# =========================================================
# Frame helpers
# =========================================================

def _max_value(mode: str) -> float:
    return 65535.0 if mode == "I;16" else 255.0


def _to_uint16(array: np.ndarray) -> Image.Image:
    return Image.fromarray(np.clip(np.rint(array), 0, 65535).astype(np.uint16))


def _to_uchar(frame: Image.Image) -> Image.Image:
    if frame.mode != "I;16":
        return frame
    array = np.asarray(frame).astype(np.uint16) >> 8
    return Image.fromarray(array.astype(np.uint8))


def convert_frame(frame: Image.Image, mode: str) -> Image.Image:
    if frame.mode == mode:
        return frame.copy()
    if mode == "I;16":
        return _to_uint16(np.asarray(frame, dtype=np.float64))
    if frame.mode == "I;16" or frame.mode.startswith("I;16") or frame.mode == "I":
        frame = _to_uchar(_to_uint16(np.asarray(frame, dtype=np.float64)))
    return frame.convert(mode)


def split_frame(frame: Image.Image) -> Tuple[np.ndarray, Optional[np.ndarray], float]:
    """(colour bands HxWxC, alpha HxW or None, max value) as float32"""
    array = np.asarray(frame, dtype=np.float32)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    if frame.mode in ("LA", "RGBA"):
        return array[:, :, :-1], array[:, :, -1], _max_value(frame.mode)
    return array, None, _max_value(frame.mode)


def join_frame(colour: np.ndarray, alpha: Optional[np.ndarray], max_value: float) -> Image.Image:
    bands = colour.shape[2]
    if max_value > 255 and bands == 1 and alpha is None:
        return _to_uint16(colour[:, :, 0])
    if max_value > 255:
        # Pillow has no 16-bit colour or 16-bit alpha modes
        colour = colour / 257.0
        if alpha is not None:
            alpha = alpha / 257.0
    if alpha is not None:
        colour = np.concatenate([colour, alpha[:, :, np.newaxis]], axis=2)
    array = np.clip(np.rint(colour), 0, 255).astype(np.uint8)
    if array.shape[2] == 1:
        array = array[:, :, 0]
    return Image.fromarray(array)


def result_mode(bands: int, has_alpha: bool, sixteen: bool) -> str:
    if bands == 1 and sixteen and not has_alpha:
        return "I;16"
    base = "L" if bands == 1 else "RGB"
    return ALPHA_MODES[base] if has_alpha else base


def fill_value(mode: str, rgba: Sequence[int]):
    """Pillow fill value for an RGBA colour in the given mode"""
    r, g, b, a = rgba
    if mode in ("L", "LA", "I;16"):
        grey = int(round(float(np.dot([r, g, b], math_ops.get_luminance_coeffs()))))
        if mode == "I;16":
            return grey * 257
        return grey if mode == "L" else (grey, a)
    return (r, g, b) if mode == "RGB" else (r, g, b, a)


def _resize_frame(frame: Image.Image, size: Tuple[int, int], resample) -> Image.Image:
    if frame.mode == "I;16":
        floating = Image.fromarray(np.asarray(frame, dtype=np.float32))
        return _to_uint16(np.asarray(floating.resize(size, resample)))
    return frame.resize(size, resample)


def _filter_frame(frame: Image.Image, image_filter) -> Image.Image:
    if frame.mode == "I;16":
        # Pillow kernels are 8-bit only, the result keeps the 16-bit container
        filtered = _to_uchar(frame).filter(image_filter)
        return _to_uint16(np.asarray(filtered, dtype=np.float32) * 257.0)
    return frame.filter(image_filter)


# =========================================================
# LazyImage
# =========================================================

class LazyImage:
    __slots__ = ("header", "_producer", "_op", "_key")

    def __init__(self, header: ImageHeader, producer: Callable[[], List[Image.Image]], op: str):
        self.header = header
        self._producer = producer
        self._op = current_stage() or op
        self._key = next(_node_ids)

    def __repr__(self) -> str:
        h = self.header
        return f"<LazyImage {h.mode} {h.width}x{h.height} pages={h.n_pages} op={self._op}>"

    @property
    def width(self) -> int:
        return self.header.width

    @property
    def height(self) -> int:
        return self.header.height

    @property
    def page_height(self) -> int:
        return self.header.page_height

    @property
    def n_pages(self) -> int:
        return self.header.n_pages

    @property
    def mode(self) -> str:
        return self.header.mode

    @property
    def has_alpha(self) -> bool:
        return self.header.has_alpha

    def realize(self) -> List[Image.Image]:
        cache = thread_cache()
        frames = cache.get(self._key)
        if frames is not None:
            return frames
        try:
            frames = self._producer()
        except ImageAlchemyError:
            raise
        except Exception as e:
            raise StageError(self._op, str(e)) from e
        cache.put(self._key, frames)
        return frames

    # ---------------- plumbing ----------------

    def _map(self, fn: Callable[[Image.Image], Image.Image], op: str, **changes) -> "LazyImage":
        parent = self

        def producer():
            return [fn(frame) for frame in parent.realize()]

        return LazyImage(replace(self.header, **changes), producer, op)

    def with_header(self, **changes) -> "LazyImage":
        """Header-only change, pixels are shared with the parent"""
        return LazyImage(replace(self.header, **changes), self.realize, "copy")

    # ---------------- geometry ----------------

    def crop(self, left: int, top: int, width: int, height: int) -> "LazyImage":
        """Extract an area of the first page. The result is always single-page."""
        if (left < 0 or top < 0 or width <= 0 or height <= 0
                or left + width > self.width or top + height > self.page_height):
            raise GeometryError(
                f"Crop area {width}x{height}+{left}+{top} is outside the "
                f"{self.width}x{self.page_height} image"
            )
        parent = self

        def producer():
            frame = parent.realize()[0]
            return [frame.crop((left, top, left + width, top + height))]

        changes = {"width": width, "page_height": height, "n_pages": 1}
        if self.n_pages > 1:
            changes.update(delays=None, loop=None)
        return LazyImage(replace(self.header, **changes), producer, "crop")

    def resize(self, width: int, page_height: int, kernel: Kernel = Kernel.LANCZOS3) -> "LazyImage":
        resample = RESAMPLE[kernel]
        size = (width, page_height)
        return self._map(lambda f: _resize_frame(f, size, resample), "resize",
                         width=width, page_height=page_height)

    def rotate(self, angle: int) -> "LazyImage":
        if angle == 0:
            return self
        method = _ROTATIONS[angle]
        changes = {}
        if angle in (90, 270):
            changes = {"width": self.page_height, "page_height": self.width}
        return self._map(lambda f: f.transpose(method), "rotate", **changes)

    def flip(self) -> "LazyImage":
        return self._map(lambda f: f.transpose(Image.Transpose.FLIP_TOP_BOTTOM), "flip")

    def flop(self) -> "LazyImage":
        return self._map(lambda f: f.transpose(Image.Transpose.FLIP_LEFT_RIGHT), "flop")

    def embed(self, left: int, top: int, width: int, height: int,
              background: Sequence[int]) -> "LazyImage":
        """Place every page at (left, top) on a width x height canvas"""
        checked_mul(width, checked_mul(height, self.n_pages))
        mode = self.mode
        if background[3] < 255:
            mode = ALPHA_MODES[mode]
        fill = fill_value(mode, background)

        def fn(frame):
            canvas = Image.new(mode, (width, height), fill)
            canvas.paste(convert_frame(frame, mode), (left, top))
            return canvas

        return self._map(fn, "embed", mode=mode, width=width, page_height=height)

    # ---------------- alpha ----------------

    def composite_background(self, background: Sequence[int]) -> "LazyImage":
        """
        Composite over a solid colour. An opaque colour removes the alpha band
        (flatten), a translucent one keeps it.
        """
        if not self.has_alpha:
            return self
        opaque = background[3] >= 255
        bg_alpha = background[3] / 255.0
        def fn(frame):
            colour, alpha, max_value = split_frame(frame)
            if colour.shape[2] == 1:
                bg = np.array([fill_value("L", background)], dtype=np.float32)
            else:
                bg = np.asarray(background[:3], dtype=np.float32)
            bg = bg * (max_value / 255.0)
            a = alpha / max_value
            out_alpha = a + bg_alpha * (1.0 - a)
            weight = np.where(out_alpha > 0, out_alpha, 1.0)[..., np.newaxis]
            blended = (colour * a[..., np.newaxis] + bg * bg_alpha * (1.0 - a[..., np.newaxis])) / weight
            return join_frame(blended, None if opaque else out_alpha * max_value, max_value)

        mode = OPAQUE_MODES[self.mode] if opaque else self.mode
        return self._map(fn, "flatten" if opaque else "composite", mode=mode)

    def flatten(self, background: Sequence[int]) -> "LazyImage":
        return self.composite_background((background[0], background[1], background[2], 255))

    def apply_mask(self, make_mask: Callable[[int, int], Image.Image],
                   background: Sequence[int]) -> "LazyImage":
        """Pixels outside the mask take the background colour"""
        mode = self.mode if background[3] >= 255 else ALPHA_MODES[self.mode]
        if mode == "I;16":
            mode = "L"
        fill = fill_value(mode, background)
        width, height = self.width, self.page_height
        parent = self

        def producer():
            mask = make_mask(width, height)
            result = []
            for frame in parent.realize():
                frame = convert_frame(frame, mode)
                result.append(Image.composite(frame, Image.new(mode, (width, height), fill), mask))
            return result

        return LazyImage(replace(self.header, mode=mode), producer, "mask")

    # ---------------- pixel kernels ----------------

    def map_pixels(self, kernel: Callable[[np.ndarray, float], np.ndarray], op: str,
                   out_bands: Optional[int] = None) -> "LazyImage":
        """Run a numpy kernel over the colour bands of every page, alpha untouched"""
        bands = MODE_BANDS[OPAQUE_MODES[self.mode]]
        mode = result_mode(out_bands or bands, self.has_alpha, self.mode == "I;16")

        def fn(frame):
            colour, alpha, max_value = split_frame(frame)
            return join_frame(kernel(colour, max_value), alpha, max_value)

        return self._map(fn, op, mode=mode)

    def filter(self, image_filter: ImageFilter.Filter, op: str) -> "LazyImage":
        return self._map(lambda f: _filter_frame(f, image_filter), op)

    def to_uchar(self) -> "LazyImage":
        if self.mode != "I;16":
            return self
        return self._map(_to_uchar, "cast", mode="L")

    # ---------------- eager ----------------

    def find_trim(self, threshold: int) -> Optional[Tuple[int, int, int, int]]:
        """
        Bounding box of the non-background area of the first page. This forces
        evaluation of the graph built so far.
        """
        frame = self.realize()[0]
        array = np.asarray(frame, dtype=np.float32)
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        scale = _max_value(frame.mode) / 255.0
        return math_ops.find_trim_box(array, threshold * scale)


# =========================================================
# Loading
# =========================================================

def _normalized_mode(image: Image.Image) -> str:
    mode = image.mode
    if mode in MODE_BANDS:
        return mode
    if mode == "1":
        return "L"
    if mode == "P":
        return "RGBA" if "transparency" in image.info else "RGB"
    if mode in ("PA", "RGBa"):
        return "RGBA"
    if mode == "La":
        return "LA"
    if mode == "I" or mode.startswith("I;16"):
        return "I;16"
    if mode == "F":
        return "L"
    return "RGB"


def _palette_bit_depth(image: Image.Image) -> Optional[int]:
    if image.mode not in ("P", "PA") or image.format not in ("PNG", "GIF"):
        return None
    palette = image.getpalette() or []
    colours = max(1, len(palette) // 3)
    for bits in (1, 2, 4, 8):
        if colours <= 1 << bits:
            return bits
    return 8


def _exif_orientation(image: Image.Image) -> int:
    try:
        value = image.getexif().get(0x0112, 0)
    except Exception as e:
        logger.warning(f"[Engine] Unreadable EXIF block, ignoring orientation: {e}")
        return 0
    try:
        return int(value) if 1 <= int(value) <= 8 else 0
    except (TypeError, ValueError):
        return 0


def _frame_facts(image: Image.Image, n_frames: int) -> Tuple[Optional[Tuple[int, ...]], Optional[int], List[Tuple[int, int]]]:
    """Per-frame delays (ms), the primary page index and every frame size"""
    delays, sizes, primary = [], [], None
    for index in range(n_frames):
        image.seek(index)
        sizes.append(image.size)
        if "duration" in image.info:
            delays.append(int(image.info["duration"]))
        if primary is None and image.info.get("primary"):
            primary = index
    image.seek(0)
    return (tuple(delays) if len(delays) == n_frames and n_frames > 1 else None), primary, sizes


def load(data: bytes, pages: int = 1, page: int = 0, config: Optional[Config] = None) -> LazyImage:
    """
    Open an encoded image. Only the header is parsed here; pixels are decoded
    when the returned handle (or one derived from it) is realised.

    Args:
        pages: number of pages to load, -1 for all remaining pages
        page: index of the first page
    """
    config = config or DEFAULT_CONFIG
    try:
        source = Image.open(BytesIO(data))
    except Image.DecompressionBombError as e:
        raise GeometryError(str(e)) from e
    except Exception as e:
        raise StageError(current_stage() or "load", f"Image not readable. Is it a valid image? ({e})") from e

    try:
        with source:
            loader = source.format or ""
            n_frames = getattr(source, "n_frames", 1)
            multi_page_loader = image_loader_supports_page(loader)

            if not multi_page_loader:
                page, count = 0, 1
            else:
                if page >= n_frames:
                    logger.debug(f"[Engine] Page {page} out of range, using last page {n_frames - 1}")
                    page = n_frames - 1
                count = n_frames - page if pages == -1 else min(pages, n_frames - page)

            delays, primary, sizes = _frame_facts(source, n_frames) if multi_page_loader else (None, None, [source.size])
            width, height = sizes[page]
            if count > 1 and any(size != (width, height) for size in sizes[page:page + count]):
                logger.warning(f"[Engine] {loader} pages differ in size, loading page {page} only")
                count = 1

            total = checked_mul(checked_mul(width, height), count)
            if total > config.max_pixels:
                raise GeometryError(
                    f"Input image exceeds pixel limit: {width}x{height}x{count} > {config.max_pixels}"
                )

            mode = _normalized_mode(source)
            dpi = source.info.get("dpi")
            xres = float(dpi[0]) / 25.4 if dpi and dpi[0] else 1.0

            chroma = None
            if loader in ("JPEG", "MPO"):
                chroma = _SUBSAMPLING.get(JpegImagePlugin.get_sampling(source))

            progressive = bool(
                source.info.get("progressive") or source.info.get("progression") or source.info.get("interlace")
            )

            header = ImageHeader(
                mode=mode,
                width=width,
                page_height=height,
                n_pages=count,
                loader=loader,
                xres=xres,
                icc_profile=source.info.get("icc_profile") or None,
                orientation=_exif_orientation(source),
                source_pages=n_frames if multi_page_loader else None,
                loop=source.info.get("loop") if multi_page_loader else None,
                delays=delays,
                palette_bit_depth=_palette_bit_depth(source),
                chroma_subsampling=chroma,
                progressive=progressive,
                primary_page=(primary if primary is not None else 0) if loader in ("HEIF", "AVIF") else None,
            )
    except ImageAlchemyError:
        raise
    except Exception as e:
        raise StageError(current_stage() or "load", f"Image header not readable. Is the file truncated? ({e})") from e

    first = page

    def producer():
        with Image.open(BytesIO(data)) as image:
            frames = []
            for index in range(first, first + count):
                if index:
                    image.seek(index)
                frames.append(convert_frame(image, mode))
            return frames

    logger.debug(f"[Engine] Loaded header {loader} {mode} {width}x{height} pages={count}")
    return LazyImage(header, producer, "load")

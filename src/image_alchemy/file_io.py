"""
文件输入输出模块
读取源图像字节，按输出格式编码，并写入目标
"""
import io
import os
from typing import BinaryIO, List, Optional

import numpy as np
import tifffile
from PIL import Image

from image_alchemy.engine import ImageHeader, LazyImage
from image_alchemy.enums import OutputFormat
from image_alchemy.errors import ImageAlchemyError, ImageIOError, StageError
from image_alchemy.logger import Logger, create_logger


# =========================================================
# Sources
# =========================================================

class FileSource:
    """从文件读取"""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> bytes:
        try:
            with open(self.path, "rb") as f:
                return f.read()
        except OSError as e:
            raise ImageIOError(f"Unable to read {self.path}: {e.strerror or e}") from e

    def __repr__(self) -> str:
        return f"FileSource({self.path!r})"


class BufferSource:
    """内存中的字节"""

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def read(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"BufferSource({len(self.data)} bytes)"


class StreamSource:
    """任意可读二进制流 (例如 stdin)"""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def read(self) -> bytes:
        try:
            return self.stream.read()
        except OSError as e:
            raise ImageIOError(f"Unable to read input stream: {e}") from e


# =========================================================
# Targets
# =========================================================

class FileTarget:
    def __init__(self, path: str):
        self.path = path

    def write(self, data: bytes) -> None:
        try:
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            with open(self.path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise ImageIOError(f"Unable to write {self.path}: {e.strerror or e}") from e

    def __repr__(self) -> str:
        return f"FileTarget({self.path!r})"


class BufferTarget:
    """结果保存在 .data 中"""

    def __init__(self):
        self.data = b""

    def write(self, data: bytes) -> None:
        self.data = bytes(data)


class StreamTarget:
    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def write(self, data: bytes) -> None:
        try:
            self.stream.write(data)
            self.stream.flush()
        except OSError as e:
            raise ImageIOError(f"Unable to write output stream: {e}") from e


# =========================================================
# Encoding
# =========================================================

def encode(image: LazyImage, options, logger: Optional[Logger] = None) -> bytes:
    """
    实际计算像素并编码为指定格式

    Args:
        image: 已经过 finalize 阶段的图像
        options: SaveOptions (输出格式、质量等)
        logger: 日志处理器

    Returns:
        bytes: 编码后的完整文件内容
    """
    if logger is None:
        logger = create_logger()

    frames = image.realize()
    header = image.header
    output = options.output

    try:
        if output is OutputFormat.TIFF:
            data = _save_tiff(frames, header, logger)
        elif output is OutputFormat.JPEG:
            data = _save_jpeg(frames[0], options, logger)
        elif output is OutputFormat.WEBP:
            data = _save_webp(frames, header, options, logger)
        elif output is OutputFormat.GIF:
            data = _save_gif(frames, header, options, logger)
        else:
            data = _save_png(frames[0], options, logger)
    except ImageAlchemyError:
        raise
    except Exception as e:
        raise StageError("save", f"Unable to encode {output.value}: {e}") from e

    logger.info(f"  ✅ Encoded {output.value} {header.width}x{header.height} ({len(data)} bytes)")
    return data


def _save_tiff(frames: List[Image.Image], header: ImageHeader, logger: Logger) -> bytes:
    """保存为 TIFF (8/16-bit, ZLIB)，多页图像写为多个 IFD"""
    depth = "16-bit" if header.mode == "I;16" else "8-bit"
    logger.debug(f"    Format: TIFF ({depth}, ZLIB, {len(frames)} page(s))")

    data = np.stack([np.asarray(frame) for frame in frames])
    if header.mode == "I;16":
        data = data.astype(np.uint16)
    if len(frames) == 1:
        data = data[0]

    kwargs = {}
    if header.mode in ("RGB", "RGBA"):
        kwargs["photometric"] = "rgb"
    else:
        kwargs["photometric"] = "minisblack"
    if header.has_alpha:
        kwargs["planarconfig"] = "contig"
        kwargs["extrasamples"] = ("unassalpha",)

    buffer = io.BytesIO()
    tifffile.imwrite(
        buffer,
        data,
        compression="zlib",
        predictor=2,  # 水平差分，提升压缩率
        compressionargs={"level": 8},
        **kwargs,
    )
    return buffer.getvalue()


def _save_jpeg(frame: Image.Image, options, logger: Logger) -> bytes:
    """保存为 8-bit JPEG"""
    logger.debug(f"    Format: JPEG (q={options.quality}, progressive={options.interlace})")
    buffer = io.BytesIO()
    frame.save(
        buffer,
        "JPEG",
        quality=options.quality,
        progressive=options.interlace,
        optimize=True,
    )
    return buffer.getvalue()


def _save_png(frame: Image.Image, options, logger: Logger) -> bytes:
    logger.debug(f"    Format: PNG (level={options.compression_level}, mode={frame.mode})")
    buffer = io.BytesIO()
    frame.save(buffer, "PNG", compress_level=options.compression_level)
    return buffer.getvalue()


def _animation_args(frames: List[Image.Image], header: ImageHeader) -> dict:
    if len(frames) == 1:
        return {}
    args = {"save_all": True, "append_images": frames[1:], "loop": header.loop or 0}
    if header.delays and len(header.delays) >= len(frames):
        args["duration"] = list(header.delays[:len(frames)])
    return args


def _save_webp(frames: List[Image.Image], header: ImageHeader, options, logger: Logger) -> bytes:
    logger.debug(f"    Format: WEBP (q={options.quality}, lossless={options.lossless}, {len(frames)} frame(s))")
    # WebP 只接受 RGB / RGBA
    frames = [frame.convert("RGBA" if frame.mode in ("LA", "RGBA") else "RGB") for frame in frames]
    buffer = io.BytesIO()
    frames[0].save(
        buffer,
        "WEBP",
        quality=options.quality,
        lossless=options.lossless,
        **_animation_args(frames, header),
    )
    return buffer.getvalue()


def _save_gif(frames: List[Image.Image], header: ImageHeader, options, logger: Logger) -> bytes:
    logger.debug(f"    Format: GIF (interlace={options.interlace}, {len(frames)} frame(s))")
    buffer = io.BytesIO()
    frames[0].save(
        buffer,
        "GIF",
        interlace=options.interlace,
        **_animation_args(frames, header),
    )
    return buffer.getvalue()

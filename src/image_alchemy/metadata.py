"""
图像元数据解析
从 LazyImage 的头信息推导描述符，并生成 output=json 的报告
"""
import json
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from image_alchemy.enums import ImageType, OutputFormat

# Pillow format name -> image type
_LOADER_TYPES = {
    "JPEG": ImageType.JPEG,
    "MPO": ImageType.JPEG,
    "PNG": ImageType.PNG,
    "WEBP": ImageType.WEBP,
    "TIFF": ImageType.TIFF,
    "GIF": ImageType.GIF,
    "HEIF": ImageType.HEIF,
    "AVIF": ImageType.HEIF,
}

_PAGE_LOADERS = frozenset({"GIF", "TIFF", "WEBP", "HEIF", "AVIF", "PDF"})

_ALPHA_FORMATS = frozenset({"png", "webp", "tiff", "gif"})

_OUTPUTS = {
    ImageType.JPEG: OutputFormat.JPEG,
    ImageType.WEBP: OutputFormat.WEBP,
    ImageType.TIFF: OutputFormat.TIFF,
    ImageType.GIF: OutputFormat.GIF,
}


def determine_image_type(loader: str) -> ImageType:
    return _LOADER_TYPES.get((loader or "").upper(), ImageType.UNKNOWN)


def image_loader_supports_page(loader: str) -> bool:
    return (loader or "").upper() in _PAGE_LOADERS


def support_alpha_channel(image_type: Union[ImageType, OutputFormat]) -> bool:
    return image_type.value in _ALPHA_FORMATS


def is_16_bit(interpretation: str) -> bool:
    return interpretation in ("rgb16", "grey16")


def maximum_image_alpha(interpretation: str) -> int:
    return 65535 if is_16_bit(interpretation) else 255


def to_output(image_type: ImageType) -> OutputFormat:
    """Output format for a source type; anything without an encoder becomes PNG"""
    return _OUTPUTS.get(image_type, OutputFormat.PNG)


def determine_image_extension(output: OutputFormat) -> str:
    if output is OutputFormat.JSON:
        return ".json"
    return f".{output.value}"


@dataclass(frozen=True)
class ImageDescriptor:
    width: int
    height: int
    bands: int
    band_format: str
    interpretation: str
    has_alpha: bool
    has_icc: bool
    xres: float
    loader: str
    image_type: ImageType
    orientation: int = 0
    pages: Optional[int] = None
    page_height: Optional[int] = None
    loop: Optional[int] = None
    delays: Optional[Tuple[int, ...]] = None
    palette_bit_depth: Optional[int] = None
    chroma_subsampling: Optional[str] = None
    progressive: bool = False
    primary_page: Optional[int] = None

    @property
    def supports_pages(self) -> bool:
        return image_loader_supports_page(self.loader)

    @property
    def is_16_bit(self) -> bool:
        return is_16_bit(self.interpretation)


def describe(image) -> ImageDescriptor:
    """Snapshot of the live handle's header. Call again after every stage that changes it."""
    header = image.header
    return ImageDescriptor(
        width=header.width,
        height=header.height,
        bands=header.bands,
        band_format=header.band_format,
        interpretation=header.interpretation,
        has_alpha=header.has_alpha,
        has_icc=header.icc_profile is not None,
        xres=header.xres,
        loader=header.loader,
        image_type=determine_image_type(header.loader),
        orientation=header.orientation,
        pages=header.source_pages,
        page_height=header.page_height if header.n_pages > 1 else None,
        loop=header.loop,
        delays=header.delays,
        palette_bit_depth=header.palette_bit_depth,
        chroma_subsampling=header.chroma_subsampling,
        progressive=header.progressive,
        primary_page=header.primary_page,
    )


def to_report(descriptor: ImageDescriptor) -> dict:
    """
    JSON-ready summary of an image.

    Optional keys (density, chromaSubsampling, paletteBitDepth, pages,
    pageHeight, loop, delay, pagePrimary) are present only when known.
    """
    report = {
        "format": descriptor.image_type.value,
        "width": descriptor.width,
        "height": descriptor.height,
        "space": descriptor.interpretation,
        "channels": descriptor.bands,
        "depth": descriptor.band_format,
    }
    if descriptor.xres > 1.0:
        report["density"] = int(round(descriptor.xres * 25.4))
    if descriptor.chroma_subsampling is not None:
        report["chromaSubsampling"] = descriptor.chroma_subsampling
    report["isProgressive"] = descriptor.progressive
    if descriptor.palette_bit_depth is not None:
        report["paletteBitDepth"] = descriptor.palette_bit_depth
    if descriptor.pages is not None:
        report["pages"] = descriptor.pages
    if descriptor.page_height is not None:
        report["pageHeight"] = descriptor.page_height
    if descriptor.loop is not None:
        report["loop"] = descriptor.loop
    if descriptor.delays is not None:
        report["delay"] = list(descriptor.delays)
    if descriptor.primary_page is not None:
        report["pagePrimary"] = descriptor.primary_page
    report["hasProfile"] = descriptor.has_icc
    report["hasAlpha"] = descriptor.has_alpha
    report["orientation"] = descriptor.orientation
    return report


def report_json(descriptor: ImageDescriptor) -> bytes:
    return json.dumps(to_report(descriptor), separators=(",", ":")).encode("utf-8")

from enum import Enum


class ImageType(Enum):
    """Source formats recognised from the loader identity"""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    TIFF = "tiff"
    GIF = "gif"
    SVG = "svg"
    PDF = "pdf"
    HEIF = "heif"
    MAGICK = "magick"
    UNKNOWN = "unknown"


class OutputFormat(Enum):
    JPEG = "jpg"
    PNG = "png"
    GIF = "gif"
    TIFF = "tiff"
    WEBP = "webp"
    JSON = "json"


class Fit(Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"
    COVER = "cover"
    FILL = "fill"
    CONTAIN = "contain"


class Anchor(Enum):
    CENTER = "center"
    TOP = "top"
    RIGHT = "right"
    BOTTOM = "bottom"
    LEFT = "left"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    FOCAL = "focal"


class Kernel(Enum):
    NEAREST = "nearest"
    BOX = "box"
    LINEAR = "linear"
    HAMMING = "hamming"
    CUBIC = "cubic"
    LANCZOS3 = "lanczos3"


class FilterType(Enum):
    GREYSCALE = "greyscale"
    SEPIA = "sepia"
    DUOTONE = "duotone"
    NEGATE = "negate"


class MaskShape(Enum):
    CIRCLE = "circle"
    ELLIPSE = "ellipse"
    TRIANGLE = "triangle"
    TRIANGLE_180 = "triangle-180"
    PENTAGON = "pentagon"
    PENTAGON_180 = "pentagon-180"
    HEXAGON = "hexagon"
    SQUARE = "square"
    STAR = "star"
    HEART = "heart"

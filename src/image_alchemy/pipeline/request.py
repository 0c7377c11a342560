"""
Query string -> ProcessorParams.

Every recognised key has one of three policies:

    CLAMP   out-of-range numbers are clamped, unparseable values are ignored
    IGNORE  unparseable or unknown values are ignored (field keeps its default)
    REJECT  unparseable or out-of-domain values raise ValidationError

Unknown keys are ignored. The resulting ProcessorParams is immutable and
to_query() gives back a canonical query that validates to an equal value.
"""
import math
import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import quote, unquote_plus

from loguru import logger
from PIL import ImageColor

from image_alchemy.config import DEFAULT_CONFIG, DEFAULT_DUOTONE_START, DEFAULT_DUOTONE_STOP, Config
from image_alchemy.enums import Anchor, FilterType, Fit, Kernel, MaskShape, OutputFormat
from image_alchemy.errors import ValidationError
from image_alchemy.geometry import snap_angle

Color = Tuple[int, int, int, int]

DEFAULT_TRIM = 10
DEFAULT_GAMMA = 2.2
MILD = 0.0  # blur / sharpen without a sigma

_ABSENT = object()

_TRUE = frozenset({"", "1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})

_HEX_COLOR = re.compile(r"^[0-9a-f]{3,4}$|^[0-9a-f]{6}$|^[0-9a-f]{8}$")

_ANCHOR_ALIASES = {
    "centre": Anchor.CENTER,
    "t": Anchor.TOP,
    "r": Anchor.RIGHT,
    "b": Anchor.BOTTOM,
    "l": Anchor.LEFT,
    "north": Anchor.TOP,
    "east": Anchor.RIGHT,
    "south": Anchor.BOTTOM,
    "west": Anchor.LEFT,
    "northeast": Anchor.TOP_RIGHT,
    "northwest": Anchor.TOP_LEFT,
    "southeast": Anchor.BOTTOM_RIGHT,
    "southwest": Anchor.BOTTOM_LEFT,
    "left-top": Anchor.TOP_LEFT,
    "right-top": Anchor.TOP_RIGHT,
    "left-bottom": Anchor.BOTTOM_LEFT,
    "right-bottom": Anchor.BOTTOM_RIGHT,
}

# legacy t= values -> (fit, implied without_enlargement)
_LEGACY_FIT = {
    "fit": (Fit.INSIDE, False),
    "fitup": (Fit.INSIDE, False),
    "square": (Fit.COVER, False),
    "squaredown": (Fit.COVER, True),
    "absolute": (Fit.FILL, False),
    "letterbox": (Fit.CONTAIN, False),
}

_FILTER_ALIASES = {"grayscale": FilterType.GREYSCALE}
_OUTPUT_ALIASES = {"jpeg": OutputFormat.JPEG, "tif": OutputFormat.TIFF}


@dataclass(frozen=True)
class ProcessorParams:
    """Validated processing parameters for one request"""
    # Thumbnail
    width: Optional[int] = None
    height: Optional[int] = None
    dpr: float = 1.0
    fit: Fit = Fit.INSIDE
    without_enlargement: bool = False
    anchor: Anchor = Anchor.CENTER
    focal_x: int = 50
    focal_y: int = 50
    kernel: Kernel = Kernel.LANCZOS3

    # Crop & trim
    crop_x: Optional[int] = None
    crop_y: Optional[int] = None
    crop_width: Optional[int] = None
    crop_height: Optional[int] = None
    trim: Optional[int] = None

    # Orientation
    auto_orient: bool = True
    rotation: int = 0
    flip: bool = False
    flop: bool = False

    # Background & mask
    background: Optional[Color] = None
    mask: Optional[MaskShape] = None
    mask_trim: bool = False
    mask_background: Optional[Color] = None

    # Adjustments
    blur: Optional[float] = None
    sharpen: Optional[float] = None
    gamma: Optional[float] = None
    brightness: Optional[int] = None
    contrast: Optional[int] = None
    saturation: Optional[float] = None
    tint: Optional[Color] = None
    filter: Optional[FilterType] = None
    duotone_start: Color = DEFAULT_DUOTONE_START
    duotone_stop: Color = DEFAULT_DUOTONE_STOP

    # Output
    quality: int = 85
    output: Optional[OutputFormat] = None
    interlace: bool = False
    compression_level: int = 6
    lossless: bool = False

    # Pages
    pages: int = 1
    page: int = 0


# =========================================================
# Query parsing
# =========================================================

def parse_query(query: str) -> Dict[str, str]:
    """
    Split a raw query string into a dict. Keys are lower-cased and the last
    occurrence of a repeated key wins; undecodable pairs are dropped.
    """
    result: Dict[str, str] = {}
    if not query:
        return result
    for pair in query.lstrip("?").split("&"):
        if not pair:
            continue
        raw_key, _, raw_value = pair.partition("=")
        try:
            key = unquote_plus(raw_key, encoding="utf-8", errors="strict")
            value = unquote_plus(raw_value, encoding="utf-8", errors="strict")
        except UnicodeDecodeError:
            logger.debug(f"[Request] Dropping undecodable pair {pair!r}")
            continue
        if not key or not key.isascii():
            continue
        result[key.lower()] = value
    return result


# =========================================================
# Value parsers
# =========================================================

def _to_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _to_float(value: str) -> Optional[float]:
    try:
        number = float(value.strip())
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _clamp(value, low, high):
    return max(low, min(high, value))


def parse_bool(value: str):
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return _ABSENT


def parse_color(value: str):
    """CSS names, 'transparent' and hex (#)rgb(a) / (#)rrggbb(aa) -> RGBA tuple"""
    text = value.strip().lower()
    if text == "transparent":
        return (0, 0, 0, 0)
    if _HEX_COLOR.match(text):
        text = "#" + text
    try:
        rgb = ImageColor.getrgb(text)
    except ValueError:
        return _ABSENT
    if len(rgb) == 3:
        return (rgb[0], rgb[1], rgb[2], 255)
    return tuple(rgb)


def _enum(enum_cls, aliases=None):
    aliases = aliases or {}

    def parse(value: str, config: Config):
        text = value.strip().lower()
        if text in aliases:
            return aliases[text]
        try:
            return enum_cls(text)
        except ValueError:
            return _ABSENT
    return parse


def _bool(value: str, config: Config):
    return parse_bool(value)


def _color(value: str, config: Config):
    return parse_color(value)


def _clamped_int(low: int, high: int):
    def parse(value: str, config: Config):
        number = _to_int(value)
        return _ABSENT if number is None else _clamp(number, low, high)
    return parse


def _clamped_float(low: float, high: float, flag_value=_ABSENT):
    """flag_value is used for an empty/true value (e.g. blur= for a mild blur)"""
    def parse(value: str, config: Config):
        if flag_value is not _ABSENT and value.strip().lower() in ("", "true"):
            return flag_value
        number = _to_float(value)
        return _ABSENT if number is None else float(_clamp(number, low, high))
    return parse


def _size(limit_attr: str):
    def parse(value: str, config: Config):
        number = _to_int(value)
        if number is None:
            return _ABSENT
        if number <= 0:
            return None  # auto
        return min(number, getattr(config, limit_attr))
    return parse


def _trim(value: str, config: Config):
    if value.strip().lower() in ("", "true"):
        return DEFAULT_TRIM
    number = _to_int(value)
    return _ABSENT if number is None else _clamp(number, 1, 254)


def _rotation(value: str, config: Config):
    number = _to_float(value)
    if number is None or math.isinf(number):
        return _ABSENT
    return snap_angle(number)


def _pages(value: str, config: Config):
    number = _to_int(value)
    if number is None:
        return _ABSENT
    if number == -1:
        return -1
    return _clamp(number, 1, config.max_pages)


def _page(value: str, config: Config):
    number = _to_int(value)
    return _ABSENT if number is None else _clamp(number, 0, config.max_pages - 1)


def _rejecting_int(key: str, minimum: int):
    def parse(value: str, config: Config):
        number = _to_int(value)
        if number is None:
            raise ValidationError(key, f"{value!r} is not an integer")
        if number < minimum:
            raise ValidationError(key, f"{number} is below the minimum of {minimum}")
        return number
    return parse


# key -> (field, parser); see the module docstring for the policies
_FIELDS: Dict[str, Tuple[str, Callable]] = {
    "w": ("width", _size("max_width")),                          # CLAMP
    "h": ("height", _size("max_height")),                        # CLAMP
    "dpr": ("dpr", _clamped_float(1.0, 8.0)),                    # CLAMP
    "fit": ("fit", _enum(Fit)),                                  # IGNORE
    "we": ("without_enlargement", _bool),                        # IGNORE
    "a": ("anchor", _enum(Anchor, _ANCHOR_ALIASES)),             # IGNORE
    "fpx": ("focal_x", _clamped_int(0, 100)),                    # CLAMP
    "fpy": ("focal_y", _clamped_int(0, 100)),                    # CLAMP
    "kernel": ("kernel", _enum(Kernel)),                         # IGNORE
    "cx": ("crop_x", _rejecting_int("cx", 0)),                   # REJECT
    "cy": ("crop_y", _rejecting_int("cy", 0)),                   # REJECT
    "cw": ("crop_width", _rejecting_int("cw", 1)),               # REJECT
    "ch": ("crop_height", _rejecting_int("ch", 1)),              # REJECT
    "trim": ("trim", _trim),                                     # CLAMP
    "ao": ("auto_orient", _bool),                                # IGNORE
    "ro": ("rotation", _rotation),                               # IGNORE
    "flip": ("flip", _bool),                                     # IGNORE
    "flop": ("flop", _bool),                                     # IGNORE
    "bg": ("background", _color),                                # IGNORE
    "mask": ("mask", _enum(MaskShape)),                          # IGNORE
    "mtrim": ("mask_trim", _bool),                               # IGNORE
    "mbg": ("mask_background", _color),                          # IGNORE
    "blur": ("blur", _clamped_float(0.3, 1000.0, MILD)),         # CLAMP
    "sharp": ("sharpen", _clamped_float(0.000001, 10.0, MILD)),  # CLAMP
    "gam": ("gamma", _clamped_float(1.0, 3.0, DEFAULT_GAMMA)),   # CLAMP
    "bri": ("brightness", _clamped_int(-100, 100)),              # CLAMP
    "con": ("contrast", _clamped_int(-100, 100)),                # CLAMP
    "sat": ("saturation", _clamped_float(0.0, 10.0)),            # CLAMP
    "tint": ("tint", _color),                                    # IGNORE
    "filt": ("filter", _enum(FilterType, _FILTER_ALIASES)),      # IGNORE
    "start": ("duotone_start", _color),                          # IGNORE
    "stop": ("duotone_stop", _color),                            # IGNORE
    "q": ("quality", _clamped_int(1, 100)),                      # CLAMP
    "output": ("output", _enum(OutputFormat, _OUTPUT_ALIASES)),  # IGNORE
    "il": ("interlace", _bool),                                  # IGNORE
    "l": ("compression_level", _clamped_int(0, 9)),              # CLAMP
    "ll": ("lossless", _bool),                                   # IGNORE
    "n": ("pages", _pages),                                      # CLAMP
    "page": ("page", _page),                                     # CLAMP
}


def validate(query: Mapping[str, str], config: Optional[Config] = None) -> ProcessorParams:
    """
    Build a ProcessorParams from a parsed query.

    Raises:
        ValidationError: a REJECT field has an unacceptable value
    """
    config = config or DEFAULT_CONFIG
    values = {"quality": config.default_quality}

    for key, raw in query.items():
        entry = _FIELDS.get(key)
        if entry is None:
            continue
        attr, parser = entry
        value = parser(raw, config)
        if value is _ABSENT:
            logger.debug(f"[Request] Ignoring {key}={raw!r}")
            continue
        values[attr] = value

    if "fit" not in values and "t" in query:
        legacy = _LEGACY_FIT.get(query["t"].strip().lower())
        if legacy is not None:
            values["fit"] = legacy[0]
            if legacy[1]:
                values.setdefault("without_enlargement", True)

    return ProcessorParams(**values)


# =========================================================
# Serialisation
# =========================================================

def _format_float(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


def format_color(color: Color) -> str:
    r, g, b, a = color
    if a == 255:
        return f"{r:02x}{g:02x}{b:02x}"
    return f"{r:02x}{g:02x}{b:02x}{a:02x}"


def _format_value(attr: str, value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return value.value
    if attr in ("background", "mask_background", "tint", "duotone_start", "duotone_stop"):
        return format_color(value)
    if attr in ("blur", "sharpen") and value == MILD:
        return ""
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


_KEYS = {attr: key for key, (attr, _) in _FIELDS.items()}


def to_query(params: ProcessorParams, config: Optional[Config] = None) -> str:
    """Canonical query string holding every non-default field"""
    config = config or DEFAULT_CONFIG
    defaults = ProcessorParams(quality=config.default_quality)
    parts = []
    for f in fields(ProcessorParams):
        value = getattr(params, f.name)
        if value == getattr(defaults, f.name):
            continue
        parts.append(f"{_KEYS[f.name]}={quote(_format_value(f.name, value), safe='')}")
    return "&".join(parts)

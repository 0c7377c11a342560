import pytest

from image_alchemy.config import Config
from image_alchemy.enums import Anchor, FilterType, Fit, Kernel, MaskShape, OutputFormat
from image_alchemy.errors import ValidationError
from image_alchemy.pipeline.request import (
    ProcessorParams,
    parse_color,
    parse_query,
    to_query,
    validate,
)


def params(query: str, config=None) -> ProcessorParams:
    return validate(parse_query(query), config)


def test_parse_query_lowercases_and_last_wins():
    assert parse_query("W=10&w=20&FIT=cover") == {"w": "20", "fit": "cover"}


def test_parse_query_decoding():
    assert parse_query("bg=%23ff0000&a=top+left&flip") == {"bg": "#ff0000", "a": "top left", "flip": ""}


def test_parse_query_drops_undecodable_pairs():
    assert parse_query("a=%ff&w=5") == {"w": "5"}
    assert parse_query("") == {}
    assert parse_query("&&w=5&") == {"w": "5"}


def test_defaults():
    p = params("")
    assert p == ProcessorParams()
    assert p.fit is Fit.INSIDE
    assert p.quality == 85
    assert p.auto_orient


def test_unknown_keys_are_ignored():
    assert params("foo=bar&url=example.org/a.jpg") == ProcessorParams()


def test_quality_is_clamped():
    assert params("q=500").quality == 100
    assert params("q=0").quality == 1
    assert params("q=abc").quality == 85


def test_default_quality_from_config():
    assert params("", Config(default_quality=70)).quality == 70


def test_sizes():
    assert params("w=0&h=-5").width is None
    assert params("w=99999").width == 16383
    assert params("w=300&h=200") == ProcessorParams(width=300, height=200)
    assert params("w=abc").width is None
    assert params("dpr=20").dpr == 8.0


@pytest.mark.parametrize("query", ["cx=-1", "cy=abc", "cw=0", "ch=-3", "cw=1.5"])
def test_crop_values_are_rejected(query):
    with pytest.raises(ValidationError) as excinfo:
        params(query)
    assert excinfo.value.key == query.split("=")[0]


def test_crop_values():
    p = params("cx=10&cy=20&cw=30&ch=40")
    assert (p.crop_x, p.crop_y, p.crop_width, p.crop_height) == (10, 20, 30, 40)


def test_enums_and_aliases():
    p = params("fit=COVER&a=northeast&kernel=nearest&filt=grayscale&output=jpeg&mask=triangle-180")
    assert p.fit is Fit.COVER
    assert p.anchor is Anchor.TOP_RIGHT
    assert p.kernel is Kernel.NEAREST
    assert p.filter is FilterType.GREYSCALE
    assert p.output is OutputFormat.JPEG
    assert p.mask is MaskShape.TRIANGLE_180
    assert params("output=tif").output is OutputFormat.TIFF
    assert params("fit=stretch").fit is Fit.INSIDE


def test_legacy_fit_alias():
    p = params("t=squaredown")
    assert p.fit is Fit.COVER and p.without_enlargement
    assert params("t=letterbox").fit is Fit.CONTAIN
    assert params("fit=fill&t=square").fit is Fit.FILL
    assert not params("t=squaredown&we=false").without_enlargement


def test_booleans():
    assert params("flip&flop=yes").flip
    assert params("flip&flop=yes").flop
    assert not params("ao=0").auto_orient
    assert params("ao=maybe").auto_orient


def test_flags_with_default_values():
    assert params("trim").trim == 10
    assert params("trim=300").trim == 254
    assert params("blur").blur == 0.0
    assert params("blur=0.1").blur == 0.3
    assert params("sharp=true").sharpen == 0.0
    assert params("gam").gamma == 2.2
    assert params("gam=5").gamma == 3.0


def test_rotation_snaps():
    assert params("ro=45").rotation == 90
    assert params("ro=-90").rotation == 270
    assert params("ro=400").rotation == 0
    assert params("ro=abc").rotation == 0


def test_pages():
    assert params("n=-1").pages == -1
    assert params("n=0").pages == 1
    assert params("n=1000").pages == 256
    assert params("page=999").page == 255


def test_colors():
    assert parse_color("transparent") == (0, 0, 0, 0)
    assert parse_color("f00") == (255, 0, 0, 255)
    assert parse_color("#ff000080") == (255, 0, 0, 128)
    assert parse_color("red") == (255, 0, 0, 255)
    assert params("bg=zzz").background is None
    assert params("bg=00ff00").background == (0, 255, 0, 255)


def test_to_query_of_defaults_is_empty():
    assert to_query(ProcessorParams()) == ""


@pytest.mark.parametrize("query", [
    "w=300&h=200&fit=cover&a=focal&fpx=30&fpy=70",
    "bg=ff000080&mbg=transparent&mask=heart&mtrim=1",
    "blur=&sharp=2.5&gam=&bri=-20&con=30&sat=0&tint=00ff00&filt=duotone&start=red&stop=blue",
    "t=squaredown&w=50&dpr=2.5",
    "q=500&output=tif&il=true&l=9&ll=1&n=-1&page=3&ro=-90&flip&flop&ao=0&trim&kernel=nearest",
    "cx=1&cy=2&cw=3&ch=4&sharp=0",
    "w=0&h=99999&we=1&fit=contain&a=bottom-left",
])
def test_validate_is_idempotent(query):
    p = params(query)
    assert params(to_query(p)) == p

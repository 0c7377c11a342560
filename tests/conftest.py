import io

import numpy as np
import pytest
from PIL import Image

from image_alchemy import engine


def encode_image(image: Image.Image, fmt: str, **kwargs) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, fmt, **kwargs)
    return buffer.getvalue()


def gradient(width: int, height: int) -> Image.Image:
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[:, :, 0] = np.linspace(0, 255, width, dtype=np.uint8)[np.newaxis, :]
    pixels[:, :, 1] = np.linspace(0, 255, height, dtype=np.uint8)[:, np.newaxis]
    pixels[:, :, 2] = 128
    return Image.fromarray(pixels)


@pytest.fixture(autouse=True)
def clean_engine_state():
    yield
    engine.release_thread_state()


@pytest.fixture
def jpeg_400x200() -> bytes:
    return encode_image(gradient(400, 200), "JPEG", quality=90)


@pytest.fixture
def png_400x200() -> bytes:
    return encode_image(gradient(400, 200), "PNG")


@pytest.fixture
def rgba_png() -> bytes:
    """100x100, semi-transparent red"""
    return encode_image(Image.new("RGBA", (100, 100), (200, 50, 50, 128)), "PNG")


@pytest.fixture
def trim_png() -> bytes:
    """White 100x100 with a black 20x30 block at (20, 30)"""
    image = Image.new("RGB", (100, 100), (255, 255, 255))
    image.paste((0, 0, 0), (20, 30, 40, 60))
    return encode_image(image, "PNG")


@pytest.fixture
def grey16_png() -> bytes:
    array = np.linspace(0, 65535, 64 * 32).reshape(32, 64).astype(np.uint16)
    return encode_image(Image.fromarray(array), "PNG")


@pytest.fixture
def animated_gif() -> bytes:
    """Three distinct 40x30 frames, delays 100/200/300 ms, looping forever"""
    frames = [
        Image.new("RGB", (40, 30), (255, 0, 0)),
        Image.new("RGB", (40, 30), (0, 255, 0)),
        Image.new("RGB", (40, 30), (0, 0, 255)),
    ]
    return encode_image(
        frames[0], "GIF", save_all=True, append_images=frames[1:], duration=[100, 200, 300], loop=0
    )


def open_bytes(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image

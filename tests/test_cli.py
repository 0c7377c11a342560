import sys

import pytest
from loguru import logger

from conftest import open_bytes
from image_alchemy.main import main


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch):
    for name in ("IMAGE_ALCHEMY_LOG_FILE", "IMAGE_ALCHEMY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_cli_writes_output(tmp_path, png_400x200):
    source = tmp_path / "in.png"
    source.write_bytes(png_400x200)
    out = tmp_path / "out.jpg"
    assert main(["w=100&output=jpg", str(source), str(out), "--log-level", "ERROR"]) == 0
    image = open_bytes(out.read_bytes())
    assert image.format == "JPEG"
    assert image.size == (100, 50)


def test_cli_reports_failures(tmp_path, png_400x200, capsys):
    source = tmp_path / "in.png"
    source.write_bytes(png_400x200)
    out = tmp_path / "out.png"
    assert main(["cx=-1", str(source), str(out), "--log-level", "ERROR"]) == 1
    assert "image-alchemy: validation:" in capsys.readouterr().err
    assert not out.exists()

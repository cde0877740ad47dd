import io

import pytest
import zxingcpp
from PIL import Image

from session_gateway.qr import render_png


def decode(png: bytes) -> list[str]:
    return [result.text for result in zxingcpp.read_barcodes(Image.open(io.BytesIO(png)))]


class TestRenderPng:
    @pytest.mark.parametrize("code", [
        "2@ABC",
        "2@" + "Zk9xQ1c3dGhlY29kZQ==," * 10 + "end",
    ])
    def test_decodes_back_to_code(self, code):
        assert decode(render_png(code)) == [code]

    def test_size(self):
        img = Image.open(io.BytesIO(render_png("2@ABC")))
        assert img.format == "PNG"
        assert img.size == (256, 256)

    def test_custom_size(self):
        img = Image.open(io.BytesIO(render_png("2@ABC", size=512)))
        assert img.size == (512, 512)
        assert decode(render_png("2@ABC", size=512)) == ["2@ABC"]

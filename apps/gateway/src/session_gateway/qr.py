import io

import qrcode
from PIL import Image

DEFAULT_QR_SIZE = 256


def render_png(code: str, size: int = DEFAULT_QR_SIZE) -> bytes:
    """Encode `code` as a size x size PNG QR image with medium error correction."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=4,
    )
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").get_image()
    img = img.convert("L").resize((size, size), Image.Resampling.NEAREST)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

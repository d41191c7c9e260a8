"""
QR code images for pallet labels and load-list links.

Label QR codes are printed without a quiet zone because the label frame
provides it; screen QR codes get a one-module border.
"""

import base64
import io
from typing import Optional

import qrcode
from qrcode.image.pil import PilImage
from PIL import Image


def make_qr_image(data: str, size_px: Optional[int] = None, border: int = 0) -> Image.Image:
    """
    Encode ``data`` as a black-on-white QR code.

    Args:
        data: Text to encode (usually a URL)
        size_px: Resize the square image to this edge length; NEAREST keeps
                 the modules sharp
        border: Quiet zone in modules
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=border,
        image_factory=PilImage,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    if size_px:
        img = img.resize((size_px, size_px), Image.NEAREST)
    return img


def qr_png_bytes(data: str, size_px: Optional[int] = None, border: int = 0) -> bytes:
    buffer = io.BytesIO()
    make_qr_image(data, size_px=size_px, border=border).save(buffer, format="PNG")
    return buffer.getvalue()


def qr_data_url(data: str, width: int = 300, border: int = 1) -> str:
    """PNG QR code as a ``data:`` URL for <img src=...>."""
    encoded = base64.b64encode(qr_png_bytes(data, size_px=width, border=border)).decode("ascii")
    return f"data:image/png;base64,{encoded}"

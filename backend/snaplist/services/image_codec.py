"""
Base64 helpers for rasters crossing the HTTP boundary.

Photos arrive either as raw base64 or as ``data:`` URIs; stickers are
returned as PNG data URIs so transparency survives.
"""

from __future__ import annotations

import base64
import binascii
import io

from PIL import Image, UnidentifiedImageError


def base64_to_image(b64: str) -> Image.Image:
    """Decode raw base64 or a ``data:image/...;base64,`` URI into an image.

    Raises:
        ValueError: If the payload is not valid base64 or not an image.
    """
    header, _, payload = b64.partition(",")
    if payload == "":
        payload = header
    try:
        data = base64.b64decode(payload, validate=False)
        img = Image.open(io.BytesIO(data))
        img.load()
    except (binascii.Error, UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Invalid image payload: {exc}") from exc
    return img


def image_to_base64_png(img: Image.Image) -> str:
    """Encode ``img`` as a ``data:image/png;base64,...`` URI."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    b64 = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{b64}"

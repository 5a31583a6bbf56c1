"""PNG encode/decode helpers shared by the renderers."""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

PNG_COMPRESS_LEVEL = 6


def encode_png(image: Image.Image) -> bytes:
    """Encode with fixed settings so identical pixels give identical bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", compress_level=PNG_COMPRESS_LEVEL)
    return buffer.getvalue()


def encode_rgba(pixels: np.ndarray) -> bytes:
    """Encode an ``(h, w, 4)`` uint8 array as an RGBA PNG."""
    return encode_png(Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)))


def decode_rgba(data: bytes) -> Image.Image:
    """Decode image bytes into a fully loaded RGBA image."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.convert("RGBA")

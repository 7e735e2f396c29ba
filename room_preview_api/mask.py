"""
Mask Rasterizer

Turns the placement rectangle into the single-channel edit mask sent to the
inpainting backend: 255 inside the rectangle (editable), 0 everywhere else.
Encoded as PNG so exactly those two values survive compression.
"""

import base64
import io
import logging

from PIL import Image

from room_preview_api.models import Rect, RoomAnalysis

logger = logging.getLogger(__name__)

EDITABLE = 255
PROTECTED = 0


def _to_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def build_mask_image(width: int, height: int, rect: Rect) -> Image.Image:
    """
    Build the mask as an 8-bit 'L' image.

    The rectangle covers the half-open ranges [x, x+width) and [y, y+height),
    clipped to the canvas. A rectangle with no area yields an all-zero mask.
    """
    width = max(1, round(width))
    height = max(1, round(height))
    mask = Image.new("L", (width, height), PROTECTED)

    left = min(max(0, rect.x), width)
    top = min(max(0, rect.y), height)
    right = min(max(0, rect.x + rect.width), width)
    bottom = min(max(0, rect.y + rect.height), height)

    if right > left and bottom > top:
        mask.paste(EDITABLE, (left, top, right, bottom))
    return mask


def rasterize(width: int, height: int, rect: Rect) -> bytes:
    """Rasterize ``rect`` on a width x height canvas and return PNG bytes."""
    mask = build_mask_image(width, height, rect)
    png = _to_png_bytes(mask)
    logger.info(f"Mask rasterized: {mask.size[0]}x{mask.size[1]}, rect={rect.model_dump()}, {len(png)} bytes")
    return png


def rasterize_analysis(analysis: RoomAnalysis) -> bytes:
    """Rasterize the final placement of an analysis on its own canvas."""
    return rasterize(analysis.imageWidth, analysis.imageHeight, analysis.finalPlacement)


def mask_size(png_bytes: bytes) -> tuple[int, int]:
    """Decoded (width, height) of an encoded mask."""
    with Image.open(io.BytesIO(png_bytes)) as img:
        return img.size


def to_data_uri(png_bytes: bytes) -> str:
    """Inline PNG bytes as a data URI for the generation request."""
    return f"data:image/png;base64,{base64.b64encode(png_bytes).decode('ascii')}"

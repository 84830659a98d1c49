"""Canvas compositing on PNG data URLs.

Pure functions; nothing here looks at room state. A payload that fails to decode is
logged and replaced by a blank frame so a broken drawing never blocks the game.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from collections.abc import Sequence
from functools import lru_cache

from PIL import Image, UnidentifiedImageError

from app.errors import ImageDecodeError
from app.settings import CANVAS_HEIGHT, CANVAS_WIDTH, SEGMENT_COUNT

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/png;base64,"
TRANSPARENT = (0, 0, 0, 0)

# Largest image we ever decode: a finished artwork of one canvas per segment.
MAX_DECODE_PIXELS = CANVAS_WIDTH * CANVAS_HEIGHT * SEGMENT_COUNT


def decode_image(data: str, *, max_pixels: int = MAX_DECODE_PIXELS) -> Image.Image:
    """Decode a data URL (or bare base64) into an RGBA image.

    Raises ImageDecodeError for anything that is not a readable image, and for images
    with more than `max_pixels` pixels (checked from the header, before decompressing).
    """

    if not data:
        raise ImageDecodeError("empty image payload")

    payload = data.split(",", 1)[1] if data.startswith("data:") and "," in data else data
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError("image payload is not valid base64") from e

    try:
        with Image.open(io.BytesIO(raw)) as img:
            if img.width * img.height > max_pixels:
                raise ImageDecodeError(f"image is too large ({img.width}x{img.height})")
            img.load()
            return img.convert("RGBA")
    except Image.DecompressionBombError as e:
        raise ImageDecodeError("image is too large") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError("image payload is not a readable image") from e


def check_drawing(data: str) -> None:
    """Raise ImageDecodeError unless `data` is a readable image that fits on one canvas."""

    img = decode_image(data, max_pixels=CANVAS_WIDTH * CANVAS_HEIGHT)
    if img.width > CANVAS_WIDTH or img.height > CANVAS_HEIGHT:
        raise ImageDecodeError(f"drawing is larger than the {CANVAS_WIDTH}x{CANVAS_HEIGHT} canvas")


def encode_image(img: Image.Image) -> str:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return DATA_URL_PREFIX + base64.b64encode(buf.getvalue()).decode("ascii")


def _blank(width: int, height: int) -> Image.Image:
    return Image.new("RGBA", (width, height), TRANSPARENT)


@lru_cache(maxsize=16)
def blank_canvas(width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT) -> str:
    return encode_image(_blank(width, height))


def _decode_or_blank(data: str, *, width: int, height: int, op: str) -> Image.Image:
    try:
        return decode_image(data)
    except ImageDecodeError as e:
        logger.warning("compositor.%s: substituting blank frame (%s)", op, e)
        return _blank(width, height)


def combine(images: Sequence[str], *, width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT) -> str:
    """Stack images vertically, in order, into one taller image.

    Undecodable inputs become blank frames of the default canvas size, so N inputs
    always produce N stacked bands.
    """

    if not images:
        logger.warning("compositor.combine: no images, returning blank canvas")
        return blank_canvas(width, height)

    decoded = [_decode_or_blank(data, width=width, height=height, op="combine") for data in images]
    out_width = max(img.width for img in decoded)
    out_height = sum(img.height for img in decoded)

    out = _blank(out_width, out_height)
    y = 0
    for img in decoded:
        out.paste(img, (0, y))
        y += img.height
    return encode_image(out)


def overlay(images: Sequence[str], width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT) -> str:
    """Scale every image to width x height and alpha-composite them in order."""

    if width <= 0 or height <= 0:
        raise ValueError("overlay target size must be positive")

    out = _blank(width, height)
    for data in images:
        img = _decode_or_blank(data, width=width, height=height, op="overlay")
        if img.size != (width, height):
            img = img.resize((width, height))
        out = Image.alpha_composite(out, img)
    return encode_image(out)


def peek(image: str, height: int, *, width: int = CANVAS_WIDTH, canvas_height: int = CANVAS_HEIGHT) -> str:
    """Return a canvas-sized frame holding only the bottom `height` pixels of `image`.

    The strip is placed at the top of the frame, where the next drawer continues;
    the rest of the frame is transparent.
    """

    src = _decode_or_blank(image, width=width, height=canvas_height, op="peek")
    strip_height = max(0, min(height, src.height, canvas_height))

    out = _blank(width, canvas_height)
    if strip_height:
        strip = src.crop((0, src.height - strip_height, min(src.width, width), src.height))
        out.paste(strip, (0, 0))
    return encode_image(out)

"""Freehand signature surface and image data-URL helpers.

Signature and image answers are stored as ``data:image/png;base64,...``
strings. :class:`SignaturePad` is the server-side counterpart of the drawing
canvas: it accumulates line segments between successive pointer samples and
renders them with Pillow.
"""

from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from PIL import Image, ImageChops, ImageDraw, UnidentifiedImageError

from src.emr.errors import ValidationError

Point = Tuple[float, float]

DATA_URL_PREFIX = "data:image/"
STROKE_COLOR = (0, 0, 0, 255)
# Largest canvas accepted for signature and image answers.
MAX_IMAGE_SIDE = 4096


def decode_data_url(data_url: str) -> Image.Image:
    """Decode an image data URL into a Pillow image.

    Raises ValidationError when the string is not a base64 image data URL,
    the payload is not a readable image, or its canvas is larger than
    MAX_IMAGE_SIDE on either side.
    """

    if not data_url.startswith(DATA_URL_PREFIX) or ";base64," not in data_url:
        raise ValidationError("Expected a base64 image data URL")

    payload = data_url.split(";base64,", 1)[1]
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image data URL is not valid base64") from exc

    try:
        image = Image.open(io.BytesIO(raw))
        width, height = image.size
        if width > MAX_IMAGE_SIDE or height > MAX_IMAGE_SIDE:
            raise ValidationError(f"Image must be at most {MAX_IMAGE_SIDE}x{MAX_IMAGE_SIDE} pixels")
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ValidationError("Image data URL does not contain a readable image") from exc
    return image


def encode_data_url(image: Image.Image) -> str:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def pixel_difference(a: Image.Image, b: Image.Image) -> int:
    """Return the number of pixels that differ between two images.

    Images of different sizes are treated as entirely different.
    """

    if a.size != b.size:
        return max(a.size[0] * a.size[1], b.size[0] * b.size[1])
    diff = ImageChops.difference(a.convert("RGBA"), b.convert("RGBA"))
    bands = diff.split()
    combined = bands[0]
    for band in bands[1:]:
        combined = ImageChops.lighter(combined, band)
    return a.size[0] * a.size[1] - combined.histogram()[0]


@dataclass
class SignaturePad:
    width: int = 400
    height: int = 150
    stroke_width: int = 2
    _strokes: List[List[Point]] = field(default_factory=list, init=False, repr=False)
    _last_point: Optional[Point] = field(default=None, init=False, repr=False)
    _image: Image.Image = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._image = self._blank()

    def _blank(self) -> Image.Image:
        return Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))

    @property
    def is_drawing(self) -> bool:
        return self._last_point is not None

    @property
    def is_empty(self) -> bool:
        return self._image.getbbox() is None

    @property
    def strokes(self) -> List[List[Point]]:
        return [list(stroke) for stroke in self._strokes]

    def begin_stroke(self, x: float, y: float) -> None:
        self._last_point = (x, y)
        self._strokes.append([(x, y)])

    def move_to(self, x: float, y: float) -> None:
        """Draw a segment from the previous sample to ``(x, y)``.

        Samples received while no stroke is active are ignored, matching a
        pointer moving over the canvas without the button pressed.
        """

        if self._last_point is None:
            return
        draw = ImageDraw.Draw(self._image)
        draw.line([self._last_point, (x, y)], fill=STROKE_COLOR, width=self.stroke_width, joint="curve")
        # Round caps: Pillow lines are butt-ended.
        radius = self.stroke_width / 2
        for cx, cy in (self._last_point, (x, y)):
            draw.ellipse([cx - radius, cy - radius, cx + radius, cy + radius], fill=STROKE_COLOR)
        self._strokes[-1].append((x, y))
        self._last_point = (x, y)

    def end_stroke(self) -> None:
        self._last_point = None

    def clear(self) -> None:
        self._image = self._blank()
        self._strokes = []
        self._last_point = None

    def to_image(self) -> Image.Image:
        return self._image.copy()

    def to_data_url(self) -> str:
        """Serialize the canvas; an untouched pad serializes to ``""``."""

        if self.is_empty:
            return ""
        return encode_data_url(self._image)

    def load_data_url(self, data_url: str) -> None:
        """Draw a previously stored signature onto this surface."""

        if not data_url:
            return
        image = decode_data_url(data_url).convert("RGBA")
        self._image.alpha_composite(image.crop((0, 0, self.width, self.height)))

"""
Image recompression with Pillow.

`transform_image` is the pure bytes -> bytes step; `ImageTransformer` binds
the encoder options and an optional storage sink so callers get either the
encoded bytes or the stored location back.

Output is deterministic for a given Pillow build: no optimize or progressive
passes are requested, so identical input and options encode identically.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
import struct
from typing import TYPE_CHECKING, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from .errors import TransformError, TransformErrorKind

if TYPE_CHECKING:
    from .storage import ImageSink

logger = logging.getLogger(__name__)

FORMAT_EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}
FORMAT_CONTENT_TYPES = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}

# Raised by Pillow plugins on malformed headers or pixel data
DECODE_ERRORS = (OSError, SyntaxError, ValueError, struct.error, IndexError, TypeError, EOFError)


@dataclass(frozen=True)
class TransformOptions:
    format: str = "JPEG"
    quality: int = 50  # 0..100
    max_dimension: Optional[int] = None  # bound on the long edge

    @property
    def extension(self) -> str:
        return FORMAT_EXTENSIONS.get(self.format.upper(), self.format.lower())

    @property
    def content_type(self) -> str:
        return FORMAT_CONTENT_TYPES.get(self.format.upper(), "application/octet-stream")


def _compute_resize_dims(width: int, height: int, max_long_edge: Optional[int]) -> Tuple[int, int]:
    """Preserve aspect ratio while constraining the longest edge."""
    if not max_long_edge or max_long_edge <= 0:
        return width, height
    long_edge = max(width, height)
    if long_edge <= max_long_edge:
        return width, height
    scale = max_long_edge / long_edge
    return max(1, round(width * scale)), max(1, round(height * scale))


def _convert_for_format(image: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG" and image.mode not in {"RGB", "L", "CMYK"}:
        return image.convert("RGB")
    if fmt == "WEBP" and image.mode not in {"RGB", "RGBA"}:
        has_alpha = image.mode in {"LA", "PA"} or "transparency" in image.info
        return image.convert("RGBA" if has_alpha else "RGB")
    if fmt == "PNG" and image.mode == "CMYK":
        return image.convert("RGB")
    return image


def _decode(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
    except UnidentifiedImageError as exc:
        raise TransformError(TransformErrorKind.UNSUPPORTED, "Input is not a recognized image format") from exc
    except Image.DecompressionBombError as exc:
        raise TransformError(TransformErrorKind.UNSUPPORTED, str(exc)) from exc
    except DECODE_ERRORS as exc:
        # Recognized signature with a header the plugin cannot parse
        raise TransformError(TransformErrorKind.CORRUPT, f"Image header could not be parsed: {exc}") from exc
    try:
        image.load()
    except DECODE_ERRORS as exc:
        raise TransformError(TransformErrorKind.CORRUPT, f"Image data could not be decoded: {exc}") from exc
    return image


def transform_image(data: bytes, options: Optional[TransformOptions] = None) -> bytes:
    """
    Decode `data`, bound its long edge, and re-encode it.

    Raises:
        TransformError: UNSUPPORTED for unknown input or output formats,
            CORRUPT for data that is recognized but cannot be decoded.
    """
    options = options or TransformOptions()
    fmt = options.format.upper()
    if fmt not in FORMAT_EXTENSIONS:
        raise TransformError(TransformErrorKind.UNSUPPORTED, f"Unsupported output format: {options.format}")
    if not data:
        raise TransformError(TransformErrorKind.CORRUPT, "Empty image data")

    image = _decode(data)
    orig_w, orig_h = image.size
    new_w, new_h = _compute_resize_dims(orig_w, orig_h, options.max_dimension)
    try:
        if (new_w, new_h) != (orig_w, orig_h):
            image = image.resize((new_w, new_h), Image.LANCZOS)
        image = _convert_for_format(image, fmt)
    except DECODE_ERRORS as exc:
        raise TransformError(TransformErrorKind.CORRUPT, f"Image could not be resized or converted: {exc}") from exc
    save_kwargs = {"format": fmt}
    if fmt in {"JPEG", "WEBP"}:
        save_kwargs["quality"] = max(0, min(100, int(options.quality)))

    buf = BytesIO()
    try:
        image.save(buf, **save_kwargs)
    except (OSError, ValueError) as exc:
        raise TransformError(TransformErrorKind.UNSUPPORTED, f"Could not encode as {fmt}: {exc}") from exc

    logger.debug(
        "transform: %dx%d -> %dx%d %s q=%d (%d -> %d bytes)",
        orig_w,
        orig_h,
        new_w,
        new_h,
        fmt,
        options.quality,
        len(data),
        buf.tell(),
    )
    return buf.getvalue()


class ImageTransformer:
    """Recompress images and, when a sink is configured, persist the result."""

    def __init__(self, options: Optional[TransformOptions] = None, sink: Optional["ImageSink"] = None) -> None:
        self.options = options or TransformOptions()
        self.sink = sink

    def transform(self, data: bytes) -> Union[bytes, str]:
        """Return the stored location when a sink is set, else the encoded bytes."""
        encoded = transform_image(data, self.options)
        if self.sink is None:
            return encoded
        return self.sink.put(
            encoded,
            extension=self.options.extension,
            content_type=self.options.content_type,
        )

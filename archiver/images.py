"""Image format sniffing and JPEG normalization."""

from __future__ import annotations

import enum
import io

from PIL import Image, UnidentifiedImageError

from .errors import HtmlPayloadError, ImageDecodeError, UnknownFormatError

DEFAULT_JPEG_QUALITY = 90

_HTML_SNIFF_BYTES = 512
_MIN_SIGNATURE_BYTES = 12

_JPEG_MAGIC = b"\xff\xd8\xff"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_GIF_MAGICS = (b"GIF87a", b"GIF89a")


class ImageFormat(enum.Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"


def looks_like_html(data: bytes) -> bool:
    head = data[:_HTML_SNIFF_BYTES].lstrip(b"\xef\xbb\xbf").lstrip()
    if not head.startswith(b"<"):
        return False
    lowered = head.lower()
    return lowered.startswith(b"<!doctype") or b"<html" in lowered


def detect_format(data: bytes) -> ImageFormat:
    """Classify ``data`` by its magic bytes.

    Raises ``HtmlPayloadError`` for an HTML error page served in place of an
    image and ``UnknownFormatError`` for anything else that is not recognized.
    """
    if looks_like_html(data):
        raise HtmlPayloadError("received HTML content instead of an image")
    if len(data) < _MIN_SIGNATURE_BYTES:
        raise UnknownFormatError(f"data too short to determine format ({len(data)} bytes)")

    if data.startswith(_JPEG_MAGIC):
        return ImageFormat.JPEG
    if data.startswith(_PNG_MAGIC):
        return ImageFormat.PNG
    if data.startswith(_GIF_MAGICS):
        return ImageFormat.GIF
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP
    raise UnknownFormatError(f"unknown image format (header {data[:16].hex()})")


def _flatten(img: Image.Image) -> Image.Image:
    """Drop alpha onto a white page; JPEG has no transparency."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        page = Image.new("RGB", rgba.size, (255, 255, 255))
        page.paste(rgba, mask=rgba.split()[-1])
        return page
    return img.convert("RGB")


def to_jpeg(data: bytes, fmt: ImageFormat, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Return JPEG bytes for ``data``; JPEG input comes back untouched."""
    if fmt is ImageFormat.JPEG:
        return data
    if not isinstance(fmt, ImageFormat):
        raise UnknownFormatError(f"unsupported image format: {fmt!r}")

    try:
        with Image.open(io.BytesIO(data), formats=[fmt.name]) as img:
            img.load()
            page = _flatten(img)
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
        SyntaxError,
    ) as e:
        raise ImageDecodeError(f"failed to decode {fmt.value} image: {e}") from e

    # JPEG caps each side at 65535 px, so very tall strips fail here
    out = io.BytesIO()
    try:
        page.save(out, format="JPEG", quality=quality, optimize=True)
    except (OSError, ValueError) as e:
        raise ImageDecodeError(
            f"failed to encode {fmt.value} image ({page.width}x{page.height}) as JPEG: {e}"
        ) from e
    return out.getvalue()


__all__ = [
    "DEFAULT_JPEG_QUALITY",
    "ImageFormat",
    "looks_like_html",
    "detect_format",
    "to_jpeg",
]

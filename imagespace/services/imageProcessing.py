import mimetypes
from io import BytesIO

from PIL import Image as PILImage, UnidentifiedImageError

from ..utils.logging import logger

MAX_THUMBNAIL_SIZE = 100
THUMBNAIL_SUFFIX = "_thumb"
JPEG_QUALITY = 85
DEFAULT_MIME_TYPE = "image/jpeg"
DEFAULT_EXTENSION = ".png"


class ThumbnailError(Exception):
    pass


def _split_ext(filename):
    dot = filename.rfind(".")
    if dot == -1:
        return filename, ""
    return filename[:dot], filename[dot:]


def thumbnail_name(filename):
    """cat.jpg -> cat_thumb.jpg, README -> README_thumb"""
    stem, ext = _split_ext(filename)
    return f"{stem}{THUMBNAIL_SUFFIX}{ext}"


def is_thumbnail(filename):
    stem, _ = _split_ext(filename)
    return stem.endswith(THUMBNAIL_SUFFIX)


def strip_thumbnail_suffix(filename):
    """Inverse of thumbnail_name. Names that are not thumbnails come back unchanged."""
    if not is_thumbnail(filename):
        return filename
    stem, ext = _split_ext(filename)
    return stem[: -len(THUMBNAIL_SUFFIX)] + ext


def detect_mime_type(filename):
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or DEFAULT_MIME_TYPE


def extension_for_mime(mime_type):
    ext = mimetypes.guess_extension(mime_type or "")
    if not ext:
        return DEFAULT_EXTENSION
    # some platforms still map image/jpeg to .jpe
    return ".jpg" if ext in (".jpe", ".jpeg") else ext


def thumbnail_dimensions(width, height, max_size=MAX_THUMBNAIL_SIZE):
    if width >= height:
        return max_size, max(1, round(height * max_size / width))
    return max(1, round(width * max_size / height)), max_size


def derive_thumbnail(data, mime_type, max_size=MAX_THUMBNAIL_SIZE):
    """Scale so the longer edge equals max_size and re-encode.

    PNG sources stay PNG, everything else becomes JPEG.
    Raises ThumbnailError when the bytes cannot be decoded or encoded.
    """
    try:
        with PILImage.open(BytesIO(data)) as src:
            src.load()
            size = thumbnail_dimensions(src.width, src.height, max_size)
            thumb = src.resize(size, PILImage.Resampling.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError, ZeroDivisionError) as e:
        raise ThumbnailError(f"cannot decode image: {e}") from e

    buf = BytesIO()
    try:
        if "png" in (mime_type or "").lower():
            if thumb.mode not in ("RGB", "RGBA", "L", "LA"):
                thumb = thumb.convert("RGBA")
            thumb.save(buf, format="PNG")
        else:
            if thumb.mode != "RGB":
                thumb = thumb.convert("RGB")
            thumb.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, ValueError) as e:
        raise ThumbnailError(f"cannot encode thumbnail: {e}") from e

    logger.info(f"Derived thumbnail {size[0]}x{size[1]} ({mime_type})")
    return buf.getvalue()

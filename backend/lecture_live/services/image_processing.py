"""
Image pipeline for slide and attachment payloads.

- optimize: downscale to a max dimension (aspect preserved) + optional grayscale
- lazy migration: legacy PNG slide images are re-encoded as JPEG before saving
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple

from PIL import Image, UnidentifiedImageError

from lecture_live.schemas.lecture import ImageOptimizationSettings, Slide

logger = logging.getLogger(__name__)

LEGACY_IMAGE_PREFIX = "data:image/png"
DEFAULT_MIME_TYPE = "image/png"


class ImageProcessingError(ValueError):
    pass


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Return (mime_type, base64 payload). Bare base64 is treated as PNG."""
    value = (data_url or "").strip()
    if value.lower().startswith("data:") and "," in value:
        header, payload = value.split(",", 1)
        mime = header[5:].split(";", 1)[0].strip() or DEFAULT_MIME_TYPE
        return mime, payload.strip()
    return DEFAULT_MIME_TYPE, value


def to_data_url(image_bytes: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def _decode_image(data_url: str) -> Image.Image:
    _, payload = split_data_url(data_url)
    if not payload:
        raise ImageProcessingError("image data url has no payload")
    try:
        image_bytes = base64.b64decode(payload, validate=False)
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, binascii.Error, ValueError, OSError) as exc:
        raise ImageProcessingError(f"cannot decode image: {exc}") from exc
    return image


def fit_within(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def optimize_image_data_url(data_url: str, settings: ImageOptimizationSettings) -> str:
    image = _decode_image(data_url)
    width, height = fit_within(image.size[0], image.size[1], settings.max_dimension)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.LANCZOS)

    if settings.grayscale:
        has_alpha = image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)
        image = image.convert("LA" if has_alpha else "L")
    elif image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA")

    buf = io.BytesIO()
    image.save(buf, format="PNG", optimize=True)
    return to_data_url(buf.getvalue(), "image/png")


def is_legacy_encoding(data_url: str) -> bool:
    return (data_url or "").startswith(LEGACY_IMAGE_PREFIX)


def convert_png_to_jpeg(data_url: str, quality: int = 80) -> str:
    image = _decode_image(data_url)
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        flattened = Image.new("RGB", rgba.size, (255, 255, 255))
        flattened.paste(rgba, mask=rgba.split()[-1])
        image = flattened
    else:
        image = image.convert("RGB")
    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=quality)
    return to_data_url(buf.getvalue(), "image/jpeg")


@dataclass
class MigrationResult:
    # page_number -> re-encoded data url
    converted: Dict[int, str] = field(default_factory=dict)
    failed_pages: list[int] = field(default_factory=list)

    @property
    def was_modified(self) -> bool:
        return bool(self.converted)


def migrate_slide_images(slides: Iterable[Slide], quality: int = 80) -> MigrationResult:
    """Best-effort per slide: a failing slide keeps its original encoding."""
    result = MigrationResult()
    for slide in slides:
        if not is_legacy_encoding(slide.image_data_url):
            continue
        try:
            result.converted[slide.page_number] = convert_png_to_jpeg(slide.image_data_url, quality=quality)
        except ImageProcessingError:
            logger.warning("slide_image_migration_failed page=%s", slide.page_number, exc_info=True)
            result.failed_pages.append(slide.page_number)
    return result

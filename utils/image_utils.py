"""
Image processing utilities.
"""

import io
from pathlib import Path
from typing import Optional

from PIL import Image

from config import PAGE_IMAGE_FORMAT, PAGE_IMAGE_MAX_DIM, PAGE_IMAGE_QUALITY
from utils.oracle import PageImage

MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


def load_image(page: PageImage) -> Image.Image:
    """Decode a page image into a PIL Image."""
    image = Image.open(io.BytesIO(page.data))
    image.load()
    return image


def save_image(image: Image.Image, path: Path) -> None:
    """Save an image to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path)


def resize_image(image: Image.Image, max_size: Optional[int] = PAGE_IMAGE_MAX_DIM) -> Image.Image:
    """
    Resize image maintaining aspect ratio so neither side exceeds max_size.
    """
    if not max_size:
        return image
    w, h = image.size
    if max(w, h) <= max_size:
        return image
    scale = max_size / max(w, h)
    return image.resize((int(w * scale), int(h * scale)), Image.LANCZOS)


def encode_image(
    image: Image.Image,
    image_format: str = PAGE_IMAGE_FORMAT,
    quality: int = PAGE_IMAGE_QUALITY,
) -> PageImage:
    """Encode a PIL Image into the bytes form the pipeline consumes."""
    if image_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    if image_format == "JPEG":
        image.save(buffer, format=image_format, quality=quality)
    else:
        image.save(buffer, format=image_format)
    return PageImage(data=buffer.getvalue(), mime_type=MIME_TYPES.get(image_format, "image/jpeg"))


def crop_region(
    image: Image.Image,
    y_start_pct: float,
    y_end_pct: float,
    padding_pct: float = 0.0,
) -> Image.Image:
    """
    Crop a full-width horizontal band given as percentages of page height.
    """
    w, h = image.size
    top = max(0.0, y_start_pct - padding_pct)
    bottom = min(100.0, y_end_pct + padding_pct)
    if bottom <= top:
        raise ValueError(f"Invalid crop band: {y_start_pct}% - {y_end_pct}%")

    y1 = int(round(h * top / 100.0))
    y2 = int(round(h * bottom / 100.0))
    y2 = max(y2, y1 + 1)
    return image.crop((0, y1, w, min(y2, h)))

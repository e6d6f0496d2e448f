"""Turn stored image references into URLs a vision model can read."""

from __future__ import annotations

import base64
import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from persongroup.errors import ExternalServiceError

LOGGER = logging.getLogger("persongroup.services.images")

PASSTHROUGH_PREFIXES = ("data:", "http://", "https://")


def encode_image_to_base64(image: Image.Image, quality: int = 85) -> str:
    """Encode a PIL image as base64 JPEG."""
    buffered = io.BytesIO()
    image.save(buffered, format="JPEG", quality=quality)
    return base64.b64encode(buffered.getvalue()).decode("utf-8")


def load_image(path: Path, max_side: Optional[int] = None) -> Image.Image:
    try:
        with Image.open(path) as handle:
            image = handle.convert("RGB")
    except (OSError, UnidentifiedImageError) as exc:
        raise ExternalServiceError(f"Unable to read image {path}: {exc}") from exc
    if max_side and max(image.size) > max_side:
        image.thumbnail((max_side, max_side))
    return image


def to_data_url(image_ref: str, max_side: Optional[int] = 768) -> str:
    """Return a URL for ``image_ref``: data/http URLs unchanged, local files as JPEG data URLs."""
    ref = (image_ref or "").strip()
    if not ref:
        raise ExternalServiceError("Empty image reference")
    if ref.startswith(PASSTHROUGH_PREFIXES):
        return ref
    path = Path(ref).expanduser()
    if not path.is_file():
        raise ExternalServiceError(f"Image reference {ref} is not a file or URL")
    image = load_image(path, max_side=max_side)
    LOGGER.debug("Encoded %s at %dx%d", path, image.width, image.height)
    return f"data:image/jpeg;base64,{encode_image_to_base64(image)}"

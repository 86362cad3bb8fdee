"""
Media normalizer: re-encode uploads the image model does not accept.

PNG and JPEG pass through untouched. Anything else Pillow can decode
(WebP, GIF, BMP, TIFF, ...) is written out as PNG next to the original.
"""

import time
import asyncio
import logging

from PIL import Image

from .cleanup import TempFiles
from .errors import StorageError
from .models import SourceImage, ModelImage

logger = logging.getLogger(__name__)

MODEL_SAFE_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg"}

# Modes the PNG encoder writes directly; everything else goes through RGBA
PNG_WRITABLE_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


def _convert_to_png(source_path: str, target_path: str) -> None:
    with Image.open(source_path) as img:
        if img.mode not in PNG_WRITABLE_MODES:
            img = img.convert("RGBA")
        img.save(target_path, format="PNG")


async def normalize_image(source: SourceImage, temp_files: TempFiles) -> ModelImage:
    """
    Return a model-safe version of an uploaded image.

    Args:
        source:     The spooled upload.
        temp_files: The job's cleanup scope; a converted file is registered here
                    before it is written so a half-written file is still removed.

    Returns:
        The original path for PNG/JPEG, otherwise a fresh PNG path.

    Raises:
        StorageError: If the image cannot be decoded or re-encoded.
    """
    if source.mime_type in MODEL_SAFE_MIME_TYPES:
        return ModelImage(path=source.path, mime_type=source.mime_type)

    converted_path = f"{source.path}-{int(time.time() * 1000)}-converted.png"
    temp_files.register(converted_path)

    try:
        await asyncio.to_thread(_convert_to_png, source.path, converted_path)
    except Exception as e:
        name = source.filename or source.path
        raise StorageError(f"Could not convert {name} ({source.mime_type}) to PNG: {e}") from e

    logger.info(f"Converted {source.mime_type} upload to PNG: {converted_path}")
    return ModelImage(path=converted_path, mime_type="image/png")

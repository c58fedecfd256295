import logging
import os
import uuid
from typing import List

import pillow_heif
from pdf2image import convert_from_path
from PIL import Image, UnidentifiedImageError

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".heic", ".heif"}
PDF_EXT = ".pdf"
JPEG_QUALITY = 95
PDF_DPI = 300


def _save_jpeg(image: Image.Image, output_dir: str, suffix: str = "") -> str:
    out_path = os.path.join(output_dir, f"{uuid.uuid4().hex}{suffix}.jpg")
    image.convert("RGB").save(out_path, "JPEG", quality=JPEG_QUALITY)
    return out_path


def convert_to_images(input_path: str, output_dir: str) -> List[str]:
    """
    Converts an uploaded ID or selfie (image / HEIC / PDF) into JPEG images.
    Returns the list of image paths, one per PDF page.
    """
    ext = os.path.splitext(input_path)[1].lower()
    os.makedirs(output_dir, exist_ok=True)

    if ext in SUPPORTED_IMAGE_EXTS:
        try:
            with Image.open(input_path) as img:
                return [_save_jpeg(img, output_dir)]
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidInputError(f"Could not read image {os.path.basename(input_path)}: {e}") from e

    if ext == PDF_EXT:
        pages = convert_from_path(input_path, dpi=PDF_DPI)
        return [_save_jpeg(page, output_dir, f"_page{i + 1}") for i, page in enumerate(pages)]

    raise InvalidInputError(f"Unsupported file type: {ext or 'none'}")


def to_single_jpeg(input_path: str, output_dir: str) -> str:
    """Normalize an upload to one JPEG; multi-page PDFs keep their first page"""
    images = convert_to_images(input_path, output_dir)
    if not images:
        raise InvalidInputError(f"No images produced for {os.path.basename(input_path)}")
    if len(images) > 1:
        logger.info("%s has %d pages, using the first", os.path.basename(input_path), len(images))
    return images[0]

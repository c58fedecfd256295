import base64
import os
import random
import string
import time
import requests
from typing import Union
from urllib.parse import urlparse

from .errors import ImageLoadError

# A local path, an http(s) URL or the raw encoded image bytes
ImageRef = Union[str, bytes, os.PathLike]


def is_valid_url(url: str) -> bool:
    """Check if string is a valid URL"""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)


def download_image(url: str, timeout: float = 30) -> bytes:
    """
    Download an image from URL

    Args:
        url: Image URL to download
        timeout: Seconds before the request is abandoned

    Returns:
        Raw image bytes
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ImageLoadError(f"Failed to download image from {url}: {e}") from e
    return response.content


def read_image_bytes(image: ImageRef) -> bytes:
    """Resolve an image reference to its raw bytes"""
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)

    path = os.fspath(image)
    if is_valid_url(path):
        return download_image(path)

    if not os.path.exists(path):
        raise ImageLoadError("Image file not found")
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ImageLoadError(f"Image could not be read: {e}") from e


def encode_image(image: ImageRef) -> str:
    """Base64 encode an image for a JSON request body"""
    return base64.b64encode(read_image_bytes(image)).decode("utf-8")


def describe_image(image: ImageRef) -> str:
    """Short log-safe label for an image reference"""
    if isinstance(image, (bytes, bytearray)):
        return f"<{len(image)} bytes>"
    return os.path.basename(os.fspath(image)) or os.fspath(image)


def new_session_id() -> str:
    """Generate a unique id of the form vs_<ms timestamp>_<7 base36 chars>"""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(random.choices(alphabet, k=7))
    return f"vs_{int(time.time() * 1000)}_{suffix}"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))

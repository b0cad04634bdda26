"""
Artifact handling for generated images

Providers hand back images as base64 strings, sometimes wrapped in a data URI
(``data:image/png;base64,...``). This module strips that framing, decodes the
payload and writes it to disk.

Decode failures raise DecodeError (corrupt payload from the backend), while an
invalid target or a failed write raises ArtifactIOError (local environment).

Usage:
    from utils.artifacts import timestamped_image_path, write_base64_image

    path = timestamped_image_path("output")
    await write_base64_image(image_b64, path)
"""

import base64
import binascii
import logging
import re
import time
from pathlib import Path

import aiofiles
import aiofiles.os

from providers.errors import ArtifactIOError, DecodeError

logger = logging.getLogger(__name__)

# data:image/png;base64, data:image/webp;base64, ...
DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def strip_data_uri_prefix(image: str) -> str:
    return DATA_URI_PREFIX.sub("", image.strip(), count=1)


def decode_base64_image(image: str) -> bytes:
    """Decode a base64 image payload, tolerating a data URI prefix."""
    payload = strip_data_uri_prefix(image)
    if not payload:
        raise DecodeError("Image payload is empty")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Image payload is not valid base64: {e}") from e


def encode_image_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


async def encode_image_file(path: str | Path) -> str:
    """Read an image file back into a base64 string."""
    async with aiofiles.open(path, "rb") as f:
        return encode_image_bytes(await f.read())


def timestamped_image_path(output_directory: str | Path) -> Path:
    """Build ``<output_directory>/<unix_timestamp>.png``."""
    return Path(output_directory) / f"{int(time.time())}.png"


async def write_base64_image(image: str, path: str | Path) -> Path:
    """
    Decode a base64 image and write the bytes to ``path``.

    Args:
        image: Base64 payload, optionally prefixed with a data URI marker
        path: Target file path. Must not be a directory

    Returns:
        The path that was written

    Raises:
        ArtifactIOError: If the path is a directory or the write fails
        DecodeError: If the payload is not valid base64
    """
    path = Path(path)
    if await aiofiles.os.path.isdir(path):
        raise ArtifactIOError(f"Artifact path must be a file path, got directory: {path}")

    data = decode_base64_image(image)

    try:
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
    except OSError as e:
        raise ArtifactIOError(f"Failed to write artifact {path}: {e}") from e

    logger.info(f"Wrote {len(data) / 1024:.1f}KB image to {path}")
    return path

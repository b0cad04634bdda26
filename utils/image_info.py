"""
Image inspection for generated artifacts

Reads back a written image with Pillow and reports its format, dimensions
and mode so API results can describe what was produced.

Usage:
    from utils.image_info import read_image_info

    info = read_image_info("output/1718000000.png")
    # {"format": "PNG", "width": 1024, "height": 1024, "mode": "RGB"}
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


def read_image_info(path: str | Path) -> Optional[dict]:
    """
    Describe an image file.

    Returns None when the file is not a readable image. A payload that decodes
    as base64 but is not an image is reported, not treated as a failure.
    """
    path = Path(path)
    try:
        with Image.open(path) as image:
            info = {
                "format": image.format,
                "width": image.width,
                "height": image.height,
                "mode": image.mode,
            }
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not read image info for {path}: {e}")
        return None

    logger.debug(f"Image info for {path.name}: {info}")
    return info


async def read_image_info_async(path: str | Path) -> Optional[dict]:
    """Run read_image_info in an executor to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, read_image_info, path)

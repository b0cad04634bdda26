import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp

from providers.errors import ParseError, TransportError
from requestmodels.models import GenerationParams, ProviderSettings
from utils.artifacts import strip_data_uri_prefix, timestamped_image_path, write_base64_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Base64Image:
    """A base64-encoded image with any data URI framing already removed."""
    image: str
    # Remote queue task that produced the image, when there was one
    task_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: str, task_id: Optional[str] = None) -> "Base64Image":
        return cls(image=strip_data_uri_prefix(payload), task_id=task_id)

    async def to_file(self, path: str | Path) -> Path:
        return await write_base64_image(self.image, path)


class ImageProvider(ABC):
    """
    Capability interface implemented once per image backend
    """
    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self.timeout = aiohttp.ClientTimeout(total=settings.request_timeout)

    @property
    def base_url(self) -> str:
        return (self.settings.url or "").rstrip("/")

    @abstractmethod
    async def text_to_image(self, params: GenerationParams) -> Base64Image:
        """Run one generation and return the produced image."""

    async def generate_image(self, params: GenerationParams) -> Path:
        """Generate an image and save it as ``<output_directory>/<timestamp>.png``."""
        image = await self.text_to_image(params)
        return await image.to_file(timestamped_image_path(params.output_directory))

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        return await self._request_json("GET", url, headers=headers)

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        return await self._request_json("POST", url, payload=payload, headers=headers)

    async def _request_json(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Single round trip returning the decoded JSON body. Never retries."""
        request_headers = {'Content-Type': 'application/json'}
        if headers:
            request_headers.update(headers)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                data = json.dumps(payload) if payload is not None else None
                async with session.request(method, url, data=data, headers=request_headers) as response:
                    response_text = await response.text()
                    logger.debug(f"{method} {url} -> HTTP {response.status}: {response_text[:500]}")

                    if response.status >= 400:
                        raise TransportError(
                            f"{method} {url} failed with HTTP {response.status}: {response_text[:500]}",
                            url=url,
                            status=response.status,
                        )
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {url} timed out after {self.settings.request_timeout:g}s", url=url) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error on {method} {url}: {e}", url=url) from e

        try:
            return json.loads(response_text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON from {url}: {e}", url=url) from e

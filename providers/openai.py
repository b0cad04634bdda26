import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from providers.base import Base64Image, ImageProvider
from providers.errors import ConfigurationError, EmptyResult, ParseError
from requestmodels.models import GenerationParams, ProviderSettings

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
OPENAI_IMAGE_MODEL = "dall-e-3"

# Sizes accepted by the images endpoint, keyed by (width, height)
SUPPORTED_SIZES = {
    (1024, 1024): "1024x1024",
    (1024, 1792): "1024x1792",
    (1792, 1024): "1792x1024",
    (256, 256): "256x256",
    (512, 512): "512x512",
}


def to_openai_size(width: int, height: int) -> str:
    return SUPPORTED_SIZES.get((width, height), "1024x1024")


class OpenAiImage(BaseModel):
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class OpenAiImageResponse(BaseModel):
    data: List[OpenAiImage]


class OpenAiProvider(ImageProvider):
    """
    Generate images with OpenAI's DALL-E 3 images API
    """
    def __init__(self, settings: ProviderSettings):
        if not settings.api_key:
            raise ConfigurationError("OpenAI API key not set")
        super().__init__(settings)

    @property
    def base_url(self) -> str:
        return (self.settings.url or DEFAULT_OPENAI_URL).rstrip("/")

    async def text_to_image(self, params: GenerationParams) -> Base64Image:
        url = f"{self.base_url}/images/generations"
        payload = {
            "model": OPENAI_IMAGE_MODEL,
            "prompt": str(params.prompt),
            "n": 1,
            "size": to_openai_size(params.width, params.height),
            "response_format": "b64_json",
        }
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}

        logger.info(f"Requesting {payload['size']} image from {url}")
        data = await self._post_json(url, payload, headers=headers)
        try:
            response = OpenAiImageResponse.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Unexpected image response from {url}: {e}", url=url) from e

        images = [image for image in response.data if image.b64_json]
        if not images:
            raise EmptyResult(None, url)
        if images[0].revised_prompt:
            logger.debug(f"OpenAI revised prompt: {images[0].revised_prompt}")
        return Base64Image.from_payload(images[0].b64_json)

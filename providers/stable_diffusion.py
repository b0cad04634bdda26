"""Direct (synchronous) Stable Diffusion provider for the AUTOMATIC1111 ``sdapi``.

The txt2img call blocks server-side until the image is ready and returns the
images inline, so there is no task to poll. The queue-based variant in
``providers.sd_queue`` builds on this class for the readiness and checkpoint
helpers.
"""

import asyncio
import logging
from typing import Any, Dict, List

import aiohttp
from pydantic import BaseModel, ValidationError

from providers.base import Base64Image, ImageProvider
from providers.errors import BackendUnavailable, ConfigurationError, EmptyResult, ParseError
from requestmodels.models import GenerationParams, ProviderSettings

logger = logging.getLogger(__name__)

SDAPI_OPTIONS = "/sdapi/v1/options"
SDAPI_TXT2IMG = "/sdapi/v1/txt2img"


class Txt2ImgRequest(BaseModel):
    prompt: str
    negative_prompt: str = ""
    steps: int
    batch_size: int = 1
    width: int
    height: int
    sampler_name: str
    cfg_scale: float
    seed: int = -1

    @classmethod
    def from_params(cls, params: GenerationParams) -> "Txt2ImgRequest":
        return cls(
            prompt=str(params.prompt),
            negative_prompt=params.prompt.negative or "",
            steps=params.steps,
            width=params.width,
            height=params.height,
            sampler_name=params.sampler_name,
            cfg_scale=params.cfg_scale,
            seed=params.seed if params.seed is not None else -1,
        )


class Txt2ImgResponse(BaseModel):
    images: List[str]


class StableDiffusionProvider(ImageProvider):
    """
    Generate images with a local Stable Diffusion web UI instance
    """
    def __init__(self, settings: ProviderSettings):
        if not settings.url:
            raise ConfigurationError(f"The URL for the {settings.name.value} provider must be provided")
        super().__init__(settings)

    async def is_up(self) -> bool:
        """Readiness probe: any successful response from the base URL."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self.base_url) as response:
                    return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Stable Diffusion at {self.base_url} not reachable: {e}")
            return False

    async def get_options(self) -> Dict[str, Any]:
        url = f"{self.base_url}{SDAPI_OPTIONS}"
        options = await self._get_json(url)
        if not isinstance(options, dict):
            raise ParseError(f"Expected a JSON object from {url}, got {type(options).__name__}", url=url)
        return options

    async def get_model_name(self) -> str:
        """Name of the currently loaded checkpoint."""
        url = f"{self.base_url}{SDAPI_OPTIONS}"
        model_name = (await self.get_options()).get("sd_model_checkpoint")
        if not isinstance(model_name, str) or not model_name:
            raise ParseError(f"Unable to get currently loaded model from {url}", url=url)
        return model_name

    async def set_model(self, model_name: str) -> None:
        logger.info(f"Switching Stable Diffusion checkpoint to {model_name}")
        await self._post_json(f"{self.base_url}{SDAPI_OPTIONS}", {"sd_model_checkpoint": model_name})

    async def ensure_ready(self, params: GenerationParams) -> None:
        """Check the backend answers and has the requested checkpoint loaded."""
        if not await self.is_up():
            raise BackendUnavailable(f"Stable Diffusion instance at {self.base_url} is not available")

        if params.model:
            loaded = await self.get_model_name()
            if loaded != params.model:
                await self.set_model(params.model)

    async def post_txt2img(self, request: Txt2ImgRequest) -> List[Base64Image]:
        url = f"{self.base_url}{SDAPI_TXT2IMG}"
        data = await self._post_json(url, request.model_dump())
        try:
            response = Txt2ImgResponse.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Unexpected txt2img response from {url}: {e}", url=url) from e
        return [Base64Image.from_payload(image) for image in response.images]

    async def text_to_image(self, params: GenerationParams) -> Base64Image:
        await self.ensure_ready(params)

        images = await self.post_txt2img(Txt2ImgRequest.from_params(params))
        if not images:
            raise EmptyResult(None, f"{self.base_url}{SDAPI_TXT2IMG}")
        return images[0]

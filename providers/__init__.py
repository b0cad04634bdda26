from providers.base import Base64Image, ImageProvider
from providers.errors import ConfigurationError
from providers.openai import OpenAiProvider
from providers.sd_queue import StableDiffusionQueueProvider
from providers.stable_diffusion import StableDiffusionProvider
from requestmodels.models import ProviderName, ProviderSettings

PROVIDERS = {
    ProviderName.OPENAI: OpenAiProvider,
    ProviderName.STABLE_DIFFUSION: StableDiffusionProvider,
    ProviderName.STABLE_DIFFUSION_QUEUE: StableDiffusionQueueProvider,
}


def create_provider(settings: ProviderSettings) -> ImageProvider:
    """Instantiate the provider selected by ``settings.name``."""
    provider_class = PROVIDERS.get(settings.name)
    if provider_class is None:
        raise ConfigurationError(f"Unknown image provider: {settings.name}")
    return provider_class(settings)


__all__ = [
    "Base64Image",
    "ImageProvider",
    "OpenAiProvider",
    "StableDiffusionProvider",
    "StableDiffusionQueueProvider",
    "create_provider",
]

"""Runtime configuration resolved from the process environment.

Values are read once at import time (after loading an optional ``.env``).
Providers never read these directly: the CLI and the HTTP service turn them
into explicit ``ProviderSettings`` / ``GenerationParams`` values.
"""

import os
import tomllib
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import ValidationError

from providers.errors import ConfigurationError
from requestmodels.models import GenerationParams, ProviderName, ProviderSettings

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, cast=float):
    value = os.getenv(name, default)
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name} must be a number, got {value!r}") from e


DEBUG_ENABLED = _env_bool("DEBUG_ENABLED")

# Provider selection and endpoints
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", ProviderName.STABLE_DIFFUSION_QUEUE.value)
STABLE_DIFFUSION_URL = os.getenv("STABLE_DIFFUSION_URL", "http://localhost:7860")
OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Task polling
POLL_INTERVAL = _env_number("POLL_INTERVAL", "1.0")
POLL_TIMEOUT = _env_number("POLL_TIMEOUT", "300")
REQUEST_TIMEOUT = _env_number("REQUEST_TIMEOUT", "30")

OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")

# HTTP service
CACHE_TYPE = os.getenv("CACHE_TYPE", "memory")
WORKER_CONFIG = {
    "generation_workers": _env_number("GENERATION_WORKERS", "1", int),
    "postprocess_workers": _env_number("POSTPROCESS_WORKERS", "1", int),
}
HEALTH_FAILURE_THRESHOLD = _env_number("HEALTH_FAILURE_THRESHOLD", "2", int)


def default_provider_settings(name: Optional[str | ProviderName] = None) -> ProviderSettings:
    """Build provider settings from the environment, optionally for another provider."""
    try:
        provider = ProviderName(name or IMAGE_PROVIDER)
    except ValueError as e:
        raise ConfigurationError(f"Unknown image provider: {name or IMAGE_PROVIDER}") from e

    if provider is ProviderName.OPENAI:
        url, api_key = OPENAI_API_URL, OPENAI_API_KEY
    else:
        url, api_key = STABLE_DIFFUSION_URL, None

    try:
        return ProviderSettings(
            name=provider,
            url=url,
            api_key=api_key,
            poll_interval=POLL_INTERVAL,
            poll_timeout=POLL_TIMEOUT,
            request_timeout=REQUEST_TIMEOUT,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid provider settings in environment: {e}") from e


def load_toml_config(path: str | Path) -> Tuple[ProviderSettings, GenerationParams]:
    """
    Load provider settings and generation params from a TOML file.

    Expected layout (every key optional)::

        [provider]
        name = "stable_diffusion_queue"
        url = "http://localhost:7860"

        [params]
        prompt = { base = "a cat", negative = "blurry" }
        width = 1024

    Provider keys missing from the file fall back to the environment.
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    provider_data = dict(data.get("provider", {}))
    defaults = default_provider_settings(provider_data.get("name"))

    try:
        settings = ProviderSettings.model_validate({**defaults.model_dump(), **provider_data})
        params = GenerationParams.model_validate(data.get("params", {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    return settings, params

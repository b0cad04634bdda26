from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderName(str, Enum):
    OPENAI = "openai"
    STABLE_DIFFUSION = "stable_diffusion"
    STABLE_DIFFUSION_QUEUE = "stable_diffusion_queue"


class Prompt(BaseModel):
    """A prompt to generate an image from."""
    model_config = ConfigDict(frozen=True)

    base: str = Field(default="A beautiful sunset over the ocean.")
    prefix: Optional[str] = Field(default=None)
    suffix: Optional[str] = Field(default=None)
    negative: Optional[str] = Field(default=None)

    def __str__(self) -> str:
        parts = [self.prefix, self.base, self.suffix]
        return " ".join(part for part in parts if part)


class GenerationParams(BaseModel):
    """Parameters for a single image generation request."""
    model_config = ConfigDict(frozen=True)

    prompt: Prompt = Field(default_factory=Prompt)
    output_directory: Path = Field(default=Path("."))
    model: Optional[str] = Field(default=None, description="Checkpoint to use. Not supported by all providers")
    width: int = Field(default=1024, gt=0)
    height: int = Field(default=1024, gt=0)
    steps: int = Field(default=15, gt=0)
    sampler_name: str = Field(default="UniPC")
    cfg_scale: float = Field(default=2, ge=0)
    seed: Optional[int] = Field(default=None)

    @field_validator("prompt", mode="before")
    @classmethod
    def coerce_prompt(cls, value):
        # A bare string is shorthand for the prompt base
        if isinstance(value, str):
            return {"base": value}
        return value


class ProviderSettings(BaseModel):
    """Explicit configuration handed to a provider constructor."""
    model_config = ConfigDict(frozen=True)

    name: ProviderName = Field(default=ProviderName.STABLE_DIFFUSION_QUEUE)
    url: Optional[str] = Field(default=None, description="Base URL of the provider API")
    api_key: Optional[str] = Field(default=None, repr=False)
    poll_interval: float = Field(default=1.0, gt=0)
    poll_timeout: float = Field(default=300.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)


class GenerationInput(BaseModel):
    # Used as an output directory name by the service
    request_id: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$", max_length=128)
    provider: Optional[ProviderName] = Field(default=None, description="Overrides the server's default provider")
    params: GenerationParams = Field(default_factory=GenerationParams)


class Payload(BaseModel):
    input: GenerationInput

    @classmethod
    def get_openapi_examples(cls) -> dict:
        return {
            "queued_stable_diffusion": {
                "summary": "Queue a txt2img task on the agent scheduler",
                "value": {
                    "input": {
                        "provider": "stable_diffusion_queue",
                        "params": {
                            "prompt": {
                                "prefix": "A watercolour portrait of",
                                "base": "a dwarven blacksmith",
                                "negative": "blurry, text",
                            },
                            "width": 1024,
                            "height": 1024,
                            "steps": 20,
                            "sampler_name": "UniPC",
                            "cfg_scale": 6,
                        },
                    }
                },
            },
            "openai": {
                "summary": "Generate with DALL-E 3",
                "value": {
                    "input": {
                        "provider": "openai",
                        "params": {"prompt": "A ruined watchtower at dusk"},
                    }
                },
            },
        }

"""Command-line image generation.

Parameters come either from a TOML file or from flags:

    sd-imagegen toml --file config.toml
    sd-imagegen --prompt "a dwarven blacksmith" args --provider stable_diffusion_queue --width 768

The path of the written image is printed on success.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from config import DEBUG_ENABLED, default_provider_settings, load_toml_config
from providers import create_provider
from providers.errors import ConfigurationError, ImageGenerationError
from requestmodels.models import GenerationParams, Prompt, ProviderName, ProviderSettings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sd-imagegen",
        description="Generate images using an image generation API.",
    )
    parser.add_argument("-p", "--prompt", help="Prompt to send, overriding any configured prompt")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sources = parser.add_subparsers(dest="source", required=True, metavar="{toml,args}")

    toml_parser = sources.add_parser("toml", help="Load parameters from a TOML file")
    toml_parser.add_argument("-f", "--file", type=Path, required=True)

    args_parser = sources.add_parser("args", help="Load parameters from command-line arguments")
    args_parser.add_argument("-n", "--provider", choices=[p.value for p in ProviderName], default=None)
    args_parser.add_argument("--url", help="Base URL of the provider API")
    args_parser.add_argument("-o", "--output-directory", type=Path, default=Path("."))
    args_parser.add_argument("--model", help="Checkpoint to use. Not supported by all providers")
    args_parser.add_argument("--negative", help="Negative prompt")
    args_parser.add_argument("--prefix", help="Text prepended to the prompt")
    args_parser.add_argument("--suffix", help="Text appended to the prompt")
    args_parser.add_argument("--width", type=int, default=1024)
    args_parser.add_argument("--height", type=int, default=1024)
    args_parser.add_argument("--steps", type=int, default=15)
    args_parser.add_argument("--sampler-name", default="UniPC")
    args_parser.add_argument("--cfg-scale", type=float, default=2)
    args_parser.add_argument("--seed", type=int)
    args_parser.add_argument("--poll-interval", type=float, help="Seconds between task status polls")
    args_parser.add_argument("--poll-timeout", type=float, help="Seconds to wait for a queued task")
    return parser


def resolve_request(args: argparse.Namespace):
    """Turn parsed arguments into provider settings and generation params."""
    if args.source == "toml":
        settings, params = load_toml_config(args.file)
    else:
        defaults = default_provider_settings(args.provider)
        overrides = {
            "url": args.url,
            "poll_interval": args.poll_interval,
            "poll_timeout": args.poll_timeout,
        }
        try:
            settings = ProviderSettings.model_validate(
                {**defaults.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
            )
            params = GenerationParams(
                prompt=Prompt(
                    base=args.prompt or Prompt().base,
                    prefix=args.prefix,
                    suffix=args.suffix,
                    negative=args.negative,
                ),
                output_directory=args.output_directory,
                model=args.model,
                width=args.width,
                height=args.height,
                steps=args.steps,
                sampler_name=args.sampler_name,
                cfg_scale=args.cfg_scale,
                seed=args.seed,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid arguments: {e}") from e

    if args.prompt:
        prompt = params.prompt.model_copy(update={"base": args.prompt})
        params = params.model_copy(update={"prompt": prompt})
    return settings, params


async def run(args: argparse.Namespace) -> Path:
    settings, params = resolve_request(args)
    provider = create_provider(settings)
    Path(params.output_directory).mkdir(parents=True, exist_ok=True)
    logger.info(f"Generating image with {settings.name.value}: {params.prompt}")
    return await provider.generate_image(params)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if (args.verbose or DEBUG_ENABLED) else logging.INFO)

    try:
        image_path = asyncio.run(run(args))
    except ImageGenerationError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1

    print(image_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())

#! /usr/bin/env python

# One CLI for four generative-media providers.
#
# Usage examples:
#   mediagen fal -p "a cat" -m krea --format landscape
#   mediagen fal -p "a cat" --lora disney,retrowave:0.8 -# 2 --name cat
#   mediagen fal -m kontext --image-url cat.jpg -p "make it a tiger"
#   mediagen wavespeed -m seedream-v4.5 -f prompt.txt --format 4k
#   mediagen venice -m wai --steps 40 --out
#   mediagen replicate -m schnell --all-prompts --dry-run
#   mediagen replicate-get
#   mediagen models fal --category image-to-video
#
# Credentials come from the environment (see .env): FAL_KEY, WAVESPEED_KEY,
# VENICE_API_TOKEN, REPLICATE_API_TOKEN.

from __future__ import annotations

import logging
from typing import Dict, Optional

import click
from dotenv import load_dotenv

from .config import Settings
from .errors import ConfigurationError, MissingParameterError, UpstreamError
from .loras import random_lora
from .options import GenerationOptions, coerce_image_size, parse_image_urls, parse_loras
from .prompts import collect_prompts
from .providers.base import ProviderAdapter
from .providers.fal import FalProvider
from .providers.replicate import ReplicateProvider
from .providers.venice import VeniceProvider
from .providers.wavespeed import OPTIMIZER_STYLES, WavespeedProvider
from .registry import CATEGORIES

load_dotenv()

logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

PROVIDER_CLASSES = {
    "fal": FalProvider,
    "wavespeed": WavespeedProvider,
    "venice": VeniceProvider,
    "replicate": ReplicateProvider,
}

_providers: Dict[str, ProviderAdapter] = {}


def get_provider(name: str) -> ProviderAdapter:
    """One adapter (and so one model registry) per provider and process."""
    if name not in _providers:
        _providers[name] = PROVIDER_CLASSES[name]()
    return _providers[name]


def configure_logging(debug: bool) -> None:
    logging.basicConfig(format="%(levelname)s: %(message)s")
    logging.getLogger("mediagen").setLevel(logging.DEBUG if debug else logging.INFO)


# ------------------------------ Options ------------------------------

def generation_options(f):
    """Options every provider subcommand accepts."""
    options = [
        click.option('--prompt', '-p', type=str, help='Prompt text. Wins over --file.'),
        click.option('--file', '-f', 'prompt_file', type=str,
                     help='Prompt file (default: prompt.txt in the current directory).'),
        click.option('--all-prompts', is_flag=True, default=False,
                     help='Process every line of --file, or every *.txt file in the current directory.'),
        click.option('--model', '-m', type=str, help='Model key, alias or endpoint id. See "mediagen models".'),
        click.option('--format', 'format_', type=str, help='Named size or aspect ratio (provider-specific).'),
        click.option('--width', type=int, help='Width of generated image (requires --height).'),
        click.option('--height', type=int, help='Height of generated image (requires --width).'),
        click.option('--seed', '-s', type=int, help='Seed (0=random).'),
        click.option('--scale', 'guidance_scale', type=float, help='Guidance scale (where supported).'),
        click.option('--strength', type=float, help='Image-to-image strength (where supported).'),
        click.option('--steps', type=int, help='Inference steps (capped per model).'),
        click.option('--negative-prompt', type=str, help='What to avoid (where supported).'),
        click.option('--lora', 'loras', type=str, multiple=True,
                     help='LoRA names/URLs, comma-separated, optionally with :scale. Repeatable.'),
        click.option('--random-lora', is_flag=True, default=False, help='Add one random LoRA from the catalog.'),
        click.option('--image-url', 'image_urls', type=str, default='',
                     help='Comma-separated input images: URLs, local paths or names '
                          '(expanded to <SOURCE_IMAGE_URL><name>[.jpg]).'),
        click.option('--video-url', type=str, help='Input video URL or path.'),
        click.option('--audio-url', type=str, help='Input audio URL or path.'),
        click.option('--duration', type=int, help='Video/audio duration in seconds.'),
        click.option('--num-images', '-#', 'num_images', type=int, default=1, show_default=True,
                     help='Number of images per request (1-4).'),
        click.option('--count', type=click.IntRange(min=1), default=1, show_default=True,
                     help='Repeat each prompt this many times.'),
        click.option('--name', type=str, help='Base name for saved files.'),
        click.option('--embed-exif', is_flag=True, default=False, help='Write generation parameters into EXIF.'),
        click.option('--out', is_flag=True, default=False, help='Save under ./images of the current directory.'),
        click.option('--debug', is_flag=True, default=False, help='Log requests and raw responses.'),
        click.option('--dry-run', '-n', is_flag=True, default=False, help='Do not send; print the request and exit.'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def output_format_option(choices):
    return click.option('--output-format', type=click.Choice(choices), help='Output image format.')


# ------------------------------ Runner ------------------------------

def run_generation(provider_name: str, params: dict, extras: Optional[dict] = None) -> None:
    """Resolve settings and prompts, then generate every item in order.

    Items run strictly one after another. A failed item is reported and the
    batch continues; the exit code is 1 if anything failed.
    """
    configure_logging(params["debug"])
    adapter = get_provider(provider_name)
    extras = {k: v for k, v in (extras or {}).items() if v is not None}

    try:
        settings = Settings.from_env(provider_name, out=params["out"], debug=params["debug"],
                                     dry_run=params["dry_run"], embed_exif=params["embed_exif"])
        prompts = collect_prompts(params["prompt"], params["prompt_file"], params["all_prompts"])
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    coerce_image_size(params["format_"], params["width"], params["height"])

    loras = parse_loras(list(params["loras"]), adapter.loras)
    if params["random_lora"] and adapter.loras:
        picked = random_lora()
        click.echo(f"Random LoRA: {picked}")
        loras += parse_loras(picked, adapter.loras)
    logger.debug("LoRAs: %s", loras)

    values = {
        "negative_prompt": params["negative_prompt"],
        "model": params["model"],
        "format": params["format_"],
        "width": params["width"],
        "height": params["height"],
        "seed": params["seed"],
        "guidance_scale": params["guidance_scale"],
        "strength": params["strength"],
        "steps": params["steps"],
        "image_urls": tuple(parse_image_urls(params["image_urls"])),
        "video_url": params["video_url"],
        "audio_url": params["audio_url"],
        "duration": params["duration"],
        "num_images": params["num_images"] if params["num_images"] != 1 else None,
        "loras": tuple(loras),
        "extras": extras or None,
    }

    failures = 0
    total = len(prompts) * params["count"]
    n = 0
    for label, text in prompts:
        for _ in range(params["count"]):
            n += 1
            if total > 1:
                click.echo(f"\n=== [{n}/{total}] {label or text[:60]}")
            options = GenerationOptions.create(text, **values)
            try:
                outcome = adapter.generate(options, settings, name_prefix=params["name"] or label or None)
            except MissingParameterError as e:
                raise click.ClickException(f"{e}\nExample:\n  {e.example}")
            except UpstreamError as e:
                logger.error("%s", e)
                if e.detail is not None:
                    logger.debug("Error detail: %s", e.detail)
                failures += 1
                continue
            if not outcome.handled:
                failures += 1

    if failures:
        click.echo(f"{failures} of {total} generation(s) failed", err=True)
        raise SystemExit(1)


# ------------------------------ CLI ------------------------------

@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="mediagen")
def main():
    """Generate images, video and audio with fal.ai, Wavespeed, Venice and Replicate."""


@main.command(context_settings=CONTEXT_SETTINGS)
@generation_options
def fal(**params):
    """Generate with fal.ai (FAL_KEY)."""
    run_generation("fal", params)


@main.command(context_settings=CONTEXT_SETTINGS)
@generation_options
@click.option('--sync', 'enable_sync_mode', is_flag=True, help='Wait for the result in the request.')
@click.option('--enable-base64', 'enable_base64_output', is_flag=True,
              help='Return base64 data instead of URLs.')
@click.option('--aspect-ratio', type=str, help='Aspect ratio (where supported).')
@click.option('--resolution', type=str, help='Resolution preset (where supported).')
@output_format_option(["jpeg", "png", "webp"])
@click.option('--optimize', is_flag=True, help='Rewrite the prompt with the prompt optimizer first.')
@click.option('--optimize-mode', type=click.Choice(["image", "video"]), help='Optimizer target.')
@click.option('--optimize-style', type=click.Choice(OPTIMIZER_STYLES + ("random",)), help='Optimizer style.')
@click.option('--optimize-image', type=str, help='Reference image for the optimizer.')
def wavespeed(enable_sync_mode, enable_base64_output, aspect_ratio, resolution, output_format, optimize,
              optimize_mode, optimize_style, optimize_image, **params):
    """Generate with Wavespeed AI (WAVESPEED_KEY)."""
    run_generation("wavespeed", params, {
        "enable_sync_mode": enable_sync_mode or None,
        "enable_base64_output": enable_base64_output or None,
        "aspect_ratio": aspect_ratio,
        "resolution": resolution,
        "output_format": output_format,
        "optimize": optimize or None,
        "optimize_mode": optimize_mode,
        "optimize_style": optimize_style,
        "optimize_image": optimize_image,
    })


@main.command(context_settings=CONTEXT_SETTINGS)
@generation_options
@click.option('--style-preset', type=str, help='Venice style preset, e.g. "Photographic".')
@output_format_option(["png", "jpeg", "webp"])
@click.option('--hide-watermark/--show-watermark', default=None, help='Watermark toggle (hidden by default).')
@click.option('--lora-strength', type=click.IntRange(0, 100), help='Strength of the model\'s built-in LoRA (0-100).')
@click.option('--safe-mode/--no-safe-mode', default=None, help='Blur adult content (Venice default: on).')
@click.option('--embed-exif-metadata', is_flag=True, help='Ask Venice to embed the prompt in the image EXIF.')
def venice(style_preset, output_format, hide_watermark, lora_strength, safe_mode, embed_exif_metadata, **params):
    """Generate with Venice AI (VENICE_API_TOKEN)."""
    run_generation("venice", params, {
        "style_preset": style_preset,
        "output_format": output_format,
        "hide_watermark": hide_watermark,
        "lora_strength": lora_strength,
        "safe_mode": safe_mode,
        "embed_exif_metadata": embed_exif_metadata or None,
    })


@main.command(context_settings=CONTEXT_SETTINGS)
@generation_options
@output_format_option(["webp", "jpg", "png"])
def replicate(output_format, **params):
    """Generate with Replicate (REPLICATE_API_TOKEN)."""
    run_generation("replicate", params, {"output_format": output_format})


@main.command("replicate-get", context_settings=CONTEXT_SETTINGS)
@click.argument("prediction_id", required=False)
@click.option('--out', is_flag=True, default=False, help='Save under ./images of the current directory.')
@click.option('--debug', is_flag=True, default=False, help='Log requests and raw responses.')
def replicate_get(prediction_id, out, debug):
    """Download one Replicate prediction, or every one not yet on disk."""
    configure_logging(debug)
    adapter = get_provider("replicate")
    try:
        settings = Settings.from_env("replicate", out=out, debug=debug)
        summary = adapter.download_predictions(settings, prediction_id)
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    except UpstreamError as e:
        logger.error("%s", e)
        raise SystemExit(1)
    if summary.failed:
        raise SystemExit(1)


# ------------------------------ Discovery ------------------------------

def _describe(adapter: ProviderAdapter, key: str) -> None:
    m = adapter.registry.get(key)
    if m is None:
        raise click.ClickException(f"Unknown model '{key}' for {adapter.name}")
    c = m.constraints
    click.echo(f"{m.name}")
    click.echo(f"  Endpoint:    {m.endpoint_id}")
    click.echo(f"  Category:    {m.category}")
    click.echo(f"  Aliases:     {', '.join(a for a in sorted(m.aliases) if a != m.endpoint_id) or '-'}")
    if m.description:
        click.echo(f"  Description: {m.description}")
    click.echo(f"  LoRAs:       {'yes' if m.supports_loras else 'no'}")
    if m.required_inputs:
        click.echo(f"  Requires:    {', '.join(sorted(m.required_inputs))}")
    for label, value in (("Max size", f"{c.max_width}x{c.max_height}" if c.max_width else None),
                         ("Max steps", c.max_steps), ("Divisor", c.width_height_divisor),
                         ("Prompt limit", c.prompt_character_limit)):
        if value:
            click.echo(f"  {label + ':':<13}{value}")


@main.command(context_settings=CONTEXT_SETTINGS)
@click.argument("provider", type=click.Choice(sorted(PROVIDER_CLASSES)))
@click.option('--search', type=str, help='Filter by name, description or endpoint.')
@click.option('--category', type=click.Choice(CATEGORIES), help='Only models of this category.')
@click.option('--info', type=str, help='Show details of one model.')
@click.option('--categories', 'list_categories', is_flag=True, default=False, help='List categories with counts.')
@click.option('--loras', 'list_loras', is_flag=True, default=False, help='List the LoRA catalog.')
def models(provider, search, category, info, list_categories, list_loras):
    """List the models (and LoRAs) a provider offers."""
    adapter = get_provider(provider)
    registry = adapter.registry

    if info:
        _describe(adapter, info)
        return
    if list_categories:
        for cat in registry.categories():
            click.echo(f"{cat:<16} {len(registry.by_category(cat))}")
        return
    if list_loras:
        if not adapter.loras:
            click.echo(f"{provider} has no LoRA catalog")
        for key, lora in sorted(adapter.loras.items()):
            click.echo(f"{key:<18} scale={lora.scale:<4} {lora.keyword.strip() or '-'}")
        return

    found = registry.search(search) if search else list(registry)
    if category:
        found = [m for m in found if m.category == category]
    default = registry.default().endpoint_id
    for m in found:
        short = sorted((a for a in m.aliases if a != m.endpoint_id), key=len)
        marker = " (default)" if m.endpoint_id == default else ""
        click.echo(f"{m.endpoint_id:<48} {m.category:<15} {', '.join(short)}{marker}")
    click.echo(f"\n{len(found)} model(s)")


if __name__ == "__main__":
    main()

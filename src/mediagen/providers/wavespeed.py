"""Wavespeed AI: REST submit, then poll the prediction result URL."""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime, timezone

import click
import requests

from ..builder import RequestBuilder
from ..config import Settings
from ..download import encode_local
from ..errors import UpstreamError
from ..options import GenerationOptions
from ..poll import WAVESPEED_STATES, JobState, map_state, poll_until_terminal
from ..registry import IMAGE_TO_IMAGE, IMAGE_URL, TEXT_TO_IMAGE, ModelDescriptor, ModelRegistry, model
from .base import ProviderAdapter, call_api

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.wavespeed.ai/api/v3"
OPTIMIZER_ENDPOINT = "wavespeed-ai/prompt-optimizer"

DEFAULT_MODEL = "bytedance/seedream-v4"
DEFAULT_SIZE = "2048*2048"

SIZES = {
    "square": "1024*1024",
    "1:1": "1024*1024",
    "portrait": "768*1024",
    "3:4": "768*1024",
    "landscape": "1024*768",
    "4:3": "1024*768",
    "tall": "576*1024",
    "9:16": "576*1024",
    "wide": "1024*576",
    "16:9": "1024*576",
    "square_hd": "2048*2048",
    "portrait_hd": "1536*2048",
    "landscape_hd": "2048*1536",
    "tall_hd": "1152*2048",
    "wide_hd": "2048*1152",
    "4k": "4096*4096",
}

OPTIMIZER_STYLES = ("default", "artistic", "photographic", "technical", "anime", "realistic")

# Request fields passed through from the command line when given
PASSTHROUGH = ("enable_base64_output", "enable_sync_mode", "aspect_ratio", "resolution", "output_format")

MODELS = [
    model("wavespeed-ai/flux-2-flex/text-to-image", aliases=["flux-2-flex", "flux2", "flex"],
          name="FLUX.2 [flex]", description="Typography-aware FLUX.2 text-to-image",
          max_width=1536, max_height=1536),
    model("wavespeed-ai/z-image/turbo", aliases=["z-image-turbo", "z-image", "turbo", "z-wave"],
          name="Z-Image Turbo", description="Fast photorealistic text-to-image", max_width=1536, max_height=1536),
    model("bytedance/seedream-v4.5", aliases=["seedream-v4.5", "seedream", "v4.5"],
          name="Seedream v4.5", description="ByteDance text-to-image up to 4K", max_width=4096, max_height=4096),
    model("bytedance/seedream-v4", aliases=["seedream-v4", "v4"],
          name="Seedream v4", description="ByteDance text-to-image up to 4K", max_width=4096, max_height=4096),
    model("bytedance/seedream-v3.1", aliases=["seedream-v3.1", "v3.1"],
          name="Seedream v3.1", description="ByteDance text-to-image", max_width=2048, max_height=2048),
    model("alibaba/wan-2.5/text-to-image", aliases=["wan-2.5", "wan2.5", "wan"],
          name="Wan 2.5", description="Alibaba text-to-image", max_width=1440, max_height=1440),
    model("bytedance/seedream-v4.5/edit", IMAGE_TO_IMAGE, aliases=["seedream-v4.5-edit", "seedream-edit"],
          requires=[IMAGE_URL], name="Seedream v4.5 Edit", description="Multi-image editing",
          max_width=4096, max_height=4096),
    model("bytedance/seedream-v4/edit", IMAGE_TO_IMAGE, aliases=["seedream-v4-edit", "v4-edit"],
          requires=[IMAGE_URL], name="Seedream v4 Edit", description="Multi-image editing",
          max_width=4096, max_height=4096),
    model("alibaba/wan-2.5/image-edit", IMAGE_TO_IMAGE, aliases=["wan-2.5-edit", "wan-edit"],
          requires=[IMAGE_URL], name="Wan 2.5 Edit", description="Alibaba image editing",
          max_width=1440, max_height=1440),
    model("google/nano-banana-pro/edit", IMAGE_TO_IMAGE, aliases=["nano-banana-pro-edit", "nano-banana"],
          requires=[IMAGE_URL], name="Nano Banana Pro Edit", description="Google image editing"),
]

REQUIRED = {IMAGE_TO_IMAGE: [IMAGE_URL]}


def size(options: GenerationOptions):
    if options.width and options.height:
        return f"{options.width}*{options.height}"
    if not options.format:
        return None
    if options.format in SIZES:
        return SIZES[options.format]
    if "*" in options.format:
        return options.format
    logger.warning("Unknown format '%s', using %s", options.format, DEFAULT_SIZE)
    return DEFAULT_SIZE


def _optional(o: GenerationOptions, body: dict) -> dict:
    if o.negative_prompt:
        body["negative_prompt"] = o.negative_prompt
    if o.num_images > 1:
        body["num_images"] = o.num_images
    for key in PASSTHROUGH:
        if o.extras.get(key) is not None:
            body[key] = o.extras[key]
    return body


def text_to_image(o: GenerationOptions) -> dict:
    return _optional(o, {"prompt": o.prompt, "size": size(o) or DEFAULT_SIZE})


def image_to_image(o: GenerationOptions) -> dict:
    body = {"prompt": o.prompt, "images": list(o.image_urls)}
    if size(o):
        body["size"] = size(o)
    return _optional(o, body)


STRATEGIES = {TEXT_TO_IMAGE: text_to_image, IMAGE_TO_IMAGE: image_to_image}


def _unwrap(payload):
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def _progress(attempt: int, state: JobState, data) -> None:
    if state is JobState.COMPLETED:
        click.echo("\nGeneration complete!")
    elif not state.terminal:
        click.echo(f"\rStatus: {data.get('status', 'unknown')} ({attempt} checks)", nl=False)


class WavespeedProvider(ProviderAdapter):
    name = "wavespeed"
    fallback_stem = "wavespeed"

    def __init__(self):
        self.registry = ModelRegistry(MODELS, DEFAULT_MODEL)
        self.builder = RequestBuilder(STRATEGIES, REQUIRED, command="wavespeed")

    def mock_result(self, descriptor: ModelDescriptor, body: dict) -> dict:
        return {
            "status": "completed",
            "id": "mock-prediction-id",
            "model": descriptor.endpoint_id,
            "created_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "outputs": ["https://example.com/mock-wavespeed-output.png"],
            "has_nsfw_contents": [False],
        }

    def normalize_result(self, result):
        return _unwrap(result)

    def prepare(self, descriptor: ModelDescriptor, options: GenerationOptions,
                settings: Settings) -> GenerationOptions:
        # Local input images travel inline as data URIs
        options = replace(options, image_urls=tuple(encode_local(u) for u in options.image_urls))
        if options.extras.get("optimize"):
            options = replace(options, prompt=self.optimize_prompt(options, settings))
        return options

    # Transport -------------------------------------------------------

    def _run(self, session: requests.Session, endpoint: str, body: dict, api_key: str):
        """POST to the endpoint and poll until the prediction is terminal."""
        data = _unwrap(call_api(session, "POST", f"{API_BASE_URL}/{endpoint}", api_key, json_body=body))
        if not isinstance(data, dict):
            raise UpstreamError("Unexpected response from Wavespeed", detail=data)
        state = map_state(data.get("status"), WAVESPEED_STATES)
        if state is JobState.COMPLETED:
            return data
        if state is JobState.FAILED:
            raise UpstreamError(f"Generation failed: {data.get('error') or 'Unknown error'}", detail=data)
        if not data.get("id"):
            raise UpstreamError("No prediction id in Wavespeed response", detail=data)

        result_url = (data.get("urls") or {}).get("get") or f"{API_BASE_URL}/predictions/{data['id']}/result"
        logger.debug("Prediction %s submitted, polling %s", data["id"], result_url)

        def check():
            current = _unwrap(call_api(session, "GET", result_url, api_key))
            return map_state(current.get("status"), WAVESPEED_STATES), current

        return poll_until_terminal(check, on_update=_progress)

    def submit(self, descriptor: ModelDescriptor, body: dict, settings: Settings):
        click.echo("Submitting request to Wavespeed AI...")
        with requests.Session() as session:
            return self._run(session, descriptor.endpoint_id, body, settings.api_key)

    def optimize_prompt(self, options: GenerationOptions, settings: Settings) -> str:
        """Rewrite the prompt with Wavespeed's prompt optimizer."""
        extras = options.extras
        style = extras.get("optimize_style") or "default"
        if style == "random":
            style = random.choice(OPTIMIZER_STYLES)
        body = {
            "text": options.prompt,
            "mode": extras.get("optimize_mode") or "image",
            "style": style,
            "enable_sync_mode": True,
        }
        if extras.get("optimize_image"):
            body["image"] = encode_local(extras["optimize_image"])

        click.echo(f"Optimizing prompt ({body['mode']}, {body['style']})...")
        with requests.Session() as session:
            data = self._run(session, OPTIMIZER_ENDPOINT, body, settings.api_key)
        outputs = data.get("outputs") or []
        if not outputs or not isinstance(outputs[0], str):
            logger.warning("Prompt optimizer returned nothing, keeping the original prompt")
            return options.prompt
        click.echo(f"Optimized prompt: {outputs[0]}")
        return outputs[0]

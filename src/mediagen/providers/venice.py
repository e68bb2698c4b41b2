"""Venice AI: synchronous image generation with base64 results."""

from __future__ import annotations

import base64
import logging

import click
import requests

from ..builder import RequestBuilder
from ..config import Settings
from ..errors import UpstreamError
from ..options import GenerationOptions
from ..registry import TEXT_TO_IMAGE, ModelDescriptor, ModelRegistry, model
from .base import ProviderAdapter, call_api

logger = logging.getLogger(__name__)

API_URL = "https://api.venice.ai/api/v1/image/generate"

DEFAULT_MODEL = "flux-dev"
DEFAULT_WIDTH = 1024
DEFAULT_HEIGHT = 1024
DEFAULT_STEPS = 25
DEFAULT_CFG_SCALE = 2
DEFAULT_OUTPUT_FORMAT = "png"

FORMATS = {
    "square": (1024, 1024),
    "portrait": (768, 1024),
    "landscape": (1024, 768),
    "wide": (1536, 864),
}

MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "webp": "image/webp"}

# Request fields passed through from the command line when given
PASSTHROUGH = ("style_preset", "lora_strength", "safe_mode", "embed_exif_metadata")


def _venice(model_id: str, name: str, description: str, max_steps: int, prompt_limit: int, **kw):
    return model(model_id, name=name, description=description, max_steps=max_steps,
                 prompt_character_limit=prompt_limit, **kw)


MODELS = [
    _venice("flux-dev", "FLUX Standard", "FLUX.1 [dev], balanced quality", 30, 2048,
            width_height_divisor=8),
    _venice("flux-dev-uncensored", "FLUX Custom", "FLUX.1 [dev] without content filter", 30, 2048,
            aliases=["uncensored"], width_height_divisor=8),
    _venice("venice-sd35", "Venice SD3.5", "Stable Diffusion 3.5 Large", 30, 1500,
            aliases=["sd35"], width_height_divisor=16),
    _venice("hidream", "HiDream", "HiDream I1 for prompt adherence", 50, 1500,
            width_height_divisor=8),
    _venice("qwen-image", "Qwen Image", "Strong text rendering", 8, 1500,
            aliases=["qwen"], width_height_divisor=8),
    _venice("wai-Illustrious", "Anime (WAI)", "Illustrious anime model", 30, 1500,
            aliases=["wai", "anime"], width_height_divisor=8),
    _venice("lustify-sdxl", "Lustify SDXL", "SDXL photoreal finetune", 50, 1500,
            aliases=["lustify"], width_height_divisor=8),
]

# Distilled models run with few steps
OVERRIDES = {
    "qwen-image": {"steps": 8},
}


def dimensions(o: GenerationOptions):
    if o.width and o.height:
        return o.width, o.height
    if o.format:
        if o.format in FORMATS:
            return FORMATS[o.format]
        logger.warning("Unknown format '%s', using %dx%d", o.format, DEFAULT_WIDTH, DEFAULT_HEIGHT)
    return DEFAULT_WIDTH, DEFAULT_HEIGHT


def text_to_image(o: GenerationOptions) -> dict:
    width, height = dimensions(o)
    body = {
        "prompt": o.prompt,
        "width": width,
        "height": height,
        "steps": o.steps or DEFAULT_STEPS,
        "cfg_scale": o.guidance_scale if o.guidance_scale is not None else DEFAULT_CFG_SCALE,
        "hide_watermark": o.extras.get("hide_watermark", True),
        "format": o.extras.get("output_format") or DEFAULT_OUTPUT_FORMAT,
        "return_binary": False,
    }
    if o.num_images > 1:
        body["variants"] = o.num_images
    if o.negative_prompt:
        body["negative_prompt"] = o.negative_prompt
    for key in PASSTHROUGH:
        if o.extras.get(key) is not None:
            body[key] = o.extras[key]
    return body


def as_data_uris(images, fmt: str):
    """Venice returns bare base64 strings; the downloader understands data URIs."""
    mime = MIME_TYPES.get(fmt, "application/octet-stream")
    return [img if img.startswith("data:") else f"data:{mime};base64,{img}" for img in images or []]


class VeniceProvider(ProviderAdapter):
    name = "venice"
    fallback_stem = "venice"

    def __init__(self):
        self.registry = ModelRegistry(MODELS, DEFAULT_MODEL)
        self.builder = RequestBuilder({TEXT_TO_IMAGE: text_to_image}, overrides=OVERRIDES, command="venice")

    def mock_result(self, descriptor: ModelDescriptor, body: dict) -> dict:
        payload = base64.b64encode(b"mock venice image").decode()
        return {"id": "mock-venice-id", "images": as_data_uris([payload], body.get("format", "png"))}

    def submit(self, descriptor: ModelDescriptor, body: dict, settings: Settings):
        click.echo("Generating image with Venice AI...")
        with requests.Session() as session:
            result = call_api(session, "POST", API_URL, settings.api_key,
                              json_body={"model": descriptor.endpoint_id, **body})
        if not isinstance(result, dict) or not result.get("images"):
            raise UpstreamError("Venice returned no images", detail=result)
        result["images"] = as_data_uris(result["images"], body.get("format", DEFAULT_OUTPUT_FORMAT))
        return result

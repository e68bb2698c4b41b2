"""Category-driven request body construction.

Each provider hands a RequestBuilder its category strategies (functions from
GenerationOptions to a base body), the inputs each category requires and a
per-endpoint override table. ``build`` then runs the same pipeline for every
provider: required inputs, strategy, overrides, seed, LoRAs, clamping.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .errors import MissingParameterError
from .options import GenerationOptions, LoraSelection, parse_dimensions
from .registry import (AUDIO_URL, IMAGE_URL, TEXT_TO_IMAGE, VIDEO_URL, Constraints, ModelDescriptor)

logger = logging.getLogger(__name__)

Strategy = Callable[[GenerationOptions], dict]

# Request field -> option that counts as the user explicitly setting it
OPTION_FOR_FIELD = {
    "guidance_scale": "guidance_scale",
    "cfg_scale": "guidance_scale",
    "strength": "strength",
    "num_inference_steps": "steps",
    "steps": "steps",
    "seed": "seed",
    "duration": "duration",
    "num_images": "num_images",
    "negative_prompt": "negative_prompt",
    "image_size": "format",
    "size": "format",
    "output_format": "output_format",
}

# Option attribute, CLI flag
INPUT_FLAGS = {
    IMAGE_URL: ("image_url", "--image-url"),
    VIDEO_URL: ("video_url", "--video-url"),
    AUDIO_URL: ("audio_url", "--audio-url"),
}


# ------------------------------ Clamping ------------------------------

def constrain_dimensions(width: int, height: int, max_width: Optional[int] = None,
                         max_height: Optional[int] = None, divisor: Optional[int] = None) -> Tuple[int, int]:
    """Scale (width, height) down to fit the maxima, keeping the aspect ratio.

    Never upscales. With a divisor, both sides are rounded down to a multiple of it.
    """
    scale = min(
        (max_width / width) if max_width else math.inf,
        (max_height / height) if max_height else math.inf,
        1.0,
    )
    if scale < 1:
        width = math.floor(width * scale)
        height = math.floor(height * scale)
    if divisor:
        width = max(divisor, width - width % divisor)
        height = max(divisor, height - height % divisor)
    return width, height


def _clamp_size_fields(body: dict, c: Constraints) -> None:
    if not (c.max_width or c.max_height or c.width_height_divisor):
        return

    def fit(w, h):
        new = constrain_dimensions(w, h, c.max_width, c.max_height, c.width_height_divisor)
        if new != (w, h):
            logger.warning("Size %dx%d exceeds model limits, using %dx%d", w, h, *new)
        return new

    if isinstance(body.get("width"), int) and isinstance(body.get("height"), int):
        body["width"], body["height"] = fit(body["width"], body["height"])
    if isinstance(body.get("image_size"), dict):
        dims = parse_dimensions(body["image_size"])
        if dims:
            w, h = fit(*dims)
            body["image_size"] = {"width": w, "height": h}
    if isinstance(body.get("size"), str):
        dims = parse_dimensions(body["size"])
        if dims:
            w, h = fit(*dims)
            body["size"] = f"{w}*{h}"


def _clamp_steps(body: dict, c: Constraints) -> None:
    if not c.max_steps:
        return
    for key in ("num_inference_steps", "steps"):
        value = body.get(key)
        if isinstance(value, int) and value > c.max_steps:
            logger.warning("Steps value was capped at %d (maximum allowed value)", c.max_steps)
            body[key] = c.max_steps


def _clamp_prompt(body: dict, c: Constraints) -> None:
    limit = c.prompt_character_limit
    prompt = body.get("prompt")
    if limit and isinstance(prompt, str) and len(prompt) > limit:
        logger.warning("Prompt truncated to %d characters (model limit)", limit)
        body["prompt"] = prompt[:limit]


# ------------------------------ Overrides and LoRAs ------------------------------

def apply_overrides(body: dict, overrides: Mapping, options: GenerationOptions) -> dict:
    """Merge model override params; a value the user set explicitly is kept."""
    merged = dict(body)
    for key, value in overrides.items():
        option = OPTION_FOR_FIELD.get(key)
        if option and options.has(option):
            continue
        merged[key] = value
    return merged


def apply_loras(body: dict, loras: Sequence[LoraSelection]) -> dict:
    """Prepend LoRA keywords to the prompt and append weights to ``loras``."""
    if not loras:
        return body
    merged = dict(body)
    keywords = ". ".join(l.keyword for l in loras if l.keyword)
    if keywords and merged.get("prompt"):
        merged["prompt"] = f"{keywords}. {merged['prompt']}"
    merged["loras"] = list(merged.get("loras", [])) + [l.as_request() for l in loras]
    return merged


def usage_example(command: str, category: str, missing: Sequence[str]) -> str:
    flags = " ".join(f'{INPUT_FLAGS[m][1]} "./input"' if m in INPUT_FLAGS else f"--{m.replace('_', '-')} ..."
                     for m in missing)
    return f'mediagen {command} --model <{category} model> {flags} --prompt "..."'


# ------------------------------ Builder ------------------------------

class RequestBuilder:

    def __init__(self, strategies: Mapping[str, Strategy], required: Optional[Mapping[str, Sequence[str]]] = None,
                 overrides: Optional[Mapping[str, Mapping]] = None, command: str = ""):
        if TEXT_TO_IMAGE not in strategies:
            raise ValueError("A text-to-image strategy is required as the fallback")
        self.strategies: Dict[str, Strategy] = dict(strategies)
        self.required = {k: tuple(v) for k, v in (required or {}).items()}
        self.overrides = {k: dict(v) for k, v in (overrides or {}).items()}
        self.command = command

    def required_for(self, category: str, descriptor: Optional[ModelDescriptor] = None) -> Tuple[str, ...]:
        needed = list(self.required.get(category, ()))
        if descriptor is not None:
            needed += [r for r in sorted(descriptor.required_inputs) if r not in needed]
        return tuple(needed)

    def check_required(self, category: str, options: GenerationOptions,
                       descriptor: Optional[ModelDescriptor] = None) -> None:
        missing = []
        for name in self.required_for(category, descriptor):
            attr = INPUT_FLAGS[name][0] if name in INPUT_FLAGS else name
            if not getattr(options, attr, None):
                missing.append(name)
        if missing:
            raise MissingParameterError(missing, category, usage_example(self.command, category, missing))

    def _base(self, category: str, options: GenerationOptions) -> dict:
        strategy = self.strategies.get(category, self.strategies[TEXT_TO_IMAGE])
        body = strategy(options)
        if options.seed is not None:
            body["seed"] = options.seed
        return body

    def build_for(self, category: str, options: GenerationOptions) -> dict:
        """Category-only form: no model overrides, LoRAs or constraints."""
        self.check_required(category, options)
        return self._base(category, options)

    def build(self, descriptor: ModelDescriptor, options: GenerationOptions) -> dict:
        category = descriptor.category
        self.check_required(category, options, descriptor)

        body = self._base(category, options)
        body = apply_overrides(body, self.overrides.get(descriptor.endpoint_id, {}), options)

        if options.loras:
            if descriptor.supports_loras:
                body = apply_loras(body, options.loras)
            else:
                logger.debug("Model %s does not support LoRAs, selections ignored", descriptor.endpoint_id)

        _clamp_size_fields(body, descriptor.constraints)
        _clamp_steps(body, descriptor.constraints)
        _clamp_prompt(body, descriptor.constraints)
        return body

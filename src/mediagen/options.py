from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from random import randint
from typing import Any, FrozenSet, Mapping, Optional, Tuple

import click

logger = logging.getLogger(__name__)

MIN_IMAGES = 1
MAX_IMAGES = 4


@dataclass(frozen=True)
class LoraSelection:
    """One LoRA to apply: weights location, strength and trigger phrase."""
    path: str
    scale: float = 1.0
    keyword: str = ""

    def as_request(self) -> dict:
        return {"path": self.path, "scale": self.scale}


@dataclass(frozen=True)
class GenerationOptions:
    """Normalized user options for one generation. Never mutated after construction.

    ``explicit`` names the options the user actually typed; the request builder
    uses it so that user values beat model overrides.
    """
    prompt: str
    negative_prompt: Optional[str] = None
    model: Optional[str] = None
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    guidance_scale: Optional[float] = None
    strength: Optional[float] = None
    steps: Optional[int] = None
    image_urls: Tuple[str, ...] = ()
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration: Optional[int] = None
    num_images: int = 1
    loras: Tuple[LoraSelection, ...] = ()
    extras: Mapping[str, Any] = field(default_factory=dict)
    explicit: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        object.__setattr__(self, "num_images", clamp_num_images(self.num_images))
        object.__setattr__(self, "image_urls", tuple(self.image_urls))
        object.__setattr__(self, "loras", tuple(self.loras))
        object.__setattr__(self, "explicit", frozenset(self.explicit))

    @classmethod
    def create(cls, prompt: str, **values) -> "GenerationOptions":
        """Build options from a value bag, recording which values were supplied.

        A seed of 0 is replaced by a random seed here, so the builder itself
        stays deterministic.
        """
        supplied = {k for k, v in values.items() if v is not None and v != () and v != []}
        if values.get("seed") == 0:
            values["seed"] = randint(1, 2 ** 32 - 1)
        values = {k: v for k, v in values.items() if v is not None}
        return cls(prompt=prompt, explicit=frozenset(supplied), **values)

    @property
    def image_url(self) -> Optional[str]:
        return self.image_urls[0] if self.image_urls else None

    def has(self, name: str) -> bool:
        return name in self.explicit or name in self.extras


def clamp_num_images(value) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = MIN_IMAGES
    return min(max(n, MIN_IMAGES), MAX_IMAGES)


# ------------------------------ LoRAs ------------------------------

def _split_path_scale(token: str) -> Tuple[str, Optional[float]]:
    t = token.strip()
    if not t:
        return "", None
    if "://" in t:
        # URL: only treat a colon after the last slash as scale separator
        last_slash = t.rfind('/')
        last_colon = t.rfind(':')
        if last_colon > last_slash:
            try:
                return t[:last_colon], float(t[last_colon + 1:].strip())
            except ValueError:
                return t[:last_colon], 1.0
        return t, None
    if ':' in t:
        path, scale_str = t.rsplit(':', 1)
        try:
            return path.strip(), float(scale_str.strip())
        except ValueError:
            return path.strip(), 1.0
    return t, None


def parse_loras(loras, catalog: Optional[Mapping[str, LoraSelection]] = None) -> list[LoraSelection]:
    """Normalize LoRA input into a list of LoraSelection, keeping input order.

    Accepts a JSON list/dict or comma-separated tokens "name[:scale]" or URL[:scale].
    Names found in ``catalog`` take its URL, default scale and keyword. Other
    shorthand names (no slash) are expanded to <SAFETENSORS_URL><name>.safetensors
    when that variable is set, and dropped with a warning otherwise.
    """
    catalog = catalog or {}
    if not loras:
        return []
    if isinstance(loras, (list, tuple)):
        loras = ",".join(str(x) for x in loras)

    pref = os.getenv("SAFETENSORS_URL")

    def to_selection(name: str, scale: Optional[float]) -> Optional[LoraSelection]:
        name = name.strip()
        if not name:
            return None
        if name in catalog:
            known = catalog[name]
            return LoraSelection(known.path, known.scale if scale is None else scale, known.keyword)
        if "://" in name or "/" in name:
            return LoraSelection(name, 1.0 if scale is None else scale)
        if pref:
            return LoraSelection(f"{pref}{name}.safetensors", 1.0 if scale is None else scale)
        logger.warning("Unknown LoRA '%s' ignored. Available: %s", name, ", ".join(sorted(catalog)))
        return None

    result: list[LoraSelection] = []
    first = loras.lstrip()
    if first.startswith('[') or first.startswith('{'):
        try:
            parsed = json.loads(loras)
        except json.JSONDecodeError:
            parsed = None
        if parsed is not None:
            if isinstance(parsed, dict):
                parsed = [parsed]
            for it in parsed if isinstance(parsed, list) else []:
                if isinstance(it, str):
                    item = to_selection(*_split_path_scale(it))
                elif isinstance(it, dict):
                    path = it.get('path') or it.get('url') or it.get('name')
                    item = to_selection(str(path), float(it['scale']) if 'scale' in it else None) if path else None
                else:
                    item = None
                if item:
                    result.append(item)
            return result

    for part in loras.split(','):
        item = to_selection(*_split_path_scale(part))
        if item:
            result.append(item)
    return result


# ------------------------------ Input media ------------------------------

def parse_image_urls(image_urls) -> list[str]:
    """Normalize comma-separated image identifiers.

    Rules:
    - Split on commas, trim whitespace, ignore empty parts.
    - Tokens containing "://" (URLs, data URIs) and existing local files are kept as-is.
    - Otherwise the token is a shorthand name expanded to
      <SOURCE_IMAGE_URL><name>, appending ".jpg" if the name has no extension.
      Without SOURCE_IMAGE_URL the token is kept as given.
    """
    if isinstance(image_urls, (list, tuple)):
        image_urls = ",".join(image_urls)
    pref = os.getenv("SOURCE_IMAGE_URL")
    out: list[str] = []
    for raw in (image_urls or "").split(','):
        token = raw.strip()
        if not token:
            continue
        if "://" in token or token.startswith("data:") or Path(token).expanduser().exists() or not pref:
            out.append(token)
            continue
        name = token
        if '.' not in name.split('/')[-1]:
            name = f"{name}.jpg"
        out.append(f"{pref}{name}")
    return out


def is_local_file(value: Optional[str]) -> bool:
    return bool(value) and "://" not in value and not value.startswith("data:") and Path(value).expanduser().is_file()


# ------------------------------ Sizes ------------------------------

def coerce_image_size(image_size, width, height):
    """Return a named size, a {width, height} dict or None, validating inputs.

    Rules:
    - If image_size (named) is provided, width/height must NOT be provided.
    - If width/height are used, both must be provided together.
    """
    if image_size is not None and (width or height):
        raise click.UsageError("--format cannot be combined with --width/--height")

    if width or height:
        if not (width and height):
            raise click.UsageError("--width and --height must be provided together")
        return {"width": int(width), "height": int(height)}

    return image_size


def parse_dimensions(value) -> Optional[Tuple[int, int]]:
    """Parse "1024*768", "1024x768" or {"width", "height"} into a tuple."""
    if isinstance(value, Mapping):
        try:
            return int(value["width"]), int(value["height"])
        except (KeyError, TypeError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    for sep in ("*", "x", "X"):
        if sep in value:
            w, _, h = value.partition(sep)
            try:
                return int(w), int(h)
            except ValueError:
                return None
    return None

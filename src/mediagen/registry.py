from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# ------------------------------ Categories ------------------------------

TEXT_TO_IMAGE = "text-to-image"
IMAGE_TO_IMAGE = "image-to-image"
IMAGE_TO_VIDEO = "image-to-video"
TEXT_TO_VIDEO = "text-to-video"
VIDEO_TO_VIDEO = "video-to-video"
IMAGE_TO_3D = "image-to-3d"
TEXT_TO_AUDIO = "text-to-audio"
AUDIO_TO_AUDIO = "audio-to-audio"
TEXT_TO_SPEECH = "text-to-speech"
VISION = "vision"
TEXT_TO_JSON = "text-to-json"
TRAINING = "training"

CATEGORIES = (
    TEXT_TO_IMAGE, IMAGE_TO_IMAGE, IMAGE_TO_VIDEO, TEXT_TO_VIDEO, VIDEO_TO_VIDEO, IMAGE_TO_3D,
    TEXT_TO_AUDIO, AUDIO_TO_AUDIO, TEXT_TO_SPEECH, VISION, TEXT_TO_JSON, TRAINING,
)

# Inputs a model may require on top of the prompt
IMAGE_URL = "image_url"
VIDEO_URL = "video_url"
AUDIO_URL = "audio_url"


# ------------------------------ Descriptors ------------------------------

@dataclass(frozen=True)
class Constraints:
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    max_steps: Optional[int] = None
    width_height_divisor: Optional[int] = None
    prompt_character_limit: Optional[int] = None


@dataclass(frozen=True)
class ModelDescriptor:
    endpoint_id: str
    category: str = TEXT_TO_IMAGE
    aliases: FrozenSet[str] = frozenset()
    constraints: Constraints = field(default_factory=Constraints)
    supports_loras: bool = False
    required_inputs: FrozenSet[str] = frozenset()
    display_name: str = ""
    description: str = ""

    @property
    def name(self) -> str:
        return self.display_name or self.endpoint_id


def model(endpoint_id: str, category: str = TEXT_TO_IMAGE, *, aliases: Iterable[str] = (),
          supports_loras: bool = False, requires: Iterable[str] = (), name: str = "", description: str = "",
          **constraints) -> ModelDescriptor:
    """Shorthand used by the provider tables."""
    return ModelDescriptor(
        endpoint_id=endpoint_id,
        category=category,
        aliases=frozenset(aliases),
        constraints=Constraints(**constraints),
        supports_loras=supports_loras,
        required_inputs=frozenset(requires),
        display_name=name,
        description=description,
    )


# ------------------------------ Short keys ------------------------------

_VERSION_SEGMENT = re.compile(r"^v?\d+")


def fal_short_key(endpoint_id: str) -> str:
    """Derive the short key fal users type for an endpoint.

    fal-ai/flux/dev -> dev, fal-ai/flux-pro/v1.1 -> fluxpro11, fal-ai/wan-i2v -> wan-i2v
    """
    key = re.sub(r"^fal-ai/", "", endpoint_id)
    if "/" not in key:
        return key
    parts = key.split("/")
    last = parts[-1]
    if _VERSION_SEGMENT.match(last):
        return parts[-2].replace("-", "") + re.sub(r"[^0-9]", "", last)
    return last


def specific_key(endpoint_id: str) -> str:
    """Collision-free key: provider prefix dropped, slashes turned into dashes."""
    return re.sub(r"^[^/]+/", "", endpoint_id, count=1).replace("/", "-") if "/" in endpoint_id else endpoint_id


# ------------------------------ Registry ------------------------------

DefaultPolicy = Callable[[bool], str]


class ModelRegistry:
    """Static catalog of one provider's models, addressed by alias or endpoint id.

    The alias index is built once. Indexing order is: generated short key
    (re-keyed to the specific key on collision), aliases declared by the
    entry, manual shortcuts (these win), then each endpoint id to itself.
    Descriptors handed out carry the aliases that actually resolve to them.
    """

    def __init__(self, entries: Sequence[ModelDescriptor], default: DefaultPolicy | str,
                 short_key: Optional[Callable[[str], str]] = None,
                 shortcuts: Optional[Mapping[str, str]] = None):
        self._default = default if callable(default) else (lambda has_loras, _d=default: _d)
        index: Dict[str, str] = {}
        by_endpoint: Dict[str, ModelDescriptor] = {}

        for entry in entries:
            endpoint = entry.endpoint_id
            if endpoint in by_endpoint:
                raise ValueError(f"Duplicate endpoint id in registry: {endpoint}")
            by_endpoint[endpoint] = entry

            if short_key is not None:
                key = short_key(endpoint)
                if index.get(key, endpoint) != endpoint:
                    key = specific_key(endpoint)
                if index.get(key, endpoint) == endpoint:
                    index[key] = endpoint

            for alias in entry.aliases:
                owner = index.get(alias)
                if owner is not None and owner != endpoint:
                    raise ValueError(f"Alias {alias!r} of {endpoint} already maps to {owner}")
                index[alias] = endpoint

        for alias, endpoint in (shortcuts or {}).items():
            if endpoint in by_endpoint:
                index[alias] = endpoint
            else:
                logger.debug("Shortcut %s points at unknown endpoint %s, skipped", alias, endpoint)

        for endpoint in by_endpoint:
            index[endpoint] = endpoint

        aliases: Dict[str, set] = {endpoint: set() for endpoint in by_endpoint}
        for alias, endpoint in index.items():
            aliases[endpoint].add(alias)

        self._models: Dict[str, ModelDescriptor] = {
            endpoint: replace(entry, aliases=frozenset(aliases[endpoint]))
            for endpoint, entry in by_endpoint.items()
        }
        self._index = index

        for has_loras in (False, True):
            if self._default(has_loras) not in self._models:
                raise ValueError(f"Default model {self._default(has_loras)!r} is not in the registry")

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    @property
    def aliases(self) -> List[str]:
        return sorted(self._index)

    def get(self, key: Optional[str]) -> Optional[ModelDescriptor]:
        endpoint = self._index.get(key) if key else None
        return self._models.get(endpoint) if endpoint else None

    def default(self, has_loras: bool = False) -> ModelDescriptor:
        return self._models[self._default(has_loras)]

    def resolve(self, key: Optional[str], loras: Sequence = ()) -> ModelDescriptor:
        """Return the descriptor for ``key``.

        An unknown key never aborts: the provider default is used instead and
        a warning lists what is available. No key at all selects the default
        without a warning.
        """
        found = self.get(key)
        if found is not None:
            return found
        fallback = self.default(bool(loras))
        if key:
            short = sorted(a for a in self._index if "/" not in a)
            logger.warning("Model '%s' not found. Using default model '%s' instead. Available models: %s",
                           key, fallback.endpoint_id, ", ".join(short))
        return fallback

    def aliases_for(self, endpoint_id: str) -> List[str]:
        descriptor = self._models.get(endpoint_id)
        return sorted(descriptor.aliases) if descriptor else []

    def search(self, query: str) -> List[ModelDescriptor]:
        q = query.lower()
        return [m for m in self if q in m.display_name.lower() or q in m.description.lower()
                or q in m.endpoint_id.lower()]

    def by_category(self, category: str) -> List[ModelDescriptor]:
        return [m for m in self if m.category == category]

    def categories(self) -> List[str]:
        return sorted({m.category for m in self})

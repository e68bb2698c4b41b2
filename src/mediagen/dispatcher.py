"""Locate generated media in heterogeneous provider responses.

Response shapes differ across providers and even across models of one
provider, so extraction is an explicit ordered list of (name, extractor)
pairs. A category names its primary extractors; when they find nothing, the
remaining extractors are tried in list order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import click

from . import registry as r

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    media_urls: List[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    strategy: str = ""


Extractor = Callable[[Mapping], Optional[GenerationResult]]


def _url_of(item) -> Optional[str]:
    if isinstance(item, str):
        return item or None
    if isinstance(item, Mapping):
        return item.get("url") or item.get("image_url") or None
    return None


def _urls(items) -> List[str]:
    if not isinstance(items, list):
        items = [items]
    return [u for u in (_url_of(i) for i in items) if u]


def _dig(result: Mapping, *path):
    cur: Any = result
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _metadata(*sources: Any, keys: Sequence[str] = ("duration", "width", "height", "file_size", "content_type")):
    meta = {}
    for src in sources:
        if not isinstance(src, Mapping):
            continue
        for key in keys:
            if src.get(key) is not None and key not in meta:
                meta[key] = src[key]
    return meta


def _common_metadata(result: Mapping) -> Dict[str, Any]:
    meta = {}
    for src_key, dst_key in (("requestId", "request_id"), ("request_id", "request_id"), ("id", "prediction_id"),
                             ("created_at", "created_at"), ("seed", "seed"), ("timings", "timings"),
                             ("has_nsfw_contents", "nsfw")):
        if result.get(src_key) not in (None, "", []):
            meta.setdefault(dst_key, result[src_key])
    return meta


# ------------------------------ Extractors ------------------------------

def extract_images(result):
    images = result.get("images")
    if isinstance(images, list) and images:
        urls = _urls(images)
        first = images[0] if isinstance(images[0], Mapping) else {}
        return GenerationResult(urls, _metadata(first)) if urls else None
    return None


def extract_outputs(result):
    outputs = result.get("outputs")
    if isinstance(outputs, list) and outputs:
        urls = _urls(outputs)
        return GenerationResult(urls) if urls else None
    return None


def extract_output(result):
    output = result.get("output")
    if output:
        urls = _urls(output)
        return GenerationResult(urls) if urls else None
    return None


def extract_image(result):
    image = result.get("image")
    if image:
        urls = _urls(image)
        return GenerationResult(urls, _metadata(image)) if urls else None
    return None


def extract_data_image(result):
    url = _dig(result, "data", "image_url")
    return GenerationResult([url], _metadata(result.get("data"))) if url else None


def extract_video(result):
    url = _dig(result, "video", "url")
    return GenerationResult([url], _metadata(result.get("video"))) if url else None


def extract_data_video(result):
    url = _dig(result, "data", "video_url")
    return GenerationResult([url], _metadata(result.get("data"))) if url else None


def extract_audio(result):
    url = _dig(result, "audio", "url") or _dig(result, "data", "audio_url") or (
        result.get("url") if isinstance(result.get("url"), str) else None)
    if not url:
        return None
    return GenerationResult([url], _metadata(result.get("audio"), result.get("data"), keys=("duration",)))


def extract_model_3d(result):
    url = (_dig(result, "model", "url") or _dig(result, "data", "model_url") or result.get("glb_url")
           or _dig(result, "data", "glb_url") or _dig(result, "model_mesh", "url"))
    if not url:
        return None
    urls = [url]
    preview = result.get("preview_image") or _dig(result, "data", "preview_image")
    preview_url = _url_of(preview)
    if preview_url:
        urls.append(preview_url)
    return GenerationResult(urls)


EXTRACTORS: Tuple[Tuple[str, Extractor], ...] = (
    ("images", extract_images),
    ("outputs", extract_outputs),
    ("output", extract_output),
    ("image", extract_image),
    ("data_image", extract_data_image),
    ("video", extract_video),
    ("data_video", extract_data_video),
    ("audio", extract_audio),
    ("model_3d", extract_model_3d),
)

PRIMARY: Dict[str, Tuple[str, ...]] = {
    r.TEXT_TO_IMAGE: ("images", "outputs", "output", "image"),
    r.IMAGE_TO_IMAGE: ("data_image", "images", "outputs", "output"),
    r.IMAGE_TO_VIDEO: ("video", "data_video"),
    r.TEXT_TO_VIDEO: ("video", "data_video"),
    r.VIDEO_TO_VIDEO: ("video", "data_video"),
    r.IMAGE_TO_3D: ("model_3d",),
    r.TEXT_TO_AUDIO: ("audio",),
    r.AUDIO_TO_AUDIO: ("audio",),
    r.TEXT_TO_SPEECH: ("audio",),
}

# Categories whose answer is the JSON itself
TEXT_CATEGORIES = (r.VISION, r.TEXT_TO_JSON, r.TRAINING)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 ** 2:
        return f"{size / 1024:.2f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.2f} MB"
    return f"{size / 1024 ** 3:.2f} GB"


class ResponseDispatcher:

    def __init__(self, extractors: Sequence[Tuple[str, Extractor]] = EXTRACTORS,
                 primary: Optional[Mapping[str, Sequence[str]]] = None):
        self.extractors = list(extractors)
        self.primary = dict(PRIMARY if primary is None else primary)

    def _chain(self, category: str) -> List[Tuple[str, Extractor]]:
        named = dict(self.extractors)
        names = self.primary.get(category, self.primary.get(r.TEXT_TO_IMAGE, ()))
        return [(n, named[n]) for n in names if n in named]

    def extract(self, result: Any, category: str) -> Optional[GenerationResult]:
        """Run the category's primary extractors, then the rest as a fallback chain."""
        if not isinstance(result, Mapping):
            return None
        primary = self._chain(category)
        for name, extractor in primary:
            found = extractor(result)
            if found:
                return self._finish(found, name, result)

        tried = {name for name, _ in primary}
        logger.warning("Primary handler for category '%s' found nothing, trying fallbacks...", category)
        for name, extractor in self.extractors:
            if name in tried:
                continue
            found = extractor(result)
            if found:
                logger.info("Handled with the %s extractor", name)
                return self._finish(found, name, result)
        return None

    @staticmethod
    def _finish(found: GenerationResult, name: str, result: Mapping) -> GenerationResult:
        found.strategy = name
        for key, value in _common_metadata(result).items():
            found.metadata.setdefault(key, value)
        return found

    def handle(self, result: Any, category: str, download: Callable[[List[str]], Any]) -> bool:
        """Locate media in ``result`` and hand the URLs to ``download``.

        Returns True when something was delivered: at least one file saved,
        or the JSON printed for text categories.
        """
        if category in TEXT_CATEGORIES:
            click.echo("Model Response:")
            click.echo(json.dumps(result, indent=2, default=str))
            return True

        found = self.extract(result, category)
        if found is None:
            logger.error("No handler could process the result for category '%s'", category)
            logger.error("Result: %s", json.dumps(result, indent=2, default=str))
            return False

        click.echo("\nRemote URL(s):")
        for idx, url in enumerate(found.media_urls, start=1):
            click.echo(f"  [{idx}] {url if not url.startswith('data:') else url[:40] + '...'}")
        click.echo()

        report = download(found.media_urls)
        report_metadata(found.metadata, report)
        return bool(report.saved)


def report_metadata(metadata: Mapping, report=None) -> None:
    total = sum(getattr(report, "sizes", {}).values()) if report is not None else 0
    if total:
        click.echo(f"Size: {format_file_size(total)}")
    if metadata.get("duration"):
        click.echo(f"Duration: {metadata['duration']}s")
    if metadata.get("width") and metadata.get("height"):
        click.echo(f"Resolution: {metadata['width']}x{metadata['height']}")
    if metadata.get("request_id"):
        click.echo(f"Request ID: {metadata['request_id']}")
    if metadata.get("prediction_id"):
        click.echo(f"Prediction ID: {metadata['prediction_id']}")
    if metadata.get("created_at"):
        click.echo(f"Created: {metadata['created_at']}")
    nsfw = metadata.get("nsfw")
    if nsfw is True or (isinstance(nsfw, list) and any(nsfw)):
        click.echo("NSFW content flagged by the provider")

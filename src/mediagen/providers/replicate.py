"""Replicate: model predictions, plus retrieval of past predictions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

import click
import requests

from ..builder import RequestBuilder
from ..config import Settings
from ..dispatcher import PRIMARY, ResponseDispatcher, extract_output
from ..download import download_all, encode_local
from ..errors import UpstreamError
from ..options import GenerationOptions
from ..poll import REPLICATE_STATES, JobState, map_state, poll_until_terminal
from ..registry import (IMAGE_TO_VIDEO, IMAGE_URL, TEXT_TO_IMAGE, TEXT_TO_VIDEO, ModelDescriptor, ModelRegistry,
                        model)
from .base import ProviderAdapter, call_api

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.replicate.com/v1"

DEFAULT_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_ASPECT_RATIO = "1:1"

ASPECT_RATIOS = {
    "square": "1:1",
    "square_hd": "1:1",
    "portrait": "3:4",
    "landscape": "4:3",
    "tall": "9:16",
    "wide": "16:9",
}

MODELS = [
    model("black-forest-labs/flux-schnell", aliases=["schnell"], name="FLUX.1 [schnell]",
          description="Fastest FLUX model", max_steps=4),
    model("black-forest-labs/flux-dev", aliases=["dev"], name="FLUX.1 [dev]",
          description="Open-weight FLUX for experimentation", max_steps=50),
    model("black-forest-labs/flux-1.1-pro", aliases=["pro"], name="FLUX1.1 [pro]",
          description="Fast, high quality text-to-image"),
    model("black-forest-labs/flux-1.1-pro-ultra", aliases=["ultra"], name="FLUX1.1 [pro] ultra",
          description="Up to 4MP images with raw mode"),
    model("recraft-ai/recraft-v3", aliases=["recraft"], name="Recraft V3",
          description="Vector art and typography"),
    model("minimax/video-01", TEXT_TO_VIDEO, aliases=["video"], name="MiniMax Video-01",
          description="Text-to-video, optional first frame image"),
    model("minimax/video-01-live", IMAGE_TO_VIDEO, aliases=["live"], requires=[IMAGE_URL],
          name="MiniMax Video-01 Live", description="Image-to-video for animation"),
]

# Some models reject the aspect_ratio/num_outputs pair; they take a size instead
OVERRIDES = {
    "recraft-ai/recraft-v3": {"num_outputs": None},
}


def aspect_ratio(o: GenerationOptions) -> str:
    if not o.format:
        return DEFAULT_ASPECT_RATIO
    if o.format in ASPECT_RATIOS:
        return ASPECT_RATIOS[o.format]
    if ":" in o.format:
        return o.format
    logger.warning("Unknown format '%s', using %s", o.format, DEFAULT_ASPECT_RATIO)
    return DEFAULT_ASPECT_RATIO


def text_to_image(o: GenerationOptions) -> dict:
    body = {"prompt": o.prompt, "num_outputs": o.num_images, "output_format": o.extras.get("output_format") or "webp"}
    if o.width and o.height:
        body.update({"aspect_ratio": "custom", "width": o.width, "height": o.height})
    else:
        body["aspect_ratio"] = aspect_ratio(o)
    if o.steps:
        body["num_inference_steps"] = o.steps
    if o.guidance_scale is not None:
        body["guidance"] = o.guidance_scale
    return body


def text_to_video(o: GenerationOptions) -> dict:
    body = {"prompt": o.prompt, "prompt_optimizer": True}
    if o.image_url:
        body["first_frame_image"] = o.image_url
    return body


def image_to_video(o: GenerationOptions) -> dict:
    return {"prompt": o.prompt, "first_frame_image": o.image_url, "prompt_optimizer": True}


STRATEGIES = {TEXT_TO_IMAGE: text_to_image, TEXT_TO_VIDEO: text_to_video, IMAGE_TO_VIDEO: image_to_video}

# Predictions put every kind of media under "output", video as a bare URL
EXTRACTION = {
    **PRIMARY,
    TEXT_TO_IMAGE: ("output", "images"),
    TEXT_TO_VIDEO: ("output", "video"),
    IMAGE_TO_VIDEO: ("output", "video"),
}


def _progress(attempt: int, state: JobState, prediction) -> None:
    if state is JobState.COMPLETED:
        click.echo("\nGeneration complete!")
    elif not state.terminal:
        click.echo(f"\rStatus: {prediction.get('status', 'unknown')} ({attempt} checks)", nl=False)


@dataclass
class RetrievalSummary:
    downloaded: int = 0
    already: int = 0
    empty: int = 0
    failed: int = 0


class ReplicateProvider(ProviderAdapter):
    name = "replicate"
    fallback_stem = "replicate"
    dispatcher = ResponseDispatcher(primary=EXTRACTION)

    def __init__(self):
        self.registry = ModelRegistry(MODELS, DEFAULT_MODEL)
        self.builder = RequestBuilder(STRATEGIES, overrides=OVERRIDES, command="replicate")

    def mock_result(self, descriptor: ModelDescriptor, body: dict) -> dict:
        ext = "mp4" if descriptor.category in (TEXT_TO_VIDEO, IMAGE_TO_VIDEO) else "webp"
        return {"id": "mock-prediction-id", "status": "succeeded",
                "output": [f"https://example.com/mock-replicate-output.{ext}"]}

    def prepare(self, descriptor: ModelDescriptor, options: GenerationOptions,
                settings: Settings) -> GenerationOptions:
        return replace(options, image_urls=tuple(encode_local(u) for u in options.image_urls))

    def build(self, descriptor: ModelDescriptor, options: GenerationOptions) -> dict:
        # None in the override table removes the field
        return {k: v for k, v in super().build(descriptor, options).items() if v is not None}

    def submit(self, descriptor: ModelDescriptor, body: dict, settings: Settings):
        click.echo("Submitting prediction to Replicate...")
        url = f"{API_BASE_URL}/models/{descriptor.endpoint_id}/predictions"
        with requests.Session() as session:
            prediction = call_api(session, "POST", url, settings.api_key, json_body={"input": body})
            state = map_state(prediction.get("status"), REPLICATE_STATES)
            if state is JobState.COMPLETED:
                return prediction
            if state is JobState.FAILED:
                raise UpstreamError(f"Generation failed: {prediction.get('error') or 'Unknown error'}",
                                    detail=prediction)

            poll_url = (prediction.get("urls") or {}).get("get") or f"{API_BASE_URL}/predictions/{prediction['id']}"

            def check():
                current = call_api(session, "GET", poll_url, settings.api_key)
                return map_state(current.get("status"), REPLICATE_STATES), current

            return poll_until_terminal(check, on_update=_progress)

    # Retrieval -------------------------------------------------------

    def _mock_predictions(self) -> List[dict]:
        return [{"id": "mock-prediction-1", "status": "succeeded", "output": ["https://example.com/mock.jpg"]}]

    def fetch_predictions(self, settings: Settings, prediction_id: Optional[str] = None) -> List[dict]:
        """One prediction by id, or the most recent page of predictions."""
        if settings.smoke:
            mocks = self._mock_predictions()
            return [{**mocks[0], "id": prediction_id}] if prediction_id else mocks
        with requests.Session() as session:
            if prediction_id:
                return [call_api(session, "GET", f"{API_BASE_URL}/predictions/{prediction_id}", settings.api_key)]
            listing = call_api(session, "GET", f"{API_BASE_URL}/predictions", settings.api_key)
            predictions = listing.get("results", [])
            # The listing omits output for some predictions
            return [p if p.get("output") else
                    call_api(session, "GET", f"{API_BASE_URL}/predictions/{p['id']}", settings.api_key)
                    for p in predictions]

    def download_predictions(self, settings: Settings, prediction_id: Optional[str] = None) -> RetrievalSummary:
        """Save the outputs of past predictions as ``<id>-<n>-<name>`` files.

        Predictions that already have a file in the output directory are
        skipped, so repeated runs only fetch what is new.
        """
        summary = RetrievalSummary()
        settings.output_dir.mkdir(parents=True, exist_ok=True)
        for prediction in self.fetch_predictions(settings, prediction_id):
            pid = prediction["id"]
            if any(settings.output_dir.glob(f"{pid}-*")):
                summary.already += 1
                continue
            found = extract_output(prediction)
            if not found:
                logger.info("Prediction %s has no output (%s)", pid, prediction.get("status"))
                summary.empty += 1
                continue
            report = download_all(found.media_urls, settings.output_dir, name_prefix=pid,
                                  fallback_stem=self.fallback_stem, smoke=settings.smoke)
            if report.saved:
                summary.downloaded += 1
            if report.failed:
                summary.failed += 1

        click.echo(f"Already downloaded: {summary.already}")
        click.echo(f"Empty predictions: {summary.empty}")
        click.echo(f"Downloaded: {summary.downloaded}")
        if summary.failed:
            click.echo(f"Failed: {summary.failed}")
        return summary

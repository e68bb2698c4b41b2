"""Shared provider control flow.

A concrete provider supplies its model registry, request builder, mock
result and transport. Everything between "options in" and "files on disk"
runs here, identically for every provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pprint import pformat
from typing import Any, Dict, List, Mapping, Optional

import click
import requests

from ..builder import RequestBuilder
from ..config import Settings
from ..dispatcher import ResponseDispatcher
from ..download import DownloadReport, download_all
from ..errors import UpstreamError
from ..options import GenerationOptions, LoraSelection
from ..registry import (AUDIO_TO_AUDIO, IMAGE_TO_3D, IMAGE_TO_VIDEO, TEXT_TO_AUDIO, TEXT_TO_SPEECH, TEXT_TO_VIDEO,
                        VIDEO_TO_VIDEO, ModelDescriptor, ModelRegistry)

logger = logging.getLogger(__name__)

TIMEOUT = (10.0, 120.0)  # (connect, read)


@dataclass
class GenerationOutcome:
    descriptor: ModelDescriptor
    request: Dict[str, Any]
    result: Any = None
    handled: bool = False
    report: Optional[DownloadReport] = None


# ------------------------------ HTTP ------------------------------

def _error_message(detail) -> str:
    if isinstance(detail, Mapping):
        for key in ("message", "detail", "error"):
            if detail.get(key):
                return str(detail[key])
    return str(detail)[:500]


def call_api(session: requests.Session, method: str, url: str, api_key: Optional[str], *,
             json_body: Optional[dict] = None, extra_headers: Optional[Mapping[str, str]] = None) -> Any:
    """Send one JSON request and return the decoded body.

    Transport errors, non-2xx statuses and undecodable bodies become UpstreamError.
    """
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if extra_headers:
        headers.update(extra_headers)
    logger.debug("%s %s", method, url)

    try:
        resp = session.request(method, url, json=json_body, headers=headers, timeout=TIMEOUT)
    except requests.exceptions.Timeout as e:
        raise UpstreamError(f"Request to {url} timed out") from e
    except requests.exceptions.RequestException as e:
        raise UpstreamError(f"Request to {url} failed: {e}") from e

    if resp.status_code >= 400:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        raise UpstreamError(f"API Error: {_error_message(detail)}", status_code=resp.status_code, detail=detail)

    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError("API returned a non-JSON response", status_code=resp.status_code,
                            detail=resp.text[:500]) from e


# ------------------------------ Adapter ------------------------------

class ProviderAdapter:
    name: str = ""
    fallback_stem: str = "media"
    registry: ModelRegistry
    builder: RequestBuilder
    loras: Mapping[str, LoraSelection] = {}
    dispatcher = ResponseDispatcher()

    # Hooks ---------------------------------------------------------------

    def normalize_inputs(self, descriptor: ModelDescriptor, options: GenerationOptions) -> GenerationOptions:
        """Pure adjustments before validation (e.g. option aliases)."""
        return options

    def prepare(self, descriptor: ModelDescriptor, options: GenerationOptions,
                settings: Settings) -> GenerationOptions:
        """Network-side preparation after validation, such as uploading local files."""
        return options

    def submit(self, descriptor: ModelDescriptor, body: dict, settings: Settings) -> Any:
        raise NotImplementedError

    def normalize_result(self, result: Any) -> Any:
        return result

    def mock_result(self, descriptor: ModelDescriptor, body: dict) -> dict:
        """Deterministic stand-in for a provider response in smoke mode."""
        base = f"https://example.com/mock-{self.name}-output"
        if descriptor.category in (IMAGE_TO_VIDEO, TEXT_TO_VIDEO, VIDEO_TO_VIDEO):
            return {"video": {"url": f"{base}.mp4"}}
        if descriptor.category in (TEXT_TO_AUDIO, AUDIO_TO_AUDIO, TEXT_TO_SPEECH):
            return {"audio": {"url": f"{base}.wav"}}
        if descriptor.category == IMAGE_TO_3D:
            return {"model_mesh": {"url": f"{base}.glb"}}
        return {"images": [{"url": f"{base}.png"}]}

    # Pipeline ------------------------------------------------------------

    def resolve(self, key: Optional[str], loras=()) -> ModelDescriptor:
        return self.registry.resolve(key, loras)

    def build(self, descriptor: ModelDescriptor, options: GenerationOptions) -> dict:
        return self.builder.build(descriptor, options)

    def generate(self, options: GenerationOptions, settings: Settings,
                 name_prefix: Optional[str] = None) -> GenerationOutcome:
        """Run one generate-and-download cycle.

        Raises MissingParameterError before any network call when the model
        lacks a required input, and UpstreamError (or PollTimeoutError) when
        the provider fails. Download failures are reported in the outcome.
        """
        descriptor = self.resolve(options.model, options.loras)
        options = self.normalize_inputs(descriptor, options)
        self.builder.check_required(descriptor.category, options, descriptor)
        if not (settings.smoke or settings.dry_run):
            options = self.prepare(descriptor, options, settings)
        body = self.build(descriptor, options)

        click.echo(f"Model: {descriptor.name} ({descriptor.endpoint_id})")
        click.echo(f"Category: {descriptor.category}")
        outcome = GenerationOutcome(descriptor=descriptor, request=body)

        if settings.debug or settings.dry_run:
            click.echo("*** REQUEST:")
            click.echo(pformat({"provider": self.name, "endpoint": descriptor.endpoint_id, "arguments": body}))
        if settings.dry_run:
            click.echo("*** NOT SENT (dry-run)")
            outcome.handled = True
            return outcome

        if settings.smoke:
            result = self.mock_result(descriptor, body)
            click.echo("Generation complete! (mock)")
        else:
            result = self.submit(descriptor, body, settings)
        result = self.normalize_result(result)
        outcome.result = result
        logger.debug("Result:\n%s", pformat(result))

        exif = None
        if settings.embed_exif:
            exif = {"provider": self.name, "model": descriptor.endpoint_id, "created": _now(), **body}

        def download(urls: List[str]) -> DownloadReport:
            outcome.report = download_all(urls, settings.output_dir, name_prefix=name_prefix,
                                          fallback_stem=self.fallback_stem, smoke=settings.smoke, embed_exif=exif)
            return outcome.report

        outcome.handled = self.dispatcher.handle(result, descriptor.category, download)
        if not outcome.handled:
            logger.error("Failed to process response for category '%s'", descriptor.category)
        return outcome


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")

"""fal.ai: the widest catalog, queue-based via fal_client."""

from __future__ import annotations

import logging
from dataclasses import replace

import click

from ..builder import RequestBuilder
from ..config import Settings
from ..errors import UpstreamError
from ..loras import LORAS
from ..options import GenerationOptions, is_local_file
from ..poll import FAL_STATES, JobState, map_state, poll_until_terminal
from ..registry import (AUDIO_TO_AUDIO, AUDIO_URL, IMAGE_TO_3D, IMAGE_TO_IMAGE, IMAGE_TO_VIDEO, IMAGE_URL,
                        TEXT_TO_AUDIO, TEXT_TO_IMAGE, TEXT_TO_JSON, TEXT_TO_SPEECH, TEXT_TO_VIDEO, TRAINING,
                        VIDEO_TO_VIDEO, VIDEO_URL, VISION, ModelDescriptor, ModelRegistry, fal_short_key, model)
from .base import ProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_INFERENCE_STEPS = 30
DEFAULT_GUIDANCE_SCALE = 2.7
DEFAULT_SAFETY_TOLERANCE = "5"
DEFAULT_STRENGTH = 0.8
DEFAULT_DURATION = 5
DEFAULT_IMAGE_SIZE = "square_hd"

ULTRA = "fal-ai/flux-pro/v1.1-ultra"
FLUX_LORA = "fal-ai/flux-lora"

# --format value -> fal image_size
IMAGE_SIZES = {
    "square": "square",
    "square_hd": "square_hd",
    "portrait": "portrait_4_3",
    "4:3": "portrait_4_3",
    "portrait_4_3": "portrait_4_3",
    "tall": "portrait_16_9",
    "16:9": "portrait_16_9",
    "portrait_16_9": "portrait_16_9",
    "normal": "landscape_4_3",
    "landscape_4_3": "landscape_4_3",
    "landscape": "landscape_16_9",
    "wide": "landscape_16_9",
    "landscape_16_9": "landscape_16_9",
}

MODELS = [
    model(ULTRA, name="FLUX1.1 [pro] ultra", description="Up to 2K images with improved photo realism"),
    model("fal-ai/flux-pro/v1.1", name="FLUX1.1 [pro]", description="Fast, high quality text-to-image"),
    model("fal-ai/flux/dev", name="FLUX.1 [dev]", description="12B flow transformer for text-to-image"),
    model("fal-ai/flux/schnell", name="FLUX.1 [schnell]", description="1-4 step fast text-to-image",
          max_steps=12),
    model(FLUX_LORA, supports_loras=True, name="FLUX.1 [dev] with LoRAs",
          description="Text-to-image with custom LoRA adaptations"),
    model("fal-ai/flux-lora/image-to-image", IMAGE_TO_IMAGE, supports_loras=True, requires=[IMAGE_URL],
          name="FLUX.1 [dev] LoRA image-to-image", description="Image-to-image with LoRA adaptations"),
    model("fal-ai/flux/krea", name="FLUX.1 Krea [dev]", description="Aesthetic photography text-to-image"),
    model("fal-ai/flux/krea/image-to-image", IMAGE_TO_IMAGE, requires=[IMAGE_URL], name="FLUX.1 Krea [dev] i2i",
          description="Krea image-to-image"),
    model("fal-ai/flux-krea-lora", supports_loras=True, name="FLUX.1 Krea [dev] with LoRAs",
          description="Krea text-to-image with LoRA adaptations"),
    model("fal-ai/flux-pro/kontext", IMAGE_TO_IMAGE, requires=[IMAGE_URL], name="FLUX.1 Kontext [pro]",
          description="Targeted image edits guided by text"),
    model("fal-ai/recraft/v3/text-to-image", name="Recraft V3", description="Vector art and typography"),
    model("fal-ai/bytedance/seedream/v4/text-to-image", name="Seedream 4.0",
          description="ByteDance text-to-image up to 4K", max_width=4096, max_height=4096),
    model("fal-ai/bytedance/seedream/v4/edit", IMAGE_TO_IMAGE, requires=[IMAGE_URL], name="Seedream 4.0 Edit",
          description="ByteDance multi-image editing", max_width=4096, max_height=4096),
    model("fal-ai/minimax/video-01/image-to-video", IMAGE_TO_VIDEO, name="MiniMax Video-01",
          description="Animate an image into a short video clip"),
    model("fal-ai/minimax/video-01-live/image-to-video", IMAGE_TO_VIDEO, name="MiniMax Video-01 Live",
          description="Image-to-video tuned for live-action motion"),
    model("fal-ai/wan-i2v", IMAGE_TO_VIDEO, name="Wan 2.1 i2v", description="Open image-to-video model"),
    model("fal-ai/wan-25-preview/image-to-video", IMAGE_TO_VIDEO, name="Wan 2.5 Preview",
          description="Image-to-video with audio"),
    model("fal-ai/kling-video/v2/master/text-to-video", TEXT_TO_VIDEO, name="Kling 2.0 Master",
          description="Text-to-video with fluid motion"),
    model("fal-ai/hunyuan-video", TEXT_TO_VIDEO, name="Hunyuan Video", description="Open text-to-video model"),
    model("fal-ai/video-upscaler", VIDEO_TO_VIDEO, name="Video Upscaler", description="Upscale a video"),
    model("fal-ai/trellis", IMAGE_TO_3D, name="Trellis", description="3D asset from a single image"),
    model("fal-ai/stable-audio", TEXT_TO_AUDIO, name="Stable Audio Open", description="Music and sound effects"),
    model("fal-ai/deepfilternet3", AUDIO_TO_AUDIO, name="DeepFilterNet3", description="Speech noise removal"),
    model("fal-ai/kokoro/american-english", TEXT_TO_SPEECH, name="Kokoro TTS",
          description="American English text-to-speech"),
    model("fal-ai/florence-2-large/detailed-caption", VISION, name="Florence-2 Large",
          description="Detailed image captioning"),
    model("fal-ai/any-llm", TEXT_TO_JSON, name="Any LLM", description="Structured text generation"),
    model("fal-ai/flux-lora-fast-training", TRAINING, name="FLUX LoRA training",
          description="Train a FLUX LoRA from an image archive"),
]

SHORTCUTS = {
    "pro": ULTRA,
    "ultra": ULTRA,
    "dev": "fal-ai/flux/dev",
    "lora": FLUX_LORA,
    "kontext": "fal-ai/flux-pro/kontext",
    "red-panda": "fal-ai/recraft/v3/text-to-image",
    "image_to_video": "fal-ai/minimax/video-01/image-to-video",
    "krea": "fal-ai/flux/krea",
    "krea-i2i": "fal-ai/flux/krea/image-to-image",
    "krea-lora": "fal-ai/flux-krea-lora",
    "wan-25": "fal-ai/wan-25-preview/image-to-video",
}

OVERRIDES = {
    "fal-ai/flux/schnell": {
        "num_inference_steps": 4,
    },
    "fal-ai/flux/krea/image-to-image": {
        "strength": 0.9,
        "num_inference_steps": 40,
        "guidance_scale": 4.5,
        "output_format": "jpeg",
        "acceleration": "none",
    },
    "fal-ai/flux/krea": {
        "output_format": "jpeg",
        "acceleration": "none",
    },
    "fal-ai/flux-krea-lora": {
        "num_inference_steps": 28,
        "guidance_scale": 3.5,
        "output_format": "jpeg",
    },
    "fal-ai/minimax/video-01/image-to-video": {
        "prompt_optimizer": True,
    },
}

REQUIRED = {
    IMAGE_TO_IMAGE: [IMAGE_URL],
    IMAGE_TO_VIDEO: [IMAGE_URL],
    IMAGE_TO_3D: [IMAGE_URL],
    VIDEO_TO_VIDEO: [VIDEO_URL],
    AUDIO_TO_AUDIO: [AUDIO_URL],
}


def default_model(has_loras: bool) -> str:
    return FLUX_LORA if has_loras else ULTRA


def image_size(options: GenerationOptions):
    if options.width and options.height:
        return {"width": options.width, "height": options.height}
    if not options.format:
        return DEFAULT_IMAGE_SIZE
    if options.format not in IMAGE_SIZES:
        logger.warning("Unknown format '%s', using %s", options.format, DEFAULT_IMAGE_SIZE)
    return IMAGE_SIZES.get(options.format, DEFAULT_IMAGE_SIZE)


# ------------------------------ Strategies ------------------------------

def text_to_image(o: GenerationOptions) -> dict:
    body = {
        "prompt": o.prompt,
        "image_size": image_size(o),
        "num_inference_steps": o.steps or DEFAULT_INFERENCE_STEPS,
        "guidance_scale": o.guidance_scale if o.guidance_scale is not None else DEFAULT_GUIDANCE_SCALE,
        "num_images": o.num_images,
        "safety_tolerance": DEFAULT_SAFETY_TOLERANCE,
        "enable_safety_checker": False,
    }
    if o.strength is not None:
        body["strength"] = o.strength
    if o.negative_prompt:
        body["negative_prompt"] = o.negative_prompt
    return body


def image_to_image(o: GenerationOptions) -> dict:
    body = text_to_image(o)
    body.update({
        "image_url": o.image_url,
        "strength": o.strength if o.strength is not None else DEFAULT_STRENGTH,
        "num_images": 1,
    })
    if len(o.image_urls) > 1:
        body["image_urls"] = list(o.image_urls)
    return body


def image_to_video(o: GenerationOptions) -> dict:
    return {"prompt": o.prompt, "image_url": o.image_url, "duration": o.duration or DEFAULT_DURATION}


def text_to_video(o: GenerationOptions) -> dict:
    return {"prompt": o.prompt, "duration": o.duration or DEFAULT_DURATION}


def video_to_video(o: GenerationOptions) -> dict:
    return {"prompt": o.prompt, "video_url": o.video_url}


def image_to_3d(o: GenerationOptions) -> dict:
    return {"image_url": o.image_url}


def text_to_audio(o: GenerationOptions) -> dict:
    body = {"prompt": o.prompt}
    if o.duration:
        body["seconds_total"] = o.duration
    return body


def audio_to_audio(o: GenerationOptions) -> dict:
    return {"audio_url": o.audio_url}


def text_to_speech(o: GenerationOptions) -> dict:
    return {"text": o.prompt}


def vision(o: GenerationOptions) -> dict:
    return {"image_url": o.image_url, "prompt": o.prompt}


def prompt_only(o: GenerationOptions) -> dict:
    return {"prompt": o.prompt}


STRATEGIES = {
    TEXT_TO_IMAGE: text_to_image,
    IMAGE_TO_IMAGE: image_to_image,
    IMAGE_TO_VIDEO: image_to_video,
    TEXT_TO_VIDEO: text_to_video,
    VIDEO_TO_VIDEO: video_to_video,
    IMAGE_TO_3D: image_to_3d,
    TEXT_TO_AUDIO: text_to_audio,
    AUDIO_TO_AUDIO: audio_to_audio,
    TEXT_TO_SPEECH: text_to_speech,
    VISION: vision,
    TEXT_TO_JSON: prompt_only,
    TRAINING: prompt_only,
}


# ------------------------------ Provider ------------------------------

def _fal_state(status) -> JobState:
    if getattr(status, "error", None):
        return JobState.FAILED
    return map_state(type(status).__name__, FAL_STATES)


def _progress(attempt: int, state: JobState, status) -> None:
    if state is JobState.IN_QUEUE:
        position = getattr(status, "position", None)
        click.echo(f"\rIN_QUEUE: position {position if position is not None else '?'}.", nl=False)
    elif state is JobState.PROCESSING:
        click.echo(f"\rIN_PROGRESS: {attempt} checks.", nl=False)
    elif state is JobState.COMPLETED:
        click.echo("\nGeneration complete!")


class FalProvider(ProviderAdapter):
    name = "fal"
    fallback_stem = "fal"
    loras = LORAS

    def __init__(self):
        self.registry = ModelRegistry(MODELS, default_model, short_key=fal_short_key, shortcuts=SHORTCUTS)
        self.builder = RequestBuilder(STRATEGIES, REQUIRED, OVERRIDES, command="fal")

    def normalize_inputs(self, descriptor: ModelDescriptor, options: GenerationOptions) -> GenerationOptions:
        # --image-url doubles as the media input for video and audio models
        if descriptor.category == VIDEO_TO_VIDEO and not options.video_url and options.image_url:
            return replace(options, video_url=options.image_url)
        if descriptor.category == AUDIO_TO_AUDIO and not options.audio_url and options.image_url:
            return replace(options, audio_url=options.image_url)
        return options

    def prepare(self, descriptor: ModelDescriptor, options: GenerationOptions,
                settings: Settings) -> GenerationOptions:
        """Upload local input files to fal storage and use the returned URLs."""
        if not (any(is_local_file(u) for u in options.image_urls)
                or is_local_file(options.video_url) or is_local_file(options.audio_url)):
            return options

        import fal_client  # type: ignore

        def upload(value):
            if not is_local_file(value):
                return value
            click.echo(f"Uploading {value} ...")
            url = fal_client.upload_file(value)
            logger.debug("Uploaded %s -> %s", value, url)
            return url

        return replace(options, image_urls=tuple(upload(u) for u in options.image_urls),
                       video_url=upload(options.video_url), audio_url=upload(options.audio_url))

    def submit(self, descriptor: ModelDescriptor, body: dict, settings: Settings):
        """Queue the request, poll its status and fetch the result.

        Lazily imports fal_client so the other providers work without touching it.
        """
        import fal_client  # type: ignore
        import httpx
        from fal_client.client import FalClientError  # type: ignore

        try:
            handle = fal_client.submit(descriptor.endpoint_id, arguments=body)
            logger.debug("Request ID: %s", handle.request_id)

            def check():
                status = handle.status(with_logs=settings.debug)
                state = _fal_state(status)
                return state, ({"error": status.error} if state is JobState.FAILED else status)

            poll_until_terminal(check, on_update=_progress)
            result = handle.get()
        except FalClientError as e:
            raise UpstreamError(f"API Error: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to fal.ai failed: {e}") from e

        if isinstance(result, dict) and result.get("status") == 400:
            raise UpstreamError(f"API Error: {result.get('detail') or result}", status_code=400, detail=result)
        if isinstance(result, dict):
            result.setdefault("requestId", handle.request_id)
        return result

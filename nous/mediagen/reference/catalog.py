from __future__ import annotations

import copy
from typing import Any

from . import kie

# provider -> model_id -> capability tags
MODEL_CATALOG: dict[str, dict[str, list[str]]] = {
    "gemini": {
        "nano-banana": ["text-to-image", "image-to-image"],
        "nano-banana-pro": ["text-to-image", "image-to-image"],
    },
    "replicate": {
        "black-forest-labs/flux-schnell": ["text-to-image"],
        "black-forest-labs/flux-kontext-pro": ["image-to-image"],
        "minimax/video-01": ["text-to-video", "image-to-video"],
    },
    "fal": {
        "fal-ai/flux/dev": ["text-to-image"],
        "fal-ai/flux-pro/kontext": ["image-to-image"],
        "fal-ai/kling-video/v2.1/standard/image-to-video": ["image-to-video"],
        "fal-ai/hunyuan3d/v2": ["image-to-3d"],
        "fal-ai/stable-audio": ["text-to-audio"],
    },
    "kie": {},
    "wavespeed": {
        "wavespeed-ai/flux-dev": ["text-to-image"],
        "wavespeed-ai/flux-kontext-dev": ["image-to-image"],
        "wavespeed-ai/wan-2.1/i2v-480p": ["image-to-video"],
    },
}


_KIE_CAPABILITY_OVERRIDES: dict[str, list[str]] = {
    "kling-2.6/motion-control": ["image-to-video"],
    "wan/2-6-video-to-video": ["video-to-video"],
    "topaz/video-upscale": ["video-to-video"],
}


def _kie_capabilities(model_id: str) -> list[str]:
    if model_id in _KIE_CAPABILITY_OVERRIDES:
        return list(_KIE_CAPABILITY_OVERRIDES[model_id])
    if model_id.startswith("elevenlabs/"):
        return ["text-to-audio"]
    if "video" in model_id or model_id.startswith("veo3"):
        return ["image-to-video"] if "image-to-video" in model_id else ["text-to-video"]
    if kie.get_image_input_key(model_id) in {
        i.name for i in kie.get_model_description(model_id).inputs if i.kind == "image"
    }:
        return ["image-to-image"]
    return ["text-to-image"]


for _model_id in kie.KIE_MODELS:
    MODEL_CATALOG["kie"][_model_id] = _kie_capabilities(_model_id)


def get_supported_providers() -> list[str]:
    return list(MODEL_CATALOG.keys())


def get_model_catalog() -> dict[str, dict[str, list[str]]]:
    return copy.deepcopy(MODEL_CATALOG)


def get_capabilities(provider: str, model_id: str) -> tuple[str, ...]:
    return tuple(MODEL_CATALOG.get(provider, {}).get(model_id, ()))


def get_supported_models(provider: str | None = None) -> list[dict[str, Any]]:
    """JSON-friendly rows of the curated models, optionally for one provider."""
    out: list[dict[str, Any]] = []
    for p, models in MODEL_CATALOG.items():
        if provider is not None and p != provider:
            continue
        for model_id, caps in models.items():
            out.append(
                {
                    "provider": p,
                    "model_id": model_id,
                    "model": f"{p}:{model_id}",
                    "capabilities": list(caps),
                }
            )
    return out

from __future__ import annotations

import copy
from typing import Any

from ..types import ModelDescription, ModelInput, ModelParameter

# Kie has no schema discovery endpoint; these tables are the source of truth.

SCALAR_IMAGE_KEYS = frozenset({"image_url", "video_url", "tail_image_url"})


def _param(name: str, type: str, description: str, **kw: Any) -> ModelParameter:
    return ModelParameter(name=name, type=type, description=description, **kw)


def _prompt(label: str = "Prompt", required: bool = True) -> ModelInput:
    return ModelInput(name="prompt", kind="text", required=required, label=label)


def _image(name: str, label: str = "Image", *, required: bool = True, is_array: bool = True) -> ModelInput:
    return ModelInput(name=name, kind="image", required=required, is_array=is_array, label=label)


def _seed() -> ModelParameter:
    return _param("seed", "integer", "Random seed for reproducibility", minimum=0)


def _aspect(values: list[str], default: str) -> ModelParameter:
    return _param("aspect_ratio", "string", "Output aspect ratio", enum=values, default=default)


_FLUX2_ASPECTS = ["1:1", "4:3", "3:4", "16:9", "9:16", "3:2", "2:3", "auto"]
_SEEDREAM_ASPECTS = ["1:1", "4:3", "3:4", "16:9", "9:16", "2:3", "3:2", "21:9"]
_GROK_ASPECTS = ["2:3", "3:2", "1:1", "16:9", "9:16"]
_KLING_ASPECTS = ["16:9", "9:16", "1:1"]
_AUDIO_FORMATS = ["mp3_44100_128", "mp3_44100_192", "pcm_16000", "pcm_22050", "pcm_24000", "pcm_44100"]


def _seedream() -> list[ModelParameter]:
    return [
        _aspect(_SEEDREAM_ASPECTS, "1:1"),
        _param("quality", "string", "Output quality", enum=["basic", "high"], default="basic"),
        _seed(),
    ]


def _gpt_image() -> list[ModelParameter]:
    return [
        _aspect(["1:1", "2:3", "3:2"], "3:2"),
        _param("quality", "string", "Output quality", enum=["medium", "high"], default="medium"),
    ]


def _flux2() -> list[ModelParameter]:
    return [
        _aspect(_FLUX2_ASPECTS, "1:1"),
        _param("resolution", "string", "Output resolution", enum=["1K", "2K"], default="1K"),
        _seed(),
    ]


def _voice() -> list[ModelParameter]:
    return [
        _param("stability", "number", "Voice stability (0-1)", default=0.5, minimum=0, maximum=1),
        _param("similarity_boost", "number", "Similarity boost (0-1)", default=0.75, minimum=0, maximum=1),
        _param("output_format", "string", "Audio output format", enum=_AUDIO_FORMATS, default="mp3_44100_128"),
    ]


def _grok_video() -> list[ModelParameter]:
    return [
        _aspect(_GROK_ASPECTS, "2:3"),
        _param("duration", "string", "Video duration in seconds", enum=["6", "10"], default="6"),
        _param("mode", "string", "Generation mode", enum=["fun", "normal", "spicy"], default="normal"),
        _seed(),
    ]


def _kling26() -> list[ModelParameter]:
    return [
        _aspect(_KLING_ASPECTS, "16:9"),
        _param("duration", "string", "Video duration", enum=["5", "10"], default="5"),
        _param("sound", "boolean", "Enable sound generation", default=True),
        _seed(),
    ]


def _kling25() -> list[ModelParameter]:
    return [
        _aspect(_KLING_ASPECTS, "16:9"),
        _param("duration", "string", "Video duration", enum=["5", "10"], default="5"),
        _param("cfg_scale", "number", "Guidance scale", minimum=0, maximum=1, default=0.5),
        _seed(),
    ]


def _wan(durations: list[str]) -> list[ModelParameter]:
    return [
        _param("duration", "string", "Video duration in seconds", enum=durations, default="5"),
        _param("resolution", "string", "Output resolution", enum=["720p", "1080p"], default="1080p"),
        _seed(),
    ]


def _veo() -> list[ModelParameter]:
    return [
        _aspect(["16:9", "9:16"], "16:9"),
        _param("seeds", "integer", "Random seed (10000-99999)", minimum=10000, maximum=99999),
    ]


KIE_MODELS: dict[str, ModelDescription] = {
    # image
    "z-image": ModelDescription(
        parameters=[_aspect(["1:1", "4:3", "3:4", "16:9", "9:16"], "1:1"), _seed()],
        inputs=[_prompt()],
    ),
    "seedream/4.5-text-to-image": ModelDescription(parameters=_seedream(), inputs=[_prompt()]),
    "seedream/4.5-edit": ModelDescription(parameters=_seedream(), inputs=[_prompt(), _image("image_urls")]),
    "gpt-image/1.5-text-to-image": ModelDescription(parameters=_gpt_image(), inputs=[_prompt()]),
    "gpt-image/1.5-image-to-image": ModelDescription(parameters=_gpt_image(), inputs=[_prompt(), _image("input_urls")]),
    "flux-2/pro-text-to-image": ModelDescription(parameters=_flux2(), inputs=[_prompt()]),
    "flux-2/pro-image-to-image": ModelDescription(parameters=_flux2(), inputs=[_prompt(), _image("input_urls")]),
    "flux-2/flex-text-to-image": ModelDescription(parameters=_flux2(), inputs=[_prompt()]),
    "flux-2/flex-image-to-image": ModelDescription(parameters=_flux2(), inputs=[_prompt(), _image("input_urls")]),
    "nano-banana-pro": ModelDescription(
        parameters=[
            _aspect(["1:1", "2:3", "3:2", "4:3", "16:9", "9:16", "21:9", "auto"], "1:1"),
            _param("resolution", "string", "Output resolution", enum=["1K", "2K", "4K"], default="1K"),
            _param("output_format", "string", "Output format", enum=["png", "jpg"], default="png"),
        ],
        inputs=[_prompt(), _image("image_input", required=False)],
    ),
    "grok-imagine/text-to-image": ModelDescription(
        parameters=[_aspect(_GROK_ASPECTS, "1:1"), _seed()],
        inputs=[_prompt()],
    ),
    "grok-imagine/image-to-image": ModelDescription(
        parameters=[],
        inputs=[_prompt(required=False), _image("image_urls")],
    ),
    # audio
    "elevenlabs/turbo-v2.5": ModelDescription(
        parameters=[_param("voice_id", "string", "Voice ID to use for synthesis"), *_voice()],
        inputs=[_prompt("Text")],
    ),
    "elevenlabs/multilingual-v2": ModelDescription(
        parameters=[_param("voice_id", "string", "Voice ID to use for synthesis"), *_voice()],
        inputs=[_prompt("Text")],
    ),
    "elevenlabs/text-to-dialogue-v3": ModelDescription(
        parameters=_voice(),
        inputs=[_prompt("Text / Dialogue Script")],
    ),
    "elevenlabs/sound-effect-v2": ModelDescription(
        parameters=[
            _param("duration_seconds", "number", "Duration in seconds (0.5-22)", minimum=0.5, maximum=22),
            _param("loop", "boolean", "Enable smooth looping", default=False),
            _param("prompt_influence", "number", "How closely to follow the prompt (0-1)", default=0.3, minimum=0, maximum=1),
            _param("output_format", "string", "Audio output format", enum=_AUDIO_FORMATS, default="mp3_44100_128"),
        ],
        inputs=[_prompt("Sound Description")],
    ),
    # video
    "grok-imagine/text-to-video": ModelDescription(parameters=_grok_video(), inputs=[_prompt()]),
    "grok-imagine/image-to-video": ModelDescription(
        parameters=_grok_video(),
        inputs=[_prompt(required=False), _image("image_urls")],
    ),
    "kling-2.6/text-to-video": ModelDescription(parameters=_kling26(), inputs=[_prompt()]),
    "kling-2.6/image-to-video": ModelDescription(
        parameters=_kling26(),
        inputs=[_prompt(required=False), _image("image_urls")],
    ),
    "kling-2.6/motion-control": ModelDescription(
        parameters=[
            _param("mode", "string", "Output resolution", enum=["720p", "1080p"], default="720p"),
            _param(
                "character_orientation",
                "string",
                "Character orientation source",
                enum=["image", "video"],
                default="video",
            ),
        ],
        inputs=[_prompt(required=False), _image("input_urls"), _image("video_urls", "Video")],
    ),
    "kling/v2-5-turbo-text-to-video-pro": ModelDescription(
        parameters=_kling25(),
        inputs=[_prompt(), ModelInput(name="negative_prompt", kind="text", label="Negative Prompt")],
    ),
    "kling/v2-5-turbo-image-to-video-pro": ModelDescription(
        parameters=_kling25(),
        inputs=[
            _prompt(required=False),
            ModelInput(name="negative_prompt", kind="text", label="Negative Prompt"),
            _image("image_url", is_array=False),
            _image("tail_image_url", "Tail Image", required=False, is_array=False),
        ],
    ),
    "wan/2-6-text-to-video": ModelDescription(parameters=_wan(["5", "10", "15"]), inputs=[_prompt()]),
    "wan/2-6-image-to-video": ModelDescription(
        parameters=_wan(["5", "10", "15"]),
        inputs=[_prompt(required=False), _image("image_urls")],
    ),
    "wan/2-6-video-to-video": ModelDescription(
        parameters=_wan(["5", "10"]),
        inputs=[_prompt(required=False), _image("video_urls", "Video")],
    ),
    "topaz/video-upscale": ModelDescription(
        parameters=[_param("upscale_factor", "string", "Upscale factor", enum=["1", "2", "4"], default="2")],
        inputs=[_image("video_url", "Video", is_array=False)],
    ),
    "veo3/text-to-video": ModelDescription(parameters=_veo(), inputs=[_prompt()]),
    "veo3/image-to-video": ModelDescription(parameters=_veo(), inputs=[_prompt(), _image("imageUrls")]),
    "veo3-fast/text-to-video": ModelDescription(parameters=_veo(), inputs=[_prompt()]),
    "veo3-fast/image-to-video": ModelDescription(parameters=_veo(), inputs=[_prompt(), _image("imageUrls")]),
}

# Required parameters the Kie API rejects requests without.
_MODEL_DEFAULTS: dict[str, dict[str, Any]] = {
    "gpt-image/1.5-text-to-image": {"aspect_ratio": "3:2", "quality": "medium"},
    "gpt-image/1.5-image-to-image": {"aspect_ratio": "3:2", "quality": "medium"},
    "z-image": {"aspect_ratio": "1:1"},
    "seedream/4.5-text-to-image": {"aspect_ratio": "1:1", "quality": "basic"},
    "seedream/4.5-edit": {"aspect_ratio": "1:1", "quality": "basic"},
    "nano-banana-pro": {"aspect_ratio": "1:1", "resolution": "1K"},
    "flux-2/pro-text-to-image": {"aspect_ratio": "1:1"},
    "flux-2/pro-image-to-image": {"aspect_ratio": "1:1"},
    "flux-2/flex-text-to-image": {"aspect_ratio": "1:1"},
    "flux-2/flex-image-to-image": {"aspect_ratio": "1:1"},
    "grok-imagine/text-to-image": {"aspect_ratio": "1:1"},
    "grok-imagine/text-to-video": {"aspect_ratio": "2:3", "duration": "6", "mode": "normal"},
    "grok-imagine/image-to-video": {"aspect_ratio": "2:3", "duration": "6", "mode": "normal"},
    "kling-2.6/text-to-video": {"aspect_ratio": "16:9", "duration": "5", "sound": True},
    "kling-2.6/image-to-video": {"aspect_ratio": "16:9", "duration": "5", "sound": True},
    "kling-2.6/motion-control": {"mode": "720p", "character_orientation": "video"},
    "kling/v2-5-turbo-text-to-video-pro": {"aspect_ratio": "16:9", "duration": "5", "cfg_scale": 0.5},
    "kling/v2-5-turbo-image-to-video-pro": {"aspect_ratio": "16:9", "duration": "5", "cfg_scale": 0.5},
    "wan/2-6-text-to-video": {"duration": "5", "resolution": "1080p"},
    "wan/2-6-image-to-video": {"duration": "5", "resolution": "1080p"},
    "wan/2-6-video-to-video": {"duration": "5", "resolution": "1080p"},
    "topaz/video-upscale": {"upscale_factor": "2"},
    "veo3/text-to-video": {"aspect_ratio": "16:9"},
    "veo3/image-to-video": {"aspect_ratio": "16:9"},
    "veo3-fast/text-to-video": {"aspect_ratio": "16:9"},
    "veo3-fast/image-to-video": {"aspect_ratio": "16:9"},
    "elevenlabs/turbo-v2.5": {"output_format": "mp3_44100_128"},
    "elevenlabs/multilingual-v2": {"output_format": "mp3_44100_128"},
    "elevenlabs/text-to-dialogue-v3": {"output_format": "mp3_44100_128"},
    "elevenlabs/sound-effect-v2": {"output_format": "mp3_44100_128", "prompt_influence": 0.3},
}

_IMAGE_KEYS: dict[str, str] = {
    "nano-banana-pro": "image_input",
    "seedream/4.5-edit": "image_urls",
    "gpt-image/1.5-image-to-image": "input_urls",
    "flux-2/pro-image-to-image": "input_urls",
    "flux-2/flex-image-to-image": "input_urls",
    "kling/v2-5-turbo-image-to-video-pro": "image_url",
    "kling-2.6/motion-control": "input_urls",
    "wan/2-6-video-to-video": "video_urls",
    "topaz/video-upscale": "video_url",
}


def get_model_description(model_id: str) -> ModelDescription:
    return KIE_MODELS.get(model_id) or ModelDescription()


def get_model_defaults(model_id: str) -> dict[str, Any]:
    return copy.deepcopy(_MODEL_DEFAULTS.get(model_id, {}))


def get_image_input_key(model_id: str) -> str:
    if model_id in _IMAGE_KEYS:
        return _IMAGE_KEYS[model_id]
    if model_id.startswith("veo3"):
        return "imageUrls"
    return "image_urls"


def is_veo_model(model_id: str) -> bool:
    return model_id.startswith("veo3/") or model_id.startswith("veo3-fast/")


def veo_api_model(model_id: str) -> str:
    return "veo3_fast" if model_id.startswith("veo3-fast/") else "veo3"

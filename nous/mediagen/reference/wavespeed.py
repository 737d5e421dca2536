from __future__ import annotations

from ..types import ModelDescription, ModelInput, ModelParameter

_VIDEO_MARKERS = ("wan", "video", "kling", "luma", "minimax", "t2v", "i2v")
_IMG2IMG_MARKERS = ("kontext", "img2img", "edit", "inpaint", "controlnet")

_IMAGE_SIZES = [
    "512x512",
    "768x768",
    "1024x1024",
    "1024x576",
    "576x1024",
    "1024x768",
    "768x1024",
    "1280x720",
    "720x1280",
]


def is_video_model_id(model_id: str) -> bool:
    lowered = model_id.lower()
    return any(m in lowered for m in _VIDEO_MARKERS)


def is_img2img_model_id(model_id: str) -> bool:
    lowered = model_id.lower()
    return any(m in lowered for m in _IMG2IMG_MARKERS)


def _image_params() -> list[ModelParameter]:
    return [
        ModelParameter(
            name="num_inference_steps",
            type="integer",
            description="Number of denoising steps. More steps usually lead to higher quality but slower generation.",
            default=28,
            minimum=1,
            maximum=100,
        ),
        ModelParameter(
            name="guidance_scale",
            type="number",
            description="Guidance scale for classifier-free guidance. Higher values follow the prompt more closely.",
            default=3.5,
            minimum=0,
            maximum=20,
        ),
        ModelParameter(
            name="seed",
            type="integer",
            description="Random seed for reproducibility. Use -1 for random.",
            default=-1,
        ),
        ModelParameter(
            name="image_size",
            type="string",
            description="Output image dimensions",
            default="1024x1024",
            enum=list(_IMAGE_SIZES),
        ),
    ]


def _video_params() -> list[ModelParameter]:
    return [
        ModelParameter(
            name="num_frames",
            type="integer",
            description="Number of frames to generate",
            default=81,
            minimum=16,
            maximum=256,
        ),
        ModelParameter(
            name="fps",
            type="integer",
            description="Frames per second for the output video",
            default=16,
            minimum=8,
            maximum=30,
        ),
        ModelParameter(
            name="seed",
            type="integer",
            description="Random seed for reproducibility. Use -1 for random.",
            default=-1,
        ),
        ModelParameter(
            name="resolution",
            type="string",
            description="Output video resolution",
            default="480p",
            enum=["480p", "720p", "1080p"],
        ),
    ]


def static_description(model_id: str) -> ModelDescription:
    """Fallback description picked by substring heuristics on the model id."""
    if is_video_model_id(model_id):
        inputs: list[ModelInput] = []
        if "i2v" in model_id.lower():
            inputs.append(
                ModelInput(
                    name="image",
                    kind="image",
                    required=True,
                    label="Input Image",
                    description="Starting image for video generation",
                )
            )
        return ModelDescription(parameters=_video_params(), inputs=inputs)

    params = _image_params()
    inputs = []
    if is_img2img_model_id(model_id):
        inputs.append(
            ModelInput(
                name="images",
                kind="image",
                required=True,
                is_array=True,
                label="Input Image",
                description="Image to transform or edit",
            )
        )
        params.append(
            ModelParameter(
                name="strength",
                type="number",
                description="How much to transform the input image. 0 = no change, 1 = ignore input completely.",
                default=0.8,
                minimum=0,
                maximum=1,
            )
        )
    return ModelDescription(parameters=params, inputs=inputs)

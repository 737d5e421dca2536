from __future__ import annotations

from ..types import ModelDescription, ModelInput, ModelParameter

MODEL_ALIASES: dict[str, str] = {
    "nano-banana": "gemini-2.5-flash-image",
    "nano-banana-pro": "gemini-3-pro-image-preview",
}

ASPECT_RATIOS = ["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
RESOLUTIONS = ["1K", "2K", "4K"]


def resolve_model(model_id: str) -> str:
    return MODEL_ALIASES.get(model_id, model_id)


def is_pro_model(model_id: str) -> bool:
    return resolve_model(model_id) == MODEL_ALIASES["nano-banana-pro"]


def static_description(model_id: str) -> ModelDescription:
    params = [
        ModelParameter(
            name="aspect_ratio",
            type="string",
            description="Output aspect ratio",
            enum=list(ASPECT_RATIOS),
            default="1:1",
        )
    ]
    if is_pro_model(model_id):
        params.append(
            ModelParameter(
                name="resolution",
                type="string",
                description="Output image size",
                enum=list(RESOLUTIONS),
                default="1K",
            )
        )
        params.append(
            ModelParameter(
                name="use_google_search",
                type="boolean",
                description="Ground the generation with Google Search",
                default=False,
            )
        )
    return ModelDescription(
        parameters=params,
        inputs=[
            ModelInput(name="prompt", kind="text", required=True, label="Prompt"),
            ModelInput(name="images", kind="image", is_array=True, label="Images"),
        ],
    )

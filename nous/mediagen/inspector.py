from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from .schema import INSPECTOR_TTL_S, SchemaCache, SchemaSource
from .types import ModelDescription, ModelInput, ModelParameter, SchemaDocument

logger = logging.getLogger(__name__)

IMAGE_INPUT_NAMES = frozenset(
    {
        "image_url",
        "image_urls",
        "image",
        "images",
        "image_input",
        "input_image",
        "first_frame",
        "last_frame",
        "tail_image_url",
        "start_image",
        "end_image",
        "reference_image",
        "init_image",
        "mask_image",
        "control_image",
    }
)

TEXT_INPUT_NAMES = ("prompt", "negative_prompt")

# Names that look like image inputs but are settings.
IMAGE_NAME_EXCLUSIONS = frozenset({"image_size"})

EXCLUDED_PARAMETERS = frozenset(
    {
        "webhook",
        "webhook_events_filter",
        "sync_mode",
        "disable_safety_checker",
        "go_fast",
        "enable_safety_checker",
        "output_format",
        "output_quality",
        "request_id",
    }
)

PRIORITY_PARAMETERS = frozenset(
    {
        "seed",
        "num_inference_steps",
        "inference_steps",
        "steps",
        "guidance_scale",
        "guidance",
        "negative_prompt",
        "width",
        "height",
        "image_size",
        "num_outputs",
        "num_images",
        "scheduler",
        "strength",
        "cfg_scale",
        "lora_scale",
    }
)

_IMAGE_DESCRIPTION_KEYWORDS = (
    "image url",
    "base64 image",
    "data uri",
    "image file",
    "url of the image",
    "path to image",
)

_NON_IMAGE_FRAGMENTS = ("_images", "guidance", "generation", "_count", "_size", "_scale")

_REF_RE = re.compile(r"^#/components/schemas/(.+)$")


def to_label(name: str) -> str:
    """`tail_image_url` -> `Tail Image`."""
    name = re.sub(r"_url$", "", name).replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), name)


def _image_like_name(name: str) -> bool:
    return name.endswith("_image") or name.startswith("image_") or "_image_" in name


def is_image_input(name: str, prop: Mapping[str, Any]) -> bool:
    t = prop.get("type")
    if t not in ("string", "array"):
        return False
    if t == "array":
        items = prop.get("items")
        if isinstance(items, dict) and items.get("type") and items.get("type") != "string":
            return False
    if name in IMAGE_NAME_EXCLUSIONS:
        return False
    if prop.get("format") in ("uri", "data-uri", "binary") and (name in IMAGE_INPUT_NAMES or _image_like_name(name)):
        return True
    description = str(prop.get("description") or "").lower()
    if any(k in description for k in _IMAGE_DESCRIPTION_KEYWORDS):
        return True
    if name in IMAGE_INPUT_NAMES:
        return True
    if any(f in name for f in _NON_IMAGE_FRAGMENTS):
        return False
    return _image_like_name(name)


def is_text_input(name: str) -> bool:
    return name in TEXT_INPUT_NAMES


def _resolve_ref(ref: str, components: Mapping[str, Any]) -> dict[str, Any] | None:
    m = _REF_RE.match(ref)
    if not m:
        return None
    resolved = components.get(m.group(1))
    return resolved if isinstance(resolved, dict) else None


def convert_schema_property(
    name: str,
    prop: Mapping[str, Any],
    required: tuple[str, ...] | list[str],
    components: Mapping[str, Any] | None = None,
) -> ModelParameter | None:
    """
    Turn one schema property into a parameter, following `allOf` / `$ref`
    indirection for type, enum, default and description. Returns None for
    excluded system parameters.
    """
    if name in EXCLUDED_PARAMETERS:
        return None

    t = prop.get("type")
    ptype = t if t in ("integer", "number", "boolean", "array") else "string"
    enum: list[Any] | None = None
    resolved_default: Any = None
    resolved_description: str | None = None

    all_of = prop.get("allOf")
    if ptype == "string" and isinstance(all_of, list) and all_of and components:
        for item in all_of:
            if not isinstance(item, dict):
                continue
            ref = item.get("$ref")
            if isinstance(ref, str):
                resolved = _resolve_ref(ref, components)
                if resolved is None:
                    continue
                if resolved.get("type") in ("integer", "number", "boolean"):
                    ptype = resolved["type"]
                if isinstance(resolved.get("enum"), list):
                    enum = resolved["enum"]
                if resolved.get("default") is not None and resolved_default is None:
                    resolved_default = resolved["default"]
                if resolved.get("description") and not resolved_description:
                    resolved_description = resolved["description"]
            elif isinstance(item.get("enum"), list):
                enum = item["enum"]

    if isinstance(prop.get("enum"), list):
        enum = prop["enum"]
    minimum = prop.get("minimum")
    maximum = prop.get("maximum")
    return ModelParameter(
        name=name,
        type=ptype,
        description=prop.get("description") or resolved_description,
        default=prop["default"] if prop.get("default") is not None else resolved_default,
        enum=enum,
        minimum=minimum if isinstance(minimum, (int, float)) and not isinstance(minimum, bool) else None,
        maximum=maximum if isinstance(maximum, (int, float)) and not isinstance(maximum, bool) else None,
        required=name in required,
    )


def _parameter_sort_key(p: ModelParameter) -> tuple[int, str]:
    return (0 if p.name in PRIORITY_PARAMETERS else 1, p.name)


def _input_sort_key(i: ModelInput) -> tuple[int, int, str]:
    return (0 if i.required else 1, 0 if i.kind == "image" else 1, i.name)


def extract_description(doc: SchemaDocument) -> ModelDescription:
    """Classify every property of a schema into connectable inputs and parameters."""
    parameters: list[ModelParameter] = []
    inputs: list[ModelInput] = []
    for name, prop in (doc.properties or {}).items():
        if not isinstance(prop, dict):
            continue
        kind = "image" if is_image_input(name, prop) else "text" if is_text_input(name) else None
        if kind is not None:
            inputs.append(
                ModelInput(
                    name=name,
                    kind=kind,
                    required=name in doc.required,
                    is_array=prop.get("type") == "array",
                    label=to_label(name),
                    description=prop.get("description"),
                )
            )
            continue
        param = convert_schema_property(name, prop, doc.required, doc.components)
        if param is not None:
            parameters.append(param)

    parameters.sort(key=_parameter_sort_key)
    inputs.sort(key=_input_sort_key)
    return ModelDescription(parameters=parameters, inputs=inputs)


class ModelInspector:
    """Describe a model's parameters and connectable inputs, cached for ten minutes."""

    def __init__(self, cache: SchemaCache[ModelDescription] | None = None) -> None:
        self.cache = cache if cache is not None else SchemaCache(INSPECTOR_TTL_S)

    def describe(self, source: SchemaSource, model_id: str) -> ModelDescription:
        key = (source.provider_name, model_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        doc = source.fetch_schema_document(model_id)
        desc = doc.description if doc.description is not None else extract_description(doc)
        logger.debug(
            "described %s:%s (%d parameters, %d inputs)",
            source.provider_name,
            model_id,
            len(desc.parameters),
            len(desc.inputs),
        )
        self.cache.put(key, desc)
        return desc

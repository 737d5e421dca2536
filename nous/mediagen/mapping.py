from __future__ import annotations

import re
from typing import Any, Callable, Iterator, Mapping

from .types import PARAM_TYPES, GenerationRequest, ParameterSchema, SchemaDocument

# Generic semantic name -> provider spellings, most specific first.
INPUT_PATTERNS: dict[str, tuple[str, ...]] = {
    "prompt": ("prompt", "text", "caption", "input_text", "description", "query"),
    "negativePrompt": ("negative_prompt", "negative", "neg_prompt", "negative_text"),
    "image": (
        "image_url",
        "image_urls",
        "image",
        "first_frame",
        "start_image",
        "init_image",
        "reference_image",
        "input_image",
        "image_input",
        "source_image",
        "img",
        "photo",
    ),
    "aspectRatio": ("aspect_ratio", "ratio", "size", "dimensions", "output_size"),
    "duration": ("duration", "length", "num_frames", "seconds", "video_length"),
    "fps": ("fps", "frame_rate", "framerate", "frames_per_second"),
    "audio": ("audio_enabled", "with_audio", "enable_audio", "audio", "sound"),
    "seed": ("seed", "random_seed", "noise_seed"),
    "steps": ("steps", "num_steps", "num_inference_steps", "inference_steps"),
    "guidance": ("guidance_scale", "guidance", "cfg_scale", "cfg"),
    "scheduler": ("scheduler", "sampler", "sampler_name"),
    "strength": ("strength", "denoise", "denoising_strength"),
}

_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Infinity)")


def match_property(properties: Mapping[str, Any], patterns: tuple[str, ...]) -> str | None:
    """
    First candidate wins: exact name, else the first declared name that contains,
    or is contained by, the candidate (case-insensitive).
    """
    names = list(properties)
    for pattern in patterns:
        if properties.get(pattern) is not None:
            return pattern
        needle = pattern.lower()
        for name in names:
            lowered = name.lower()
            if needle in lowered or lowered in needle:
                return name
    return None


def build_parameter_schema(doc: SchemaDocument) -> ParameterSchema:
    properties = doc.properties or {}
    property_types: dict[str, str] = {}
    array_properties: set[str] = set()
    for name, prop in properties.items():
        if not isinstance(prop, dict):
            continue
        t = prop.get("type")
        if isinstance(t, str) and t in PARAM_TYPES:
            property_types[name] = t
        if t == "array":
            array_properties.add(name)

    generic_to_specific: dict[str, str] = {}
    generic_array_flags: set[str] = set()
    for generic, patterns in INPUT_PATTERNS.items():
        matched = match_property(properties, patterns)
        if matched is None:
            continue
        generic_to_specific[generic] = matched
        if matched in array_properties:
            generic_array_flags.add(generic)

    return ParameterSchema(
        property_types=property_types,
        array_properties=frozenset(array_properties),
        generic_to_specific=generic_to_specific,
        generic_array_flags=frozenset(generic_array_flags),
        document=doc,
    )


def _coerce_string(value: str, expected: str) -> Any:
    if expected == "integer":
        m = _INT_PREFIX_RE.match(value)
        return int(m.group(1)) if m else value
    if expected == "number":
        m = _FLOAT_PREFIX_RE.match(value)
        return float(m.group(1)) if m else value
    if expected == "boolean":
        # Only the literal "true" converts; "false" and anything else stay strings.
        return True if value == "true" else value
    return value


def coerce_parameters(parameters: Mapping[str, Any] | None, schema: ParameterSchema) -> dict[str, Any]:
    if not parameters:
        return {}
    out = dict(parameters)
    for key, value in out.items():
        if not isinstance(value, str):
            continue
        expected = schema.property_types.get(key)
        if expected is None:
            expected = schema.property_types.get(schema.generic_to_specific.get(key, key))
        if expected is None:
            continue
        out[key] = _coerce_string(value, expected)
    return out


_MISSING = object()


def normalize_array_value(
    key: str,
    value: Any,
    array_properties: frozenset[str],
    scalar_keys: frozenset[str] = frozenset(),
) -> Any:
    """
    Fit a dynamic input to its declared shape.

    Returns `_MISSING` when a sequence for a scalar key is empty.
    """
    is_array = key in array_properties and key not in scalar_keys
    if is_array:
        return value if isinstance(value, (list, tuple)) else [value]
    if isinstance(value, (list, tuple)):
        return value[0] if value else _MISSING
    return value


class MergedPayload:
    """Provider-native parameter bag; flattened to a plain mapping only for the wire."""

    __slots__ = ("_values",)

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        if initial:
            self.update(initial)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def update(self, values: Mapping[str, Any]) -> None:
        for k, v in values.items():
            self.set(k, v)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def pop(self, key: str, default: Any = None) -> Any:
        return self._values.pop(key, default)

    def keys(self) -> list[str]:
        return list(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def to_wire(self) -> dict[str, Any]:
        return {k: (list(v) if isinstance(v, tuple) else v) for k, v in self._values.items()}

    def __repr__(self) -> str:
        return f"MergedPayload({self._values!r})"


def filter_dynamic_inputs(dynamic_inputs: Mapping[str, Any] | None) -> dict[str, Any]:
    if not dynamic_inputs:
        return {}
    return {k: v for k, v in dynamic_inputs.items() if v is not None and v != ""}


def merge_inputs(
    request: GenerationRequest,
    schema: ParameterSchema,
    *,
    prompt_key_default: str = "prompt",
    image_key_default: str = "image",
    image_key: str | None = None,
    image_is_array: bool | None = None,
    scalar_keys: frozenset[str] = frozenset(),
    externalize: Callable[[Any], Any] | None = None,
    base: Mapping[str, Any] | None = None,
) -> MergedPayload:
    """
    Combine explicit parameters, schema-mapped request fields and dynamic inputs.

    With dynamic inputs: coerced explicit parameters, then array-normalized dynamic
    inputs (later wins), then the literal prompt if nothing else supplied one.
    Without: literal prompt and reference images under their mapped keys, then
    coerced explicit parameters remapped through the generic table.
    """
    payload = MergedPayload(base)
    coerced = coerce_parameters(request.parameters, schema)
    dynamic = filter_dynamic_inputs(request.dynamic_inputs)
    prompt_key = schema.key_for("prompt", prompt_key_default)

    if dynamic:
        payload.update(coerced)
        for key, value in dynamic.items():
            if externalize is not None:
                value = externalize(value)
            normalized = normalize_array_value(key, value, schema.array_properties, scalar_keys)
            if normalized is _MISSING:
                continue
            payload.set(key, normalized)
        if "prompt" not in dynamic and prompt_key not in dynamic and request.prompt:
            payload.set(prompt_key, request.prompt)
        return payload

    if request.prompt:
        payload.set(prompt_key, request.prompt)
    if request.reference_images:
        images = list(request.reference_images)
        if externalize is not None:
            images = externalize(images)
        key = image_key or schema.key_for("image", image_key_default)
        as_array = ("image" in schema.generic_array_flags) if image_is_array is None else image_is_array
        payload.set(key, images if as_array else images[0])
    for key, value in coerced.items():
        payload.set(schema.generic_to_specific.get(key, key), value)
    return payload

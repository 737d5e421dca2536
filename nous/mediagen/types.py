from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from ._internal.errors import ErrorInfo, invalid_request_error

Provider = Literal["gemini", "replicate", "fal", "kie", "wavespeed"]
OutputKind = Literal["image", "video", "audio", "3d"]
ParamType = Literal["string", "integer", "number", "boolean", "array", "object"]
Status = Literal["completed", "failed"]
InputKind = Literal["image", "text"]

PROVIDERS: tuple[str, ...] = ("gemini", "replicate", "fal", "kie", "wavespeed")
PARAM_TYPES = frozenset({"string", "integer", "number", "boolean", "array", "object"})


@dataclass(frozen=True, slots=True)
class TargetModel:
    provider: str
    model_id: str
    display_name: str = ""
    capabilities: tuple[str, ...] = ()

    @classmethod
    def parse(cls, model: str, *, display_name: str = "", capabilities: tuple[str, ...] = ()) -> "TargetModel":
        if ":" not in model:
            raise invalid_request_error('model must be "{provider}:{model_id}"')
        provider, model_id = model.split(":", 1)
        provider = provider.strip().lower()
        model_id = model_id.strip()
        if not provider or not model_id:
            raise invalid_request_error('model must be "{provider}:{model_id}"')
        return cls(provider=provider, model_id=model_id, display_name=display_name, capabilities=capabilities)

    def label(self) -> str:
        return self.display_name or self.model_id

    def has_capability(self, needle: str) -> bool:
        return any(needle in c.lower() for c in self.capabilities)


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    model: TargetModel
    prompt: str = ""
    reference_images: tuple[str, ...] = ()
    parameters: dict[str, Any] = field(default_factory=dict)
    dynamic_inputs: dict[str, Any] = field(default_factory=dict)
    media_type: OutputKind | None = None
    aspect_ratio: str | None = None
    resolution: str | None = None
    use_google_search: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.reference_images, tuple):
            object.__setattr__(self, "reference_images", tuple(self.reference_images))

    def capability_tags(self) -> tuple[str, ...]:
        tags = self.model.capabilities
        if self.media_type and self.media_type not in tags:
            tags = (*tags, self.media_type)
        return tags


@dataclass(frozen=True, slots=True)
class ModelParameter:
    name: str
    type: str
    description: str | None = None
    default: Any = None
    enum: list[Any] | None = None
    minimum: float | None = None
    maximum: float | None = None
    required: bool = False


@dataclass(frozen=True, slots=True)
class ModelInput:
    name: str
    kind: InputKind
    required: bool = False
    is_array: bool = False
    label: str = ""
    description: str | None = None


@dataclass(frozen=True, slots=True)
class ModelDescription:
    parameters: list[ModelParameter] = field(default_factory=list)
    inputs: list[ModelInput] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SchemaDocument:
    """Raw request-body schema as acquired from a provider or a local table."""

    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    components: dict[str, Any] = field(default_factory=dict)
    version: str | None = None
    description: ModelDescription | None = None
    cacheable: bool = True


@dataclass(frozen=True, slots=True)
class ParameterSchema:
    property_types: dict[str, str] = field(default_factory=dict)
    array_properties: frozenset[str] = frozenset()
    generic_to_specific: dict[str, str] = field(default_factory=dict)
    generic_array_flags: frozenset[str] = frozenset()
    document: SchemaDocument = field(default_factory=SchemaDocument)

    def key_for(self, generic: str, default: str) -> str:
        return self.generic_to_specific.get(generic, default)

    def is_array(self, key: str) -> bool:
        return key in self.array_properties


@dataclass(frozen=True, slots=True)
class JobHandle:
    id: str
    status_url: str | None = None
    result_url: str | None = None


@dataclass(frozen=True, slots=True)
class OutputDescriptor:
    kind: OutputKind
    data_uri: str
    source_url: str
    mime_type: str | None = None


@dataclass(frozen=True, slots=True)
class GenerateResponse:
    id: str
    provider: str
    model: str
    status: Status
    output: OutputDescriptor | None = None
    error: ErrorInfo | None = None


_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


def is_data_uri(value: object) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def parse_data_uri(value: str) -> tuple[str, bytes]:
    m = _DATA_URI_RE.match(value)
    if m is None:
        raise invalid_request_error("invalid data uri: expected data:<mime>;base64,<payload>")
    try:
        data = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError):
        raise invalid_request_error("invalid data uri: bad base64 payload")
    return m.group(1), data


def estimate_data_uri_size(value: str) -> int:
    """Decoded byte length estimated from the base64 payload length."""
    _, _, payload = value.partition(",")
    return len(payload) * 3 // 4


def bytes_to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_uri(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{bytes_to_base64(data)}"


def detect_mime_type(path: str) -> str | None:
    suffix = Path(path).suffix.lower()
    if suffix in {".png"}:
        return "image/png"
    if suffix in {".jpg", ".jpeg"}:
        return "image/jpeg"
    if suffix in {".webp"}:
        return "image/webp"
    if suffix in {".gif"}:
        return "image/gif"
    return None


def sniff_image_mime_type(data: bytes) -> str | None:
    if len(data) >= 8 and data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if len(data) >= 3 and data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(data) >= 12 and data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if len(data) >= 6 and data[:6] in {b"GIF87a", b"GIF89a"}:
        return "image/gif"
    return None

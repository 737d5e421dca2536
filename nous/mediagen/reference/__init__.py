from __future__ import annotations

from typing import Any

from ..types import ModelDescription, SchemaDocument
from .catalog import get_capabilities, get_model_catalog, get_supported_models, get_supported_providers


def description_to_document(desc: ModelDescription, *, cacheable: bool = True) -> SchemaDocument:
    """Render a hardcoded model description as a request-body schema."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    for p in desc.parameters:
        prop: dict[str, Any] = {"type": p.type}
        if p.description:
            prop["description"] = p.description
        if p.default is not None:
            prop["default"] = p.default
        if p.enum is not None:
            prop["enum"] = list(p.enum)
        if p.minimum is not None:
            prop["minimum"] = p.minimum
        if p.maximum is not None:
            prop["maximum"] = p.maximum
        properties[p.name] = prop
        if p.required:
            required.append(p.name)
    for i in desc.inputs:
        if i.kind == "image":
            prop = {"type": "array", "items": {"type": "string"}} if i.is_array else {"type": "string", "format": "uri"}
        else:
            prop = {"type": "string"}
        if i.description:
            prop["description"] = i.description
        properties[i.name] = prop
        if i.required:
            required.append(i.name)
    return SchemaDocument(properties=properties, required=tuple(required), description=desc, cacheable=cacheable)


__all__ = [
    "description_to_document",
    "get_capabilities",
    "get_model_catalog",
    "get_supported_models",
    "get_supported_providers",
]

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Any, ClassVar

from .._internal.errors import MediaGenError, auth_error, invalid_request_error, provider_error, transport_error
from .._internal.http import request_json, resolve_provider_url
from ..inspector import is_image_input
from ..mapping import merge_inputs
from ..output import extract_output, normalize_output, wavespeed_rules
from ..polling import PollState, poll_until
from ..reference import description_to_document
from ..reference.wavespeed import static_description
from ..schema import SchemaAcquirer
from ..types import GenerationRequest, OutputDescriptor, ParameterSchema, SchemaDocument

logger = logging.getLogger(__name__)

_MODEL_ID_RE = re.compile(r"^[A-Za-z0-9\-_/.]+$")

_VIDEO_CAPABILITIES = ("text-to-video", "image-to-video")


def validate_model_id(model_id: str) -> str:
    if not _MODEL_ID_RE.match(model_id) or ".." in model_id:
        raise invalid_request_error(f"Invalid model ID: {model_id}")
    return model_id


@dataclass(frozen=True, slots=True)
class WaveSpeedAdapter:
    api_key: str | None
    base_url: str = "https://api.wavespeed.ai/api/v3"
    proxy_url: str | None = None

    provider_name: ClassVar[str] = "wavespeed"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise auth_error("WaveSpeed API key required")
        return {"Authorization": f"Bearer {self.api_key}"}

    def fetch_schema_document(self, model_id: str) -> SchemaDocument:
        """
        Look the model up in the live catalog; fall back to the static
        heuristics (uncached) when there is no key or the lookup fails.
        """
        if self.api_key:
            try:
                doc = self._fetch_live_schema(model_id)
            except MediaGenError as e:
                logger.warning("wavespeed schema lookup for %s failed: %s", model_id, e.info.message)
                doc = None
            if doc is not None:
                return doc
        return description_to_document(static_description(model_id), cacheable=False)

    def _fetch_live_schema(self, model_id: str) -> SchemaDocument | None:
        obj = request_json(method="GET", url=f"{self.base_url}/models", headers=self._headers(), proxy_url=self.proxy_url)
        models = obj.get("models") or obj.get("data") or obj.get("results")
        if not isinstance(models, list):
            return None
        for entry in models:
            if not isinstance(entry, dict):
                continue
            if model_id not in (entry.get("model_id"), entry.get("id"), entry.get("modelId"), entry.get("name")):
                continue
            schemas = (entry.get("api_schema") or {}).get("api_schemas")
            if not isinstance(schemas, list) or not schemas or not isinstance(schemas[0], dict):
                return None
            request_schema = schemas[0].get("request_schema")
            if not isinstance(request_schema, dict):
                return None
            return SchemaDocument(
                properties=dict(request_schema.get("properties") or {}),
                required=tuple(request_schema.get("required") or ()),
                components=dict(request_schema.get("components") or {}),
            )
        return None

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor:
        model_id = validate_model_id(request.model.model_id)
        headers = self._headers()
        schema = schemas.get_schema(self, model_id)
        schema = dataclasses.replace(schema, array_properties=schema.array_properties | {"images"})
        image_key, image_is_array = _image_target(schema)
        payload = merge_inputs(request, schema, image_key=image_key, image_is_array=image_is_array)
        logger.info("wavespeed submit %s inputs: %s", model_id, ", ".join(payload.keys()))

        submitted = request_json(
            method="POST",
            url=f"{self.base_url}/{model_id}",
            headers=headers,
            json_body=payload.to_wire(),
            proxy_url=self.proxy_url,
        )
        data = submitted.get("data") if isinstance(submitted.get("data"), dict) else {}
        task_id = data.get("id") or submitted.get("id")
        if not task_id:
            raise transport_error("No task ID returned from API")
        urls = data.get("urls") if isinstance(data.get("urls"), dict) else {}
        poll_url = resolve_provider_url(
            urls.get("get"),
            fallback=f"{self.base_url}/predictions/{task_id}/result",
            required_prefix="https://api.wavespeed.ai",
        )
        logger.info("wavespeed task submitted: %s", task_id)

        outcome = poll_until(
            lambda: self._poll(poll_url, headers),
            _classify,
            interval_s=1.0,
            budget_s=5 * 60,
            label=f"wavespeed:{task_id}",
        )
        result = outcome.result
        inner = result.get("data") if isinstance(result.get("data"), dict) else {}
        if outcome.state == "failed":
            raise provider_error(str(inner.get("error") or result.get("error") or result.get("message") or "Generation failed"))

        is_video = any(c in request.model.capabilities for c in _VIDEO_CAPABILITIES) or request.media_type == "video"
        locator = extract_output(result, wavespeed_rules(is_video))
        return normalize_output(locator, ("video",) if is_video else request.capability_tags())

    def _poll(self, url: str, headers: dict[str, str]) -> dict[str, Any]:
        try:
            return request_json(method="GET", url=url, headers=headers, proxy_url=self.proxy_url)
        except MediaGenError as e:
            # The result endpoint answers 404 until the prediction exists.
            if e.info.http_status == 404:
                return {"status": "pending"}
            raise


def _image_target(schema: ParameterSchema) -> tuple[str, bool]:
    """
    Key and shape for reference images.

    Declared `images`/`image` win over the fuzzy mapping, which can land on
    parameters such as `image_size`.
    """
    properties = schema.document.properties
    if "images" in properties:
        return "images", True
    if "image" in properties:
        return "image", schema.is_array("image")
    mapped = schema.generic_to_specific.get("image")
    if mapped and is_image_input(mapped, properties.get(mapped) or {}):
        return mapped, schema.is_array(mapped)
    return "image", False


def _classify(obj: dict[str, Any]) -> tuple[PollState, str]:
    data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
    status = str(data.get("status") or obj.get("status") or "created")
    if status == "completed":
        return "succeeded", status
    if status == "failed":
        return "failed", status
    return "pending", status

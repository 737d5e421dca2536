from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, ClassVar

from .._internal.errors import provider_error, schema_unavailable_error, transport_error, upload_too_large_error
from .._internal.http import request_bytes, request_json, resolve_provider_url, validate_media_url
from ..mapping import merge_inputs
from ..media import bind_uploader
from ..output import FAL_RULES, extract_output, normalize_output
from ..polling import PollState, poll_until
from ..schema import SchemaAcquirer
from ..types import GenerationRequest, JobHandle, OutputDescriptor, SchemaDocument
from ..types import estimate_data_uri_size, parse_data_uri

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

_UPLOAD_INITIATE_URL = "https://rest.alpha.fal.ai/storage/upload/initiate?storage_type=fal-cdn-v3"


@dataclass(frozen=True, slots=True)
class FalAdapter:
    """
    fal.ai queue API.

    Works without a key at a reduced rate limit. Inline images are moved to
    the fal CDN before submission.
    """

    api_key: str | None = None
    queue_url: str = "https://queue.fal.run"
    api_url: str = "https://api.fal.ai/v1"
    proxy_url: str | None = None

    provider_name: ClassVar[str] = "fal"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Key {self.api_key}"}

    def fetch_schema_document(self, model_id: str) -> SchemaDocument:
        query = urllib.parse.urlencode({"endpoint_id": model_id, "expand": "openapi-3.0"})
        obj = request_json(
            method="GET",
            url=f"{self.api_url}/models?{query}",
            headers=self._headers(),
            proxy_url=self.proxy_url,
        )
        models = obj.get("models")
        openapi = models[0].get("openapi") if isinstance(models, list) and models and isinstance(models[0], dict) else None
        if not isinstance(openapi, dict):
            raise schema_unavailable_error(f"no openapi document for {model_id}")
        components = (openapi.get("components") or {}).get("schemas") or {}
        input_schema = _find_request_schema(openapi, components)
        if input_schema is None:
            raise schema_unavailable_error(f"no request body schema for {model_id}")
        return SchemaDocument(
            properties=dict(input_schema.get("properties") or {}),
            required=tuple(input_schema.get("required") or ()),
            components=components,
        )

    def upload(self, data_uri: str) -> str:
        """Move an inline data URI to the fal CDN and return its public URL."""
        estimated = estimate_data_uri_size(data_uri)
        if estimated > MAX_UPLOAD_BYTES:
            raise upload_too_large_error(
                f"Image too large to upload ({estimated / (1024 * 1024):.1f} MB, "
                f"max {MAX_UPLOAD_BYTES // (1024 * 1024)} MB)"
            )
        content_type, data = parse_data_uri(data_uri)
        ext = content_type.split("/", 1)[-1] or "png"
        initiated = request_json(
            method="POST",
            url=_UPLOAD_INITIATE_URL,
            headers=self._headers(),
            json_body={"content_type": content_type, "file_name": f"{int(time.time() * 1000)}.{ext}"},
            proxy_url=self.proxy_url,
        )
        upload_url = initiated.get("upload_url")
        file_url = initiated.get("file_url")
        if not upload_url or not file_url:
            raise transport_error("fal CDN initiate response missing upload_url or file_url")
        validate_media_url(upload_url, require_https=True)
        validate_media_url(file_url, require_https=True)
        request_bytes(
            method="PUT",
            url=upload_url,
            headers={"Content-Type": content_type},
            body=data,
            proxy_url=self.proxy_url,
        )
        return file_url

    def submit(self, model_id: str, payload: dict[str, Any]) -> JobHandle:
        submitted = request_json(
            method="POST",
            url=f"{self.queue_url}/{model_id}",
            headers=self._headers(),
            json_body=payload,
            proxy_url=self.proxy_url,
        )
        request_id = submitted.get("request_id")
        if not isinstance(request_id, str) or not request_id:
            raise transport_error("No request_id in queue response")
        prefix = f"{self.queue_url}/"
        return JobHandle(
            id=request_id,
            status_url=resolve_provider_url(
                submitted.get("status_url"),
                fallback=f"{self.queue_url}/{model_id}/requests/{request_id}/status",
                required_prefix=prefix,
            ),
            result_url=resolve_provider_url(
                submitted.get("response_url"),
                fallback=f"{self.queue_url}/{model_id}/requests/{request_id}",
                required_prefix=prefix,
            ),
        )

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor:
        model_id = request.model.model_id
        if not self.api_key:
            logger.warning("fal request for %s without an API key; rate limits are lower", model_id)
        schema = schemas.get_schema(self, model_id)
        payload = merge_inputs(
            request,
            schema,
            image_key_default="image_url",
            externalize=bind_uploader(self.upload),
        )
        logger.info("fal submit %s inputs: %s", model_id, ", ".join(payload.keys()))
        handle = self.submit(model_id, payload.to_wire())
        logger.info("fal request queued: %s", handle.id)

        outcome = poll_until(
            lambda: request_json(method="GET", url=handle.status_url, headers=self._headers(), proxy_url=self.proxy_url),
            _classify,
            interval_s=1.0,
            budget_s=10 * 60,
            label=f"fal:{handle.id}",
        )
        if outcome.state == "failed":
            raise provider_error(str(outcome.result.get("error") or "Generation failed"))

        result = request_json(method="GET", url=handle.result_url, headers=self._headers(), proxy_url=self.proxy_url)
        locator = extract_output(result, FAL_RULES)
        return normalize_output(locator, request.capability_tags())


def _find_request_schema(openapi: dict[str, Any], components: dict[str, Any]) -> dict[str, Any] | None:
    paths = openapi.get("paths")
    if not isinstance(paths, dict):
        return None
    for path_obj in paths.values():
        if not isinstance(path_obj, dict):
            continue
        schema = (
            ((path_obj.get("post") or {}).get("requestBody") or {}).get("content", {}).get("application/json", {})
        ).get("schema")
        if not isinstance(schema, dict):
            continue
        ref = schema.get("$ref")
        if isinstance(ref, str):
            resolved = components.get(ref.removeprefix("#/components/schemas/"))
            if isinstance(resolved, dict):
                return resolved
        elif schema.get("properties"):
            return schema
    return None


def _classify(obj: dict[str, Any]) -> tuple[PollState, str]:
    status = str(obj.get("status") or "IN_QUEUE")
    if status == "COMPLETED":
        return "succeeded", status
    if status == "FAILED":
        return "failed", status
    return "pending", status

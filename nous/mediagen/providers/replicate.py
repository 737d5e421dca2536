from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from .._internal.errors import auth_error, invalid_request_error, provider_error, schema_unavailable_error, transport_error
from .._internal.http import request_json
from ..mapping import merge_inputs
from ..output import REPLICATE_RULES, extract_output, normalize_output
from ..polling import PollState, poll_until
from ..schema import SchemaAcquirer
from ..types import GenerationRequest, OutputDescriptor, SchemaDocument

logger = logging.getLogger(__name__)

_TERMINAL = {"succeeded": "succeeded", "failed": "failed", "canceled": "failed"}


@dataclass(frozen=True, slots=True)
class ReplicateAdapter:
    """
    Replicate predictions API.

    The schema and the model version id come from the same metadata call, so
    schema acquisition is strict here: without a version there is nothing to submit.
    """

    api_key: str | None
    base_url: str = "https://api.replicate.com/v1"
    proxy_url: str | None = None

    provider_name: ClassVar[str] = "replicate"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise auth_error("Replicate API key required")
        return {"Authorization": f"Bearer {self.api_key}"}

    def fetch_schema_document(self, model_id: str) -> SchemaDocument:
        owner, _, name = model_id.partition("/")
        if not owner or not name:
            raise invalid_request_error(f'Invalid Replicate model ID "{model_id}": expected "owner/name" format')
        obj = request_json(
            method="GET",
            url=f"{self.base_url}/models/{owner}/{name}",
            headers=self._headers(),
            proxy_url=self.proxy_url,
        )
        latest = obj.get("latest_version")
        if not isinstance(latest, dict) or not latest.get("id"):
            raise schema_unavailable_error("Model has no available version")
        openapi = latest.get("openapi_schema")
        components = {}
        if isinstance(openapi, dict) and isinstance(openapi.get("components"), dict):
            components = openapi["components"].get("schemas") or {}
        input_schema = components.get("Input") if isinstance(components, dict) else None
        if not isinstance(input_schema, dict):
            input_schema = {}
        return SchemaDocument(
            properties=dict(input_schema.get("properties") or {}),
            required=tuple(input_schema.get("required") or ()),
            components=components if isinstance(components, dict) else {},
            version=str(latest["id"]),
        )

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor:
        model_id = request.model.model_id
        schema = schemas.get_schema(self, model_id, strict=True)
        version = schema.document.version
        if not version:
            raise schema_unavailable_error("Model has no available version")

        payload = merge_inputs(request, schema, image_key_default="image")
        logger.info("replicate submit %s (version %s) inputs: %s", model_id, version, ", ".join(payload.keys()))
        prediction = request_json(
            method="POST",
            url=f"{self.base_url}/predictions",
            headers=self._headers(),
            json_body={"version": version, "input": payload.to_wire()},
            proxy_url=self.proxy_url,
        )
        prediction_id = prediction.get("id")
        if not isinstance(prediction_id, str) or not prediction_id:
            raise transport_error("No prediction id in response")
        logger.info("replicate prediction created: %s", prediction_id)

        final = prediction
        state, status = _classify(prediction)
        if state == "pending":
            budget_s = 10 * 60 if request.model.has_capability("video") else 5 * 60
            outcome = poll_until(
                lambda: request_json(
                    method="GET",
                    url=f"{self.base_url}/predictions/{prediction_id}",
                    headers=self._headers(),
                    proxy_url=self.proxy_url,
                ),
                _classify,
                interval_s=1.0,
                budget_s=budget_s,
                label=f"replicate:{prediction_id}",
            )
            state, status, final = outcome.state, outcome.status, outcome.result

        if state == "failed":
            if status == "canceled":
                raise provider_error("Prediction was canceled")
            raise provider_error(str(final.get("error") or "Prediction failed"))

        locator = extract_output(final, REPLICATE_RULES)
        return normalize_output(locator, request.capability_tags())


def _classify(obj: dict[str, Any]) -> tuple[PollState, str]:
    status = str(obj.get("status") or "starting")
    return _TERMINAL.get(status, "pending"), status  # type: ignore[return-value]

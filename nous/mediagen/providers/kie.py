from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, ClassVar

from .._internal.errors import auth_error, invalid_request_error, provider_error, transport_error
from .._internal.errors import upload_too_large_error, validation_error
from .._internal.http import request_json, validate_media_url
from ..mapping import MergedPayload, filter_dynamic_inputs, merge_inputs
from ..media import bind_uploader, externalize
from ..output import KIE_RULES, VEO_RULES, extract_output, normalize_output
from ..polling import PollState, poll_until
from ..reference import description_to_document
from ..reference.kie import SCALAR_IMAGE_KEYS, get_image_input_key, get_model_defaults, get_model_description
from ..reference.kie import is_veo_model, veo_api_model
from ..schema import SchemaAcquirer
from ..types import GenerationRequest, OutputDescriptor, SchemaDocument, is_data_uri, sniff_image_mime_type

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

_UPLOAD_URL = "https://kieai.redpandaai.co/api/file-base64-upload"

_SUCCESS_STATES = {"SUCCESS", "COMPLETED"}
_FAILURE_STATES = {"FAIL", "FAILED", "ERROR"}

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}


@dataclass(frozen=True, slots=True)
class KieAdapter:
    """
    Kie.ai task API.

    Most models go through `jobs/createTask`; Veo models have their own endpoint
    and success flag. Parameter schemas come from the local model table.
    """

    api_key: str | None
    base_url: str = "https://api.kie.ai/api/v1"
    proxy_url: str | None = None

    provider_name: ClassVar[str] = "kie"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise auth_error("Kie.ai API key required")
        return {"Authorization": f"Bearer {self.api_key}"}

    def fetch_schema_document(self, model_id: str) -> SchemaDocument:
        return description_to_document(get_model_description(model_id))

    def upload(self, data_uri: str) -> str:
        """
        Upload an inline image and return its download URL.

        The declared MIME type is ignored in favour of the one sniffed from the bytes.
        """
        header, _, encoded = data_uri.partition(",")
        try:
            raw = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError):
            raise invalid_request_error("invalid base64 image data")
        if len(raw) > MAX_UPLOAD_BYTES:
            raise upload_too_large_error(
                f"Image too large to upload ({len(raw) / (1024 * 1024):.1f}MB, "
                f"max {MAX_UPLOAD_BYTES // (1024 * 1024)}MB)"
            )
        mime = sniff_image_mime_type(raw) or "image/png"
        file_name = f"upload_{int(time.time() * 1000)}.{_EXTENSIONS.get(mime, 'png')}"
        logger.debug("kie upload %s (%.1fKB, declared %s)", file_name, len(raw) / 1024, header[5:])
        result = request_json(
            method="POST",
            url=_UPLOAD_URL,
            headers=self._headers(),
            json_body={"base64Data": f"data:{mime};base64,{encoded}", "uploadPath": "images", "fileName": file_name},
            proxy_url=self.proxy_url,
        )
        code = result.get("code")
        if code and code != 200 and not result.get("success"):
            raise transport_error(f"Upload failed: {result.get('msg') or 'Unknown error'}")
        data = result.get("data") if isinstance(result.get("data"), dict) else {}
        url = data.get("downloadUrl") or result.get("downloadUrl") or result.get("url")
        if not isinstance(url, str) or not url:
            raise transport_error("No download URL in upload response")
        return validate_media_url(url, require_https=True)

    def build_input(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> MergedPayload:
        model_id = request.model.model_id
        schema = schemas.get_schema(self, model_id)
        dynamic = filter_dynamic_inputs(request.dynamic_inputs)
        image_key = get_image_input_key(model_id)

        # Inline images supplied as single strings are sent as one-element lists
        # unless the key is one of the singular image fields.
        inline = {k for k, v in dynamic.items() if is_data_uri(v) or isinstance(v, (list, tuple))}
        schema = dataclasses.replace(
            schema, array_properties=frozenset((schema.array_properties | inline) - SCALAR_IMAGE_KEYS)
        )
        upload = bind_uploader(self.upload)
        payload = merge_inputs(
            request,
            schema,
            image_key=image_key,
            image_is_array=image_key not in SCALAR_IMAGE_KEYS,
            scalar_keys=SCALAR_IMAGE_KEYS,
            externalize=upload,
            base=get_model_defaults(model_id),
        )
        if dynamic and image_key not in dynamic and request.reference_images:
            urls = externalize(list(request.reference_images), self.upload)
            payload.set(image_key, urls if image_key not in SCALAR_IMAGE_KEYS else urls[0])

        if model_id.startswith("gpt-image/1.5"):
            payload.pop("size")
        if model_id.startswith("elevenlabs/") and payload.get("prompt"):
            payload.set("text", payload.pop("prompt"))
        return payload

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor:
        payload = self.build_input(request, schemas=schemas)
        if is_veo_model(request.model.model_id):
            return self._generate_veo(request, payload)
        return self._generate_task(request, payload)

    def _generate_task(self, request: GenerationRequest, payload: MergedPayload) -> OutputDescriptor:
        model_id = request.model.model_id
        logger.info("kie createTask %s inputs: %s", model_id, ", ".join(payload.keys()))
        created = request_json(
            method="POST",
            url=f"{self.base_url}/jobs/createTask",
            headers=self._headers(),
            json_body={"model": model_id, "input": payload.to_wire()},
            proxy_url=self.proxy_url,
        )
        # Errors are reported with HTTP 200 and a body code.
        code = created.get("code")
        if code and code != 200:
            raise validation_error(
                str(created.get("msg") or created.get("message") or "API error"), provider_code=str(code)
            )
        data = created.get("data") if isinstance(created.get("data"), dict) else {}
        task_id = created.get("taskId") or data.get("taskId") or created.get("id")
        if not task_id:
            raise transport_error("No task ID in response")
        logger.info("kie task created: %s", task_id)

        query = urllib.parse.urlencode({"taskId": task_id})
        outcome = poll_until(
            lambda: request_json(
                method="GET",
                url=f"{self.base_url}/jobs/recordInfo?{query}",
                headers=self._headers(),
                proxy_url=self.proxy_url,
            ),
            _classify_task,
            interval_s=2.0,
            budget_s=10 * 60,
            label=f"kie:{task_id}",
        )
        result = outcome.result
        data = result.get("data") if isinstance(result.get("data"), dict) else None
        if outcome.state == "failed":
            source = data or result
            raise provider_error(
                str(
                    source.get("failMsg")
                    or source.get("errorMessage")
                    or source.get("error")
                    or source.get("message")
                    or "Generation failed"
                )
            )
        locator = extract_output(data or result, KIE_RULES)
        return normalize_output(locator, request.capability_tags())

    def _generate_veo(self, request: GenerationRequest, payload: MergedPayload) -> OutputDescriptor:
        model_id = request.model.model_id
        body: dict[str, Any] = {
            "prompt": payload.get("prompt"),
            "model": veo_api_model(model_id),
            "aspect_ratio": payload.get("aspect_ratio") or "16:9",
        }
        images = payload.get("imageUrls")
        if images:
            body["imageUrls"] = list(images) if isinstance(images, (list, tuple)) else [images]
        if "seeds" in payload:
            body["seeds"] = payload.get("seeds")
        logger.info("kie veo generate %s (%s)", model_id, body["model"])
        created = request_json(
            method="POST",
            url=f"{self.base_url}/veo/generate",
            headers=self._headers(),
            json_body=body,
            proxy_url=self.proxy_url,
        )
        code = created.get("code")
        if code and code != 200:
            raise validation_error(
                str(created.get("msg") or created.get("message") or "API error"), provider_code=str(code)
            )
        data = created.get("data") if isinstance(created.get("data"), dict) else {}
        task_id = data.get("taskId") or created.get("taskId")
        if not task_id:
            raise transport_error("No task ID in response")
        logger.info("kie veo task created: %s", task_id)

        query = urllib.parse.urlencode({"taskId": task_id})
        outcome = poll_until(
            lambda: request_json(
                method="GET",
                url=f"{self.base_url}/veo/record-info?{query}",
                headers=self._headers(),
                proxy_url=self.proxy_url,
            ),
            _classify_veo,
            interval_s=2.0,
            budget_s=10 * 60,
            label=f"kie-veo:{task_id}",
        )
        data = outcome.result.get("data") if isinstance(outcome.result.get("data"), dict) else {}
        if outcome.state == "failed":
            raise provider_error(str(data.get("errorMessage") or "Generation failed"))
        locator = extract_output(data, VEO_RULES)
        return normalize_output(locator, ("video",))


def _classify_task(obj: dict[str, Any]) -> tuple[PollState, str]:
    data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
    state = str(data.get("state") or obj.get("state") or obj.get("status") or "").upper()
    if state in _SUCCESS_STATES:
        return "succeeded", state
    if state in _FAILURE_STATES:
        return "failed", state
    return "pending", state or "WAITING"


def _classify_veo(obj: dict[str, Any]) -> tuple[PollState, str]:
    data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
    flag = data.get("successFlag", -1)
    if flag == 1:
        return "succeeded", "1"
    if flag in (2, 3):
        return "failed", str(flag)
    return "pending", str(flag)

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from .._internal.errors import auth_error, invalid_request_error, no_output_error, transport_error
from .._internal.http import fetch_media, request_json, validate_media_url
from ..mapping import filter_dynamic_inputs
from ..reference import description_to_document
from ..reference.gemini import is_pro_model, resolve_model, static_description
from ..schema import SchemaAcquirer
from ..types import GenerationRequest, OutputDescriptor, SchemaDocument, bytes_to_base64, is_data_uri
from ..types import parse_data_uri

logger = logging.getLogger(__name__)

MAX_REFERENCE_IMAGE_BYTES = 20 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class GeminiAdapter:
    """
    Gemini image generation over the `generateContent` REST endpoint.

    The call is synchronous: there is no job to poll and the image comes back
    inline, so `source_url` on the output is always empty.
    """

    api_key: str | None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    proxy_url: str | None = None

    provider_name: ClassVar[str] = "gemini"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise auth_error("Gemini API key required")
        return {"x-goog-api-key": self.api_key}

    def fetch_schema_document(self, model_id: str) -> SchemaDocument:
        return description_to_document(static_description(model_id))

    def _image_part(self, image: str) -> dict[str, Any]:
        if is_data_uri(image):
            mime, data = parse_data_uri(image)
            return {"inlineData": {"mimeType": mime, "data": bytes_to_base64(data)}}
        if image.startswith(("http://", "https://")):
            url = validate_media_url(image)
            media = fetch_media(url, max_bytes=MAX_REFERENCE_IMAGE_BYTES, proxy_url=self.proxy_url)
            mime = (media.content_type or "image/png").split(";", 1)[0].strip()
            return {"inlineData": {"mimeType": mime, "data": bytes_to_base64(media.data)}}
        raise invalid_request_error("reference image must be a data URI or an http(s) URL")

    def build_body(self, request: GenerationRequest) -> dict[str, Any]:
        model_id = request.model.model_id
        params = request.parameters or {}
        dynamic = filter_dynamic_inputs(request.dynamic_inputs)

        prompt = dynamic.get("prompt") or request.prompt
        images = dynamic.get("images", list(request.reference_images))
        if isinstance(images, str):
            images = [images]

        parts: list[dict[str, Any]] = [{"text": prompt or ""}]
        parts.extend(self._image_part(img) for img in images)

        generation_config: dict[str, Any] = {"responseModalities": ["IMAGE", "TEXT"]}
        image_config: dict[str, Any] = {}
        aspect_ratio = request.aspect_ratio or params.get("aspect_ratio")
        if aspect_ratio:
            image_config["aspectRatio"] = aspect_ratio
        pro = is_pro_model(model_id)
        resolution = request.resolution or params.get("resolution")
        if pro and resolution:
            image_config["imageSize"] = resolution
        if image_config:
            generation_config["imageConfig"] = image_config

        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        use_search = request.use_google_search or params.get("use_google_search") in (True, "true")
        if pro and use_search:
            body["tools"] = [{"googleSearch": {}}]
        return body

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor:
        model_name = resolve_model(request.model.model_id)
        body = self.build_body(request)
        logger.info("gemini generateContent %s (%d parts)", model_name, len(body["contents"][0]["parts"]))
        obj = request_json(
            method="POST",
            url=f"{self.base_url}/models/{model_name}:generateContent",
            headers=self._headers(),
            json_body=body,
            proxy_url=self.proxy_url,
        )
        return _parse_output(obj)


def _parse_output(obj: dict[str, Any]) -> OutputDescriptor:
    candidates = obj.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise transport_error("No response from AI model")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise no_output_error("No content in response")

    for part in parts:
        blob = part.get("inlineData") if isinstance(part, dict) else None
        if isinstance(blob, dict) and isinstance(blob.get("data"), str) and blob["data"]:
            mime = blob.get("mimeType") or "image/png"
            return OutputDescriptor(kind="image", data_uri=f"data:{mime};base64,{blob['data']}", source_url="", mime_type=mime)

    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text:
            raise no_output_error(f"Model returned text instead of image: {text[:200]}")
    raise no_output_error("No image in response")

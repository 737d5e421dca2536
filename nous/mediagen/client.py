from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import Protocol

from ._internal.config import get_provider_keys, load_env_files
from ._internal.errors import RATE_LIMIT_HINT_ADD_KEY, RATE_LIMIT_HINT_RETRY, MediaGenError
from ._internal.errors import invalid_request_error, with_rate_limit_hint
from .inspector import ModelInspector
from .mapping import filter_dynamic_inputs
from .providers import FalAdapter, GeminiAdapter, KieAdapter, ReplicateAdapter, WaveSpeedAdapter
from .reference import get_capabilities
from .schema import SchemaAcquirer
from .types import PROVIDERS, GenerateResponse, GenerationRequest, ModelDescription, OutputDescriptor, ParameterSchema
from .types import SchemaDocument

logger = logging.getLogger(__name__)

_ENV_NAMES = {
    "gemini": "GEMINI_API_KEY",
    "replicate": "REPLICATE_API_KEY",
    "fal": "FAL_API_KEY",
    "kie": "KIE_API_KEY",
    "wavespeed": "WAVESPEED_API_KEY",
}

# fal accepts unauthenticated calls at a reduced rate limit.
_KEY_OPTIONAL = frozenset({"fal"})


class _Adapter(Protocol):
    provider_name: str

    def fetch_schema_document(self, model_id: str) -> SchemaDocument: ...

    def generate(self, request: GenerationRequest, *, schemas: SchemaAcquirer) -> OutputDescriptor: ...


class Client:
    """
    Entry point: route a `GenerationRequest` to its provider and fold every
    failure into a `failed` `GenerateResponse`.

    Credentials come from the environment (after loading `.env*` files) and may
    be overridden per call; they are never stored beyond the call.
    """

    def __init__(
        self,
        *,
        proxy_url: str | None = None,
        schemas: SchemaAcquirer | None = None,
        inspector: ModelInspector | None = None,
    ) -> None:
        load_env_files()
        self._proxy_url = proxy_url.strip() if isinstance(proxy_url, str) and proxy_url.strip() else None
        self._keys = get_provider_keys()
        self.schemas = schemas if schemas is not None else SchemaAcquirer()
        self.inspector = inspector if inspector is not None else ModelInspector()

    def configured_providers(self) -> list[str]:
        return [p for p in PROVIDERS if p in _KEY_OPTIONAL or self._keys.for_provider(p)]

    def _credential(self, provider: str, credential: str | None) -> str | None:
        key = credential.strip() if isinstance(credential, str) and credential.strip() else None
        return key or self._keys.for_provider(provider)

    def _adapter(self, provider: str, api_key: str | None, *, require_key: bool = True) -> _Adapter:
        if provider not in PROVIDERS:
            raise invalid_request_error(f"unknown provider: {provider}")
        if require_key and not api_key and provider not in _KEY_OPTIONAL:
            name = _ENV_NAMES[provider]
            raise invalid_request_error(f"NOUS_MEDIAGEN_{name}/{name} not configured")
        if provider == "gemini":
            return GeminiAdapter(api_key=api_key, proxy_url=self._proxy_url)
        if provider == "replicate":
            return ReplicateAdapter(api_key=api_key, proxy_url=self._proxy_url)
        if provider == "fal":
            return FalAdapter(api_key=api_key, proxy_url=self._proxy_url)
        if provider == "kie":
            return KieAdapter(api_key=api_key, proxy_url=self._proxy_url)
        return WaveSpeedAdapter(api_key=api_key, proxy_url=self._proxy_url)

    def generate(self, request: GenerationRequest, *, credential: str | None = None) -> GenerateResponse:
        model = request.model
        response_id = uuid.uuid4().hex
        api_key = self._credential(model.provider, credential)
        if not model.capabilities:
            caps = get_capabilities(model.provider, model.model_id)
            if caps:
                request = _with_capabilities(request, caps)
        logger.info(
            "generate %s:%s prompt=%r images=%d dynamic=%s",
            model.provider,
            model.model_id,
            request.prompt[:80],
            len(request.reference_images),
            ",".join(request.dynamic_inputs or {}) or "none",
        )
        try:
            validate_request(request)
            adapter = self._adapter(model.provider, api_key)
            output = adapter.generate(request, schemas=self.schemas)
        except MediaGenError as e:
            hint = RATE_LIMIT_HINT_ADD_KEY if model.provider in _KEY_OPTIONAL and not api_key else RATE_LIMIT_HINT_RETRY
            err = with_rate_limit_hint(e, hint).with_prefix(f"{model.provider}:{model.label()}")
            logger.warning("generate %s:%s failed: %s", model.provider, model.model_id, err.info.message)
            return GenerateResponse(
                id=response_id,
                provider=model.provider,
                model=model.model_id,
                status="failed",
                error=err.info,
            )
        logger.info("generate %s:%s completed (%s)", model.provider, model.model_id, output.kind)
        return GenerateResponse(
            id=response_id,
            provider=model.provider,
            model=model.model_id,
            status="completed",
            output=output,
        )

    async def generate_async(self, request: GenerationRequest, *, credential: str | None = None) -> GenerateResponse:
        """
        Async wrapper for `generate()`.

        Implementation: run sync HTTP calls in a worker thread via `asyncio.to_thread`.
        """
        return await asyncio.to_thread(self.generate, request, credential=credential)

    def describe_model(self, provider: str, model_id: str, *, credential: str | None = None) -> ModelDescription:
        """
        Parameters and connectable inputs for one model.

        Raises `MediaGenError`; unlike `generate()` nothing is folded into a response.
        """
        provider = provider.strip().lower()
        api_key = self._credential(provider, credential)
        # Only replicate needs a key to read a schema; the others degrade or use local tables.
        adapter = self._adapter(provider, api_key, require_key=provider == "replicate")
        return self.inspector.describe(adapter, model_id)

    def get_schema(self, provider: str, model_id: str, *, credential: str | None = None) -> ParameterSchema:
        provider = provider.strip().lower()
        api_key = self._credential(provider, credential)
        adapter = self._adapter(provider, api_key, require_key=provider == "replicate")
        return self.schemas.get_schema(adapter, model_id)


def validate_request(request: GenerationRequest) -> None:
    """A request needs some prompt or some image to work from."""
    if request.prompt.strip() or request.reference_images:
        return
    dynamic = filter_dynamic_inputs(request.dynamic_inputs)
    if "prompt" in dynamic:
        return
    if any("image" in k.lower() or "frame" in k.lower() for k in dynamic):
        return
    raise invalid_request_error("Prompt or image input is required")


def _with_capabilities(request: GenerationRequest, capabilities: tuple[str, ...]) -> GenerationRequest:
    return replace(request, model=replace(request.model, capabilities=capabilities))

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import asdict
from hmac import compare_digest
from typing import Any, TypedDict

from .client import Client
from .types import PROVIDERS, GenerationRequest, TargetModel

logger = logging.getLogger(__name__)

_MCP_GENERATE_REQUEST_SCHEMA: dict = {
    "type": "object",
    "title": "GenerationRequest",
    "description": 'Media generation request. `model` must be "{provider}:{model_id}" (e.g. "fal:fal-ai/flux/dev").',
    "required": ["model"],
    "properties": {
        "model": {
            "type": "string",
            "pattern": r"^[^\s:]+:[^\s]+$",
            "description": 'Model string in the form "{provider}:{model_id}".',
            "examples": ["fal:fal-ai/flux/dev", "kie:veo3/text-to-video"],
        },
        "prompt": {"type": "string"},
        "reference_images": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Image URLs or base64 data URIs.",
        },
        "parameters": {"type": "object", "description": "Explicit model parameters."},
        "dynamic_inputs": {
            "type": "object",
            "description": "Values keyed by provider-native input names; these take precedence.",
        },
        "capabilities": {"type": "array", "items": {"type": "string"}, "examples": [["text-to-video"]]},
        "media_type": {"type": "string", "enum": ["image", "video", "audio", "3d"]},
        "aspect_ratio": {"type": "string"},
        "resolution": {"type": "string"},
        "use_google_search": {"type": "boolean"},
    },
}


class McpGenerateArgs(TypedDict, total=False):
    model: str
    prompt: str
    reference_images: list[str]
    parameters: dict[str, Any]
    dynamic_inputs: dict[str, Any]
    capabilities: list[str]
    media_type: str | None
    aspect_ratio: str | None
    resolution: str | None
    use_google_search: bool


class ProvidersInfo(TypedDict):
    supported: list[str]
    configured: list[str]


class McpGenerateResponseBase(TypedDict):
    id: str
    provider: str
    model: str
    status: str


class McpGenerateResponse(McpGenerateResponseBase, total=False):
    output: dict[str, Any] | None
    error: dict[str, Any] | None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value


def _get_host_port() -> tuple[str, int]:
    host = os.environ.get("NOUS_MEDIAGEN_MCP_HOST", "").strip() or "127.0.0.1"
    port = _env_int("NOUS_MEDIAGEN_MCP_PORT", 6002)
    if port < 1:
        port = 1
    if port > 65535:
        port = 65535
    return host, port


def to_generation_request(args: McpGenerateArgs) -> GenerationRequest:
    model = TargetModel.parse(args["model"], capabilities=tuple(args.get("capabilities") or ()))
    return GenerationRequest(
        model=model,
        prompt=args.get("prompt") or "",
        reference_images=tuple(args.get("reference_images") or ()),
        parameters=dict(args.get("parameters") or {}),
        dynamic_inputs=dict(args.get("dynamic_inputs") or {}),
        media_type=args.get("media_type"),  # type: ignore[arg-type]
        aspect_ratio=args.get("aspect_ratio"),
        resolution=args.get("resolution"),
        use_google_search=bool(args.get("use_google_search", False)),
    )


def build_server(
    *,
    proxy_url: str | None = None,
    host: str | None = None,
    port: int | None = None,
    client: Client | None = None,
):
    """
    Build a FastMCP server that exposes:
    - generate: Client.generate wrapper returning one output descriptor
    - describe_model: parameters and connectable inputs of a model
    - list_providers: supported providers and the ones with credentials

    Notes for LLM tool callers:
    - Model must be "{provider}:{model_id}".
    - Call `describe_model` first to learn the native input names for `dynamic_inputs`.
    """
    try:
        from mcp.server.fastmcp import FastMCP
    except ModuleNotFoundError as e:  # pragma: no cover
        raise SystemExit("missing dependency: install `mcp` to run the MCP server") from e
    from typing import Annotated

    from pydantic import Field, WithJsonSchema

    if host is None or port is None:
        host, port = _get_host_port()
    server = FastMCP(name="MediaGen", host=host, port=port)
    client = client if client is not None else Client(proxy_url=proxy_url)

    def list_providers() -> ProvidersInfo:
        """
        List providers supported by this MCP server.

        Returns:
        - supported: every provider the orchestrator can route to
        - configured: providers usable right now (fal also works without a key)
        """
        return {"supported": list(PROVIDERS), "configured": client.configured_providers()}

    def describe_model(model: str) -> dict[str, Any]:
        """
        Describe a model's parameters and connectable inputs.

        Returns:
        - parameters: [{name, type, description?, default?, enum?, minimum?, maximum?, required}]
        - inputs: [{name, kind: image|text, required, is_array, label}]
        """
        target = TargetModel.parse(model)
        desc = client.describe_model(target.provider, target.model_id)
        return asdict(desc)

    def generate(request: dict[str, Any]) -> McpGenerateResponse:
        """
        MCP-friendly wrapper of `Client.generate`.

        Failures do not raise: they come back with status "failed" and an `error`
        object whose message is prefixed with the model name.
        """
        from pydantic import TypeAdapter, ValidationError

        if not isinstance(request, dict):
            raise ValueError("request must be an object")
        try:
            args = TypeAdapter(McpGenerateArgs).validate_python(request)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        if not args.get("model"):
            raise ValueError("request.model is required")
        resp = client.generate(to_generation_request(args))
        return asdict(resp)  # type: ignore[return-value]

    generate.__annotations__["request"] = Annotated[dict[str, Any], WithJsonSchema(_MCP_GENERATE_REQUEST_SCHEMA)]
    describe_model.__annotations__["model"] = Annotated[
        str,
        Field(
            description='Model string "{provider}:{model_id}".',
            examples=["replicate:black-forest-labs/flux-schnell"],
        ),
    ]

    server.tool(structured_output=True)(generate)
    server.tool(structured_output=True)(describe_model)
    server.tool(structured_output=True)(list_providers)
    return server


def build_http_app(server: Any) -> Any:
    from starlette.routing import Mount, Route

    app = server.streamable_http_app()
    sse = server.sse_app()
    sse_path = server.settings.sse_path
    message_path = server.settings.message_path.rstrip("/")
    for route in sse.router.routes:
        if isinstance(route, Route) and route.path == sse_path:
            app.router.routes.append(route)
            continue
        if isinstance(route, Mount) and route.path.rstrip("/") == message_path:
            app.router.routes.append(route)
            continue
    return app


def main(argv: list[str] | None = None) -> None:
    from ._internal.config import load_env_files

    load_env_files()
    parser = argparse.ArgumentParser(
        prog="mediagen-mcp-server",
        description="nous-mediagen MCP server (Streamable HTTP: /mcp, SSE: /sse)",
    )
    parser.add_argument(
        "--proxy",
        dest="proxy_url",
        help="HTTP proxy URL for provider requests (e.g. http://127.0.0.1:7890)",
    )
    parser.add_argument(
        "--bearer-token",
        dest="bearer_token",
        help="Require HTTP Authorization: Bearer <token> for all endpoints (or set NOUS_MEDIAGEN_MCP_BEARER_TOKEN).",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    bearer = (args.bearer_token or os.environ.get("NOUS_MEDIAGEN_MCP_BEARER_TOKEN") or "").strip()

    server_host, server_port = _get_host_port()
    server = build_server(proxy_url=args.proxy_url, host=server_host, port=server_port)
    app = build_http_app(server)
    if bearer:
        app.add_middleware(_BearerAuthMiddleware, token=bearer)
    else:
        logger.warning("MCP server running without bearer authentication on %s:%d", server_host, server_port)

    try:
        import uvicorn
    except ModuleNotFoundError as e:  # pragma: no cover
        raise SystemExit("missing dependency: install `uvicorn` to run the MCP server") from e

    uvicorn.run(app, host=server_host, port=server_port, log_level=server.settings.log_level.lower())


class _BearerAuthMiddleware:
    def __init__(self, app: Any, *, token: str) -> None:
        self.app = app
        token = token.strip() if isinstance(token, str) else ""
        if not token:
            raise ValueError("missing auth config: pass token=...")
        self._token = token

    def _authorized(self, scope: Any) -> bool:
        raw = None
        for k, v in scope.get("headers") or []:
            if k.lower() == b"authorization":
                raw = v
                break
        if not raw:
            return False
        header = raw.decode("utf-8", errors="replace").strip()
        if not header.lower().startswith("bearer "):
            return False
        return compare_digest(header[7:].strip(), self._token)

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return
        if not self._authorized(scope):
            await _send_unauthorized(send)
            return
        await self.app(scope, receive, send)


async def _send_unauthorized(send: Any) -> None:
    body = b'{"error":"invalid_token","error_description":"Authentication required"}'
    await send(
        {
            "type": "http.response.start",
            "status": 401,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
                (b"www-authenticate", b'Bearer error="invalid_token", error_description="Authentication required"'),
            ],
        }
    )
    await send({"type": "http.response.body", "body": body})


if __name__ == "__main__":  # pragma: no cover
    main()

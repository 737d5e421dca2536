from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from ._internal.config import get_media_timeout_ms
from ._internal.errors import MediaGenError
from ._internal.http import MAX_MEDIA_BYTES, download_to_file
from .client import Client
from .reference import get_supported_models
from .types import GenerationRequest, OutputDescriptor, TargetModel, detect_mime_type, parse_data_uri, to_data_uri


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="mediagen", description="nous-mediagen CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--timeout-ms",
        type=int,
        help="Per-request HTTP timeout in milliseconds (overrides NOUS_MEDIAGEN_TIMEOUT_MS)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Run one generation and write the output")
    gen.add_argument("--model", required=True, help='Model like "fal:fal-ai/flux/dev"')
    gen.add_argument("--prompt", help="Text prompt")
    gen.add_argument("--prompt-path", help="Read prompt text from a file (lower priority than --prompt)")
    gen.add_argument("--image", action="append", default=[], help="Reference image URL or file path (repeatable)")
    gen.add_argument("--param", action="append", default=[], help="Explicit parameter key=value (repeatable)")
    gen.add_argument("--input", action="append", default=[], help="Dynamic input key=value (repeatable)")
    gen.add_argument("--capability", action="append", default=[], help="Capability tag, e.g. text-to-video")
    gen.add_argument("--output-path", help="Write the media to this file")

    desc = sub.add_parser("describe", help="Print a model's parameters and inputs as JSON")
    desc.add_argument("--model", required=True, help='Model like "replicate:owner/name"')

    sub.add_parser("providers", help="List providers and curated models")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.timeout_ms is not None:
        if args.timeout_ms < 1:
            raise SystemExit("--timeout-ms must be >= 1")
        os.environ["NOUS_MEDIAGEN_TIMEOUT_MS"] = str(args.timeout_ms)

    try:
        if args.command == "providers":
            _print_providers(Client())
            return
        if args.command == "describe":
            model = TargetModel.parse(args.model)
            described = Client().describe_model(model.provider, model.model_id)
            print(json.dumps(_description_to_json(described), ensure_ascii=False, indent=2))
            return
        _run_generate(args)
    except BrokenPipeError:
        return
    except MediaGenError as e:
        raise SystemExit(_format_failure(e.info.type, e.info.message, e.info.provider_code)) from None


def _run_generate(args: argparse.Namespace) -> None:
    prompt = args.prompt
    if prompt is None and args.prompt_path:
        try:
            with open(args.prompt_path, "r", encoding="utf-8") as f:
                prompt = f.read()
        except OSError as e:
            raise SystemExit(f"cannot read --prompt-path: {e}") from None

    model = TargetModel.parse(args.model, capabilities=tuple(args.capability))
    request = GenerationRequest(
        model=model,
        prompt=prompt or "",
        reference_images=tuple(_load_image(v) for v in args.image),
        parameters=_parse_pairs(args.param, flag="--param"),
        dynamic_inputs={k: _maybe_file(v) for k, v in _parse_pairs(args.input, flag="--input").items()},
    )
    client = Client()
    resp, elapsed_s = _run_with_spinner(
        lambda: client.generate(request),
        enabled=sys.stderr.isatty(),
        label="waiting for generation",
    )
    if resp.status != "completed" or resp.output is None:
        info = resp.error
        if info is None:
            raise SystemExit("[FAIL]: missing output")
        raise SystemExit(_format_failure(info.type, info.message, info.provider_code))
    _write_output(resp.output, output_path=args.output_path)
    if sys.stderr.isatty():
        print(f"[INFO] done in {elapsed_s:.1f}s", file=sys.stderr)


def _format_failure(kind: str, message: str, provider_code: str | None) -> str:
    code = f" ({provider_code})" if provider_code else ""
    return f"[FAIL]{code} {kind}: {message}"


def _parse_pairs(values: list[str], *, flag: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in values:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"{flag} expects key=value, got {raw!r}")
        out[key.strip()] = value
    return out


def _file_to_data_uri(path: str) -> str:
    mime = detect_mime_type(path) or "application/octet-stream"
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise SystemExit(f"cannot read {path}: {e}") from None
    return to_data_uri(mime, data)


def _load_image(value: str) -> str:
    if value.startswith(("http://", "https://", "data:")):
        return value
    return _file_to_data_uri(value)


def _maybe_file(value: str) -> str:
    return _file_to_data_uri(value) if os.path.isfile(value) else value


_T = TypeVar("_T")


def _run_with_spinner(fn: Callable[[], _T], *, enabled: bool, label: str) -> tuple[_T, float]:
    start = time.perf_counter()
    if not enabled:
        out = fn()
        return out, time.perf_counter() - start

    done = threading.Event()
    result: dict[str, _T] = {}
    error: dict[str, BaseException] = {}

    def _worker() -> None:
        try:
            result["value"] = fn()
        except BaseException as e:  # noqa: BLE001
            error["exc"] = e
        finally:
            done.set()

    t = threading.Thread(target=_worker, name="mediagen-cli-wait", daemon=True)
    t.start()
    frames = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
    i = 0
    try:
        while not done.wait(0.1):
            elapsed = time.perf_counter() - start
            sys.stderr.write(f"\r{frames[i % len(frames)]} {label}... {elapsed:5.1f}s")
            sys.stderr.flush()
            i += 1
    finally:
        sys.stderr.write("\r" + (" " * 64) + "\r")
        sys.stderr.flush()
        t.join()
    exc = error.get("exc")
    if exc is not None:
        raise exc
    return result["value"], time.perf_counter() - start


def _guess_ext(mime: str | None) -> str:
    if not mime:
        return ""
    m = mime.lower()
    if m == "image/png":
        return ".png"
    if m in {"image/jpeg", "image/jpg"}:
        return ".jpg"
    if m == "image/webp":
        return ".webp"
    if m in {"audio/mpeg", "audio/mp3"}:
        return ".mp3"
    if m in {"audio/wav", "audio/wave"}:
        return ".wav"
    if m == "video/mp4":
        return ".mp4"
    if m == "video/webm":
        return ".webm"
    return ""


def _write_output(output: OutputDescriptor, *, output_path: str | None) -> None:
    if not output.data_uri:
        # Large video or a 3d mesh: only the URL came back.
        if output_path:
            download_to_file(
                url=output.source_url,
                output_path=output_path,
                timeout_ms=get_media_timeout_ms(),
                max_bytes=MAX_MEDIA_BYTES,
            )
            print(f"[OK] downloaded to {output_path}")
        else:
            print(output.source_url)
        return
    mime, data = parse_data_uri(output.data_uri)
    path = output_path or f"mediagen_output{_guess_ext(mime)}"
    with open(path, "wb") as f:
        f.write(data)
    print(f"[OK] wrote {path} ({output.kind}, {mime}, {len(data)} bytes)")


def _description_to_json(desc) -> dict:
    return {
        "parameters": [
            {
                k: v
                for k, v in {
                    "name": p.name,
                    "type": p.type,
                    "description": p.description,
                    "default": p.default,
                    "enum": p.enum,
                    "minimum": p.minimum,
                    "maximum": p.maximum,
                    "required": p.required,
                }.items()
                if v is not None
            }
            for p in desc.parameters
        ],
        "inputs": [
            {
                "name": i.name,
                "type": i.kind,
                "required": i.required,
                "isArray": i.is_array,
                "label": i.label,
            }
            for i in desc.inputs
        ],
    }


def _print_providers(client: Client) -> None:
    configured = set(client.configured_providers())
    by_provider: dict[str, list[dict]] = {}
    for m in get_supported_models():
        by_provider.setdefault(m["provider"], []).append(m)
    for p in sorted(by_provider):
        state = "configured" if p in configured else "no key"
        print(f"== {p} ({state}) ==")
        for m in sorted(by_provider[p], key=lambda x: x["model_id"]):
            print(f"{m['model']:55} {','.join(m['capabilities'])}")
        print()


if __name__ == "__main__":
    main()

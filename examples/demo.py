"""
nous-mediagen demo CLI (preset inputs, zero-parameter).

Usage:
  uv run examples/demo.py image --model fal:fal-ai/flux/dev
  uv run examples/demo.py edit --model kie:seedream/4.5-edit
  uv run examples/demo.py video --model kie:veo3-fast/image-to-video
  uv run examples/demo.py speech --model kie:elevenlabs/turbo-v2.5
  uv run examples/demo.py describe --model replicate:black-forest-labs/flux-schnell

See also:
  uv run examples/demo.py --help
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path

from nous.mediagen import Client, GenerateResponse, GenerationRequest, MediaGenError, TargetModel
from nous.mediagen.types import detect_mime_type, parse_data_uri, to_data_uri


_DEMO_DIR = Path(__file__).resolve().parent
_DEMO_IMAGE_PATH = _DEMO_DIR / "demo_image.png"

_PRESET_IMAGE_PROMPT = "A cute cat, high quality photo, natural lighting."
_PRESET_EDIT_PROMPT = "Turn the cat into a watercolor painting."
_PRESET_VIDEO_PROMPT = "The cat slowly turns its head toward the camera."
_PRESET_SPEECH_TEXT = "Hello, this is a speech synthesis test."


def _write_output(resp: GenerateResponse, out_path: Path) -> None:
    if resp.status != "completed" or resp.output is None:
        err = resp.error
        raise SystemExit(f"{err.type}: {err.message}" if err else "missing output")
    out = resp.output
    if not out.data_uri:
        print(f"{out.kind} is available at: {out.source_url}")
        return
    mime, data = parse_data_uri(out.data_uri)
    out_path.write_bytes(data)
    print(f"wrote: {out_path} ({mime})")


def _demo_image_data_uri() -> str:
    if not _DEMO_IMAGE_PATH.is_file():
        raise SystemExit(
            f"missing preset image: {_DEMO_IMAGE_PATH.name}; "
            f'run: uv run examples/demo.py image --model "<image_model>" '
            f'(e.g. "fal:fal-ai/flux/dev")'
        )
    mime = detect_mime_type(str(_DEMO_IMAGE_PATH)) or "image/png"
    return to_data_uri(mime, _DEMO_IMAGE_PATH.read_bytes())


def _cmd_image(args: argparse.Namespace) -> int:
    req = GenerationRequest(model=TargetModel.parse(args.model), prompt=_PRESET_IMAGE_PROMPT)
    _write_output(Client().generate(req), _DEMO_IMAGE_PATH)
    return 0


def _cmd_edit(args: argparse.Namespace) -> int:
    req = GenerationRequest(
        model=TargetModel.parse(args.model, capabilities=("image-to-image",)),
        prompt=_PRESET_EDIT_PROMPT,
        reference_images=(_demo_image_data_uri(),),
    )
    _write_output(Client().generate(req), _DEMO_DIR / "demo_edit.png")
    return 0


def _cmd_video(args: argparse.Namespace) -> int:
    req = GenerationRequest(
        model=TargetModel.parse(args.model, capabilities=("image-to-video",)),
        prompt=_PRESET_VIDEO_PROMPT,
        reference_images=(_demo_image_data_uri(),),
    )
    _write_output(Client().generate(req), _DEMO_DIR / "demo_video.mp4")
    return 0


def _cmd_speech(args: argparse.Namespace) -> int:
    req = GenerationRequest(
        model=TargetModel.parse(args.model, capabilities=("text-to-audio",)),
        prompt=_PRESET_SPEECH_TEXT,
    )
    _write_output(Client().generate(req), _DEMO_DIR / "demo_speech.mp3")
    return 0


def _cmd_describe(args: argparse.Namespace) -> int:
    model = TargetModel.parse(args.model)
    desc = Client().describe_model(model.provider, model.model_id)
    print(json.dumps(asdict(desc), ensure_ascii=False, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="nous-mediagen demo (preset inputs)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_image = sub.add_parser("image", help=f"Generate preset image -> {_DEMO_IMAGE_PATH.name}")
    p_image.add_argument("--model", required=True, help='e.g. "fal:fal-ai/flux/dev"')
    p_image.set_defaults(_run=_cmd_image)

    p_edit = sub.add_parser("edit", help=f"Edit the preset image ({_DEMO_IMAGE_PATH.name})")
    p_edit.add_argument("--model", required=True, help='e.g. "kie:seedream/4.5-edit"')
    p_edit.set_defaults(_run=_cmd_edit)

    p_video = sub.add_parser("video", help=f"Animate the preset image ({_DEMO_IMAGE_PATH.name})")
    p_video.add_argument("--model", required=True, help='e.g. "kie:veo3-fast/image-to-video"')
    p_video.set_defaults(_run=_cmd_video)

    p_speech = sub.add_parser("speech", help="Synthesize preset speech")
    p_speech.add_argument("--model", required=True, help='e.g. "kie:elevenlabs/turbo-v2.5"')
    p_speech.set_defaults(_run=_cmd_speech)

    p_desc = sub.add_parser("describe", help="Print a model's parameters and inputs")
    p_desc.add_argument("--model", required=True, help='e.g. "replicate:black-forest-labs/flux-schnell"')
    p_desc.set_defaults(_run=_cmd_describe)

    args = parser.parse_args(argv)
    try:
        return int(args._run(args))
    except MediaGenError as e:
        raise SystemExit(f"{e.info.type}: {e.info.message}") from None


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ._internal.errors import no_output_error
from ._internal.http import MAX_MEDIA_BYTES, fetch_media, validate_media_url
from .types import OutputDescriptor, OutputKind, to_data_uri

logger = logging.getLogger(__name__)

INLINE_VIDEO_MAX_BYTES = 20 * 1024 * 1024

_DEFAULT_MIME: dict[str, str] = {
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "image": "image/png",
}

_EXTENSION_KINDS: dict[str, OutputKind] = {
    ".glb": "3d",
    ".gltf": "3d",
    ".obj": "3d",
    ".fbx": "3d",
    ".mp4": "video",
    ".webm": "video",
    ".mov": "video",
    ".mp3": "audio",
    ".wav": "audio",
    ".ogg": "audio",
    ".flac": "audio",
    ".m4a": "audio",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".webp": "image",
    ".gif": "image",
}


@dataclass(frozen=True, slots=True)
class OutputLocator:
    url: str
    kind_hint: OutputKind | None = None


ExtractionRule = Callable[[Any], "OutputLocator | None"]


def _dig(obj: Any, path: Sequence[str | int]) -> Any:
    cur = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(cur, list) or len(cur) <= step:
                return None
            cur = cur[step]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(step)
        if cur is None:
            return None
    return cur


def url_at(*path: str | int, kind: OutputKind | None = None) -> ExtractionRule:
    """Rule matching a non-empty string at `path`."""

    def rule(result: Any) -> OutputLocator | None:
        value = _dig(result, path)
        if isinstance(value, str) and value:
            return OutputLocator(url=value, kind_hint=kind)
        return None

    return rule


def first_string(*path: str | int, kind: OutputKind | None = None) -> ExtractionRule:
    """Rule matching a string at `path`, or the first non-empty string of a list there."""

    def rule(result: Any) -> OutputLocator | None:
        value = _dig(result, path)
        if isinstance(value, str) and value:
            return OutputLocator(url=value, kind_hint=kind)
        if isinstance(value, list):
            for item in value:
                if isinstance(item, str) and item:
                    return OutputLocator(url=item, kind_hint=kind)
        return None

    return rule


def extract_output(result: Any, rules: Sequence[ExtractionRule]) -> OutputLocator:
    for rule in rules:
        found = rule(result)
        if found is not None:
            return found
    keys = ", ".join(result.keys()) if isinstance(result, dict) else type(result).__name__
    raise no_output_error(f"No media URL in response (keys: {keys})")


def guess_kind_from_url(url: str) -> OutputKind | None:
    path = urllib.parse.urlparse(url).path.lower()
    for ext, kind in _EXTENSION_KINDS.items():
        if path.endswith(ext):
            return kind
    return None


FAL_RULES: tuple[ExtractionRule, ...] = (
    url_at("model_mesh", "url", kind="3d"),
    url_at("mesh", "url", kind="3d"),
    url_at("glb", "url", kind="3d"),
    url_at("model_glb", "url", kind="3d"),
    url_at("model_urls", "glb", "url", kind="3d"),
    url_at("video", "url", kind="video"),
    url_at("audio", "url", kind="audio"),
    url_at("images", 0, "url"),
    url_at("image", "url"),
    url_at("output"),
)

REPLICATE_RULES: tuple[ExtractionRule, ...] = (first_string("output"),)


def _kie_result_urls(result: Any) -> OutputLocator | None:
    if not isinstance(result, dict):
        return None
    parsed = result.get("resultJson")
    if isinstance(parsed, str):
        try:
            parsed = json.loads(parsed)
        except ValueError:
            parsed = None
    urls = _dig(parsed, ("resultUrls",)) or result.get("resultUrls")
    if not isinstance(urls, list) or not urls or not isinstance(urls[0], str) or not urls[0]:
        return None
    url = urls[0]
    lowered = url.lower()
    kind: OutputKind | None = None
    if ".mp4" in lowered or ".webm" in lowered or "video" in lowered:
        kind = "video"
    return OutputLocator(url=url, kind_hint=kind)


def _kie_mp4_output(result: Any) -> OutputLocator | None:
    value = _dig(result, ("output",))
    if isinstance(value, str) and ".mp4" in value:
        return OutputLocator(url=value, kind_hint="video")
    return None


def _kie_first_image(result: Any) -> OutputLocator | None:
    first = _dig(result, ("images", 0))
    if isinstance(first, dict):
        first = first.get("url")
    if isinstance(first, str) and first:
        return OutputLocator(url=first)
    return None


KIE_RULES: tuple[ExtractionRule, ...] = (
    _kie_result_urls,
    url_at("videoUrl", kind="video"),
    url_at("video_url", kind="video"),
    _kie_mp4_output,
    url_at("imageUrl"),
    url_at("image_url"),
    url_at("output"),
    url_at("url"),
    _kie_first_image,
)

VEO_RULES: tuple[ExtractionRule, ...] = (
    url_at("response", "resultUrls", 0, kind="video"),
    url_at("resultUrls", 0, kind="video"),
)


def wavespeed_rules(is_video: bool) -> tuple[ExtractionRule, ...]:
    rules: list[ExtractionRule] = [url_at("data", "outputs", 0)]
    if is_video:
        rules.append(url_at("data", "output", "videos", 0, kind="video"))
    rules.append(url_at("data", "output", "images", 0, kind="image"))
    rules.append(url_at("outputs", 0))
    return tuple(rules)


def _kind_from_content_type(content_type: str | None) -> OutputKind | None:
    if not content_type:
        return None
    ct = content_type.lower()
    if ct.startswith("image/"):
        return "image"
    if ct.startswith("video/"):
        return "video"
    if ct.startswith("audio/"):
        return "audio"
    if ct.startswith("model/") or "gltf" in ct:
        return "3d"
    return None


def _kind_from_capabilities(capabilities: Sequence[str]) -> OutputKind | None:
    tags = [c.lower() for c in capabilities]
    for needle, kind in (("3d", "3d"), ("video", "video"), ("audio", "audio"), ("image", "image")):
        if any(needle in t for t in tags):
            return kind  # type: ignore[return-value]
    return None


def resolve_kind(
    content_type: str | None,
    capabilities: Sequence[str],
    hint: OutputKind | None,
    url: str,
) -> OutputKind:
    return (
        _kind_from_content_type(content_type)
        or _kind_from_capabilities(capabilities)
        or hint
        or guess_kind_from_url(url)
        or "image"
    )


def normalize_output(
    locator: OutputLocator,
    capabilities: Sequence[str] = (),
    *,
    max_bytes: int = MAX_MEDIA_BYTES,
) -> OutputDescriptor:
    """
    Validate, fetch and classify a produced media URL.

    3D meshes are returned as bare URLs without being fetched. Audio and images
    are always inlined; video larger than 20MB keeps only the source URL.
    """
    url = validate_media_url(locator.url)
    if locator.kind_hint == "3d" or _kind_from_capabilities(capabilities) == "3d":
        logger.info("returning 3d model url without download")
        return OutputDescriptor(kind="3d", data_uri="", source_url=url)

    media = fetch_media(url, max_bytes=max_bytes)
    kind = resolve_kind(media.content_type, capabilities, locator.kind_hint, url)
    size = len(media.data)
    logger.info("fetched %s output: %s, %.2fMB", kind, media.content_type, size / (1024 * 1024))
    if kind == "3d":
        return OutputDescriptor(kind="3d", data_uri="", source_url=url)

    mime = (media.content_type or "").split(";", 1)[0].strip()
    if _kind_from_content_type(mime) != kind:
        mime = _DEFAULT_MIME[kind]
    if kind == "video" and size > INLINE_VIDEO_MAX_BYTES:
        return OutputDescriptor(kind="video", data_uri="", source_url=url, mime_type=mime)
    return OutputDescriptor(kind=kind, data_uri=to_data_uri(mime, media.data), source_url=url, mime_type=mime)

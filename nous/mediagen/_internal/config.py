from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


_ENV_PRIORITY = (".env.local", ".env.production", ".env.development", ".env.test")

_ENV_PREFIX = "NOUS_MEDIAGEN_"


def get_prefixed_env(name: str) -> str | None:
    return os.environ.get(f"{_ENV_PREFIX}{name}")


def _parse_env_line(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    if stripped.startswith("export "):
        stripped = stripped[len("export "):].lstrip()
    if "=" not in stripped:
        return None
    key, value = stripped.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    if (value.startswith("'") and value.endswith("'")) or (
        value.startswith('"') and value.endswith('"')
    ):
        value = value[1:-1]
    return key, value


def load_env_files(root: str | Path | None = None) -> list[Path]:
    """
    Load env files by priority:
    `.env.local > .env.production > .env.development > .env.test`.

    Higher priority files are applied first; existing env vars are never overridden.
    """
    base = Path(root) if root is not None else Path.cwd()
    loaded: list[Path] = []
    for name in _ENV_PRIORITY:
        path = base / name
        if not path.is_file():
            continue
        loaded.append(path)
        for line in path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(line)
            if parsed is None:
                continue
            key, value = parsed
            os.environ.setdefault(key, value)
    return loaded


def _first_env(*names: str) -> str | None:
    for name in names:
        value = get_prefixed_env(name) or os.environ.get(name)
        if value:
            return value
    return None


@dataclass(frozen=True, slots=True)
class ProviderKeys:
    gemini_api_key: str | None
    replicate_api_key: str | None
    fal_api_key: str | None
    kie_api_key: str | None
    wavespeed_api_key: str | None

    def for_provider(self, provider: str) -> str | None:
        return getattr(self, f"{provider}_api_key", None)


def get_provider_keys() -> ProviderKeys:
    return ProviderKeys(
        gemini_api_key=_first_env("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        replicate_api_key=_first_env("REPLICATE_API_KEY", "REPLICATE_API_TOKEN"),
        fal_api_key=_first_env("FAL_API_KEY", "FAL_KEY"),
        kie_api_key=_first_env("KIE_API_KEY"),
        wavespeed_api_key=_first_env("WAVESPEED_API_KEY"),
    )


def _int_env(name: str, default: int) -> int:
    raw = get_prefixed_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(1, value)


def get_default_timeout_ms() -> int:
    return _int_env("TIMEOUT_MS", 120_000)


def get_media_timeout_ms() -> int:
    return _int_env("MEDIA_TIMEOUT_MS", 300_000)

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Hashable, Protocol, TypeVar

from ._internal.errors import MediaGenError
from .mapping import build_parameter_schema
from .types import ParameterSchema, SchemaDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENERATION_SCHEMA_TTL_S = 30 * 60
INSPECTOR_TTL_S = 10 * 60


class SchemaCache(Generic[T]):
    """
    TTL map with an injectable clock.

    Readers never block on fetches; concurrent writers for the same key are
    last-writer-wins. Only successful acquisitions should be stored.
    """

    def __init__(self, ttl_s: float, *, clock: Callable[[], float] = time.time) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, T]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_s:
                del self._entries[key]
                return None
            return value

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SchemaSource(Protocol):
    provider_name: str

    def fetch_schema_document(self, model_id: str) -> SchemaDocument: ...


class SchemaAcquirer:
    def __init__(self, cache: SchemaCache[ParameterSchema] | None = None) -> None:
        self.cache: SchemaCache[ParameterSchema] = cache if cache is not None else SchemaCache(GENERATION_SCHEMA_TTL_S)

    def get_schema(self, source: SchemaSource, model_id: str, *, strict: bool = False) -> ParameterSchema:
        """
        Return the mapped parameter schema for `model_id`.

        With `strict=False` an acquisition failure degrades to an empty schema;
        with `strict=True` it propagates. Failures and documents marked
        non-cacheable are never stored.
        """
        key = (source.provider_name, model_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            doc = source.fetch_schema_document(model_id)
        except MediaGenError as e:
            if strict:
                raise
            logger.warning(
                "schema unavailable for %s:%s, continuing without mapping: %s",
                source.provider_name,
                model_id,
                e.info.message,
            )
            return ParameterSchema()
        schema = build_parameter_schema(doc)
        if doc.cacheable:
            self.cache.put(key, schema)
        return schema

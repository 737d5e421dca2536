from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .types import is_data_uri

logger = logging.getLogger(__name__)

Uploader = Callable[[str], str]

_MAX_PARALLEL_UPLOADS = 8


def externalize(value: Any, upload: Uploader) -> Any:
    """
    Replace inline base64 data URIs with provider-hosted URLs.

    Sequences are walked recursively and their uploads are issued concurrently;
    anything that is not a data URI is returned unchanged.
    """
    if isinstance(value, (list, tuple)):
        items = list(value)
        pending = [i for i, v in enumerate(items) if is_data_uri(v) or isinstance(v, (list, tuple))]
        if not pending:
            return items
        if len(pending) == 1:
            i = pending[0]
            items[i] = externalize(items[i], upload)
            return items
        with ThreadPoolExecutor(max_workers=min(_MAX_PARALLEL_UPLOADS, len(pending))) as pool:
            futures = {i: pool.submit(externalize, items[i], upload) for i in pending}
            for i, fut in futures.items():
                items[i] = fut.result()
        return items
    if is_data_uri(value):
        url = upload(value)
        logger.debug("externalized inline payload to %s", url)
        return url
    return value


def bind_uploader(upload: Uploader) -> Callable[[Any], Any]:
    return lambda value: externalize(value, upload)

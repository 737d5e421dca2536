from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

from ._internal.errors import timeout_error

logger = logging.getLogger(__name__)

PollState = Literal["pending", "succeeded", "failed"]


@dataclass(frozen=True, slots=True)
class PollOutcome:
    state: PollState
    status: str
    result: Any


def _format_budget(budget_s: float) -> str:
    if budget_s >= 60 and budget_s % 60 == 0:
        minutes = int(budget_s // 60)
        return f"{minutes} minute" + ("" if minutes == 1 else "s")
    return f"{budget_s:g} seconds"


def poll_until(
    fetch: Callable[[], Any],
    classify: Callable[[Any], tuple[PollState, str]],
    *,
    interval_s: float,
    budget_s: float,
    label: str,
) -> PollOutcome:
    """
    Sleep, fetch, classify; repeat until a terminal state.

    The budget is checked before each poll; an in-flight fetch is never
    interrupted. Errors raised by `fetch` propagate immediately.
    """
    start = time.time()
    last_status: str | None = None
    while True:
        if time.time() - start > budget_s:
            logger.warning("%s: polling exceeded %s", label, _format_budget(budget_s))
            raise timeout_error(f"Generation timed out after {_format_budget(budget_s)}")
        time.sleep(interval_s)
        result = fetch()
        state, status = classify(result)
        if status != last_status:
            logger.debug("%s: status %s", label, status)
            last_status = status
        if state != "pending":
            logger.info("%s: finished with status %s", label, status)
            return PollOutcome(state=state, status=status, result=result)

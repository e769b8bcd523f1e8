"""Utility functions for livejump."""

from __future__ import annotations

import asyncio
import inspect
import math
import sys
from collections.abc import Coroutine, Iterable
from typing import Any, TypeVar

import numpy as np

_T = TypeVar("_T")

# Check if eager_start is supported (Python 3.12+)
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12) and "eager_start" in inspect.signature(
    asyncio.create_task
).parameters


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
    name: str | None = None,
    eager_start: bool = True,
) -> asyncio.Task[_T]:
    """Create an asyncio task, starting it eagerly where the interpreter allows.

    Args:
        coro: The coroutine to run as a task.
        loop: Optional event loop to use. If None, uses the running loop.
        name: Optional name for the task (for debugging).
        eager_start: Whether to start the task eagerly (Python 3.12+ only).

    Returns:
        The created asyncio Task.
    """
    kwargs: dict[str, Any] = {"name": name} if name is not None else {}

    if _SUPPORTS_EAGER_START:
        kwargs["eager_start"] = eager_start

    if loop is not None:
        return loop.create_task(coro, **kwargs)
    return asyncio.create_task(coro, **kwargs)


def is_finite(value: object) -> bool:
    """Return True for real numbers that are neither NaN nor infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def robust_median(values: Iterable[float]) -> float:
    """Median of the finite values, NaN when there are none."""
    arr = np.asarray([v for v in values if is_finite(v)], dtype=float)
    if arr.size == 0:
        return math.nan
    return float(np.median(arr))

"""Bounded fan-out for remote calls"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Outcome(Generic[T, R]):
    """Result of one unit of work: either a value or the exception it raised"""

    item: T
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_limited(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[Outcome[T, R]]:
    """
    Run ``worker`` over ``items`` with at most ``limit`` calls in flight

    Args:
        items: Units of work
        worker: Coroutine function applied to each item
        limit: Concurrency ceiling for this call site

    Returns:
        One Outcome per item, in input order. A failing unit never cancels
        or blocks the others; its exception is stored in ``Outcome.error``.

    Raises:
        ValueError: If limit is less than 1
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be >= 1, got {limit}")

    semaphore = asyncio.Semaphore(limit)

    async def run_one(item: T) -> Outcome[T, R]:
        async with semaphore:
            try:
                return Outcome(item=item, value=await worker(item))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return Outcome(item=item, error=e)

    return list(await asyncio.gather(*(run_one(item) for item in items)))

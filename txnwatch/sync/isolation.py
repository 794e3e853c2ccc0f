"""
Per-item failure isolation.

Runs an async step over a batch and turns every exception into a value,
so callers get a list of outcomes instead of try/except around each item.
Cancellation is not an item failure and still propagates.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Outcome(Generic[T, R]):
    """Result of running one item: either ``value`` or ``error`` is set."""

    item: T
    value: Optional[R] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _run_one(
    item: T,
    step: Callable[[T], Awaitable[R]],
    propagate: Tuple[Type[Exception], ...] = (),
) -> Outcome[T, R]:
    try:
        return Outcome(item=item, value=await step(item))
    except propagate:
        raise
    except Exception as e:
        return Outcome(item=item, error=e)


async def isolate_each(
    items: Iterable[T],
    step: Callable[[T], Awaitable[R]],
    should_stop: Optional[Callable[[], bool]] = None,
    propagate: Tuple[Type[Exception], ...] = (),
) -> List[Outcome[T, R]]:
    """
    Run ``step`` over ``items`` one at a time, in order.

    ``should_stop`` is checked before each item; once it returns True no
    further item is started and the outcomes collected so far are returned.
    Exceptions of a type listed in ``propagate`` abort the batch instead
    of being captured.
    """
    outcomes: List[Outcome[T, R]] = []
    for item in items:
        if should_stop is not None and should_stop():
            break
        outcomes.append(await _run_one(item, step, propagate))
    return outcomes


async def isolate_gather(
    items: Iterable[T],
    step: Callable[[T], Awaitable[R]],
    limit: int,
) -> List[Outcome[T, R]]:
    """Like ``isolate_each`` but with up to ``limit`` items in flight; order is kept."""
    semaphore = asyncio.Semaphore(limit)

    async def bounded(item: T) -> Outcome[T, R]:
        async with semaphore:
            return await _run_one(item, step)

    return list(await asyncio.gather(*(bounded(item) for item in items)))


def failures(outcomes: Iterable[Outcome[T, R]]) -> List[Outcome[T, R]]:
    return [o for o in outcomes if not o.ok]

"""Bounded concurrent execution of coroutine factories.

Example:
    Write many objects with at most 150 requests in flight:
        >>> calls = [
        ...     functools.partial(blobs.put_object, key, body)
        ...     for key, body in writes
        ... ]
        >>> await gather_bounded(calls, limit=150)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

T = TypeVar("T")


async def gather_bounded(
    calls: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T]:
    """Run coroutine factories concurrently, at most ``limit`` at a time.

    Results are returned in input order. The first failure cancels every
    call that has not finished yet; the cancelled calls are awaited before
    the original error is re-raised.

    Args:
        calls: Zero-argument callables each returning an awaitable.
        limit: Maximum number of calls in flight.

    Returns:
        The results of all calls, in order.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(call: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await call()

    tasks = [asyncio.ensure_future(run(call)) for call in calls]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def gather_all(*awaitables: Awaitable[T]) -> list[T]:
    """Await every awaitable, then re-raise the first failure, if any.

    Unlike a plain ``asyncio.gather``, no call is left running unobserved
    when an earlier one fails.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)

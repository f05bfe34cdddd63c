"""Stop signalling shared by watchers and workers.

Every suspension point in a monitor goes through :func:`race`, so a stop
request interrupts whatever the task is currently waiting on.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, List, Tuple


class Stopped(Exception):
    """The stop signal won a race."""


class StopSignal:
    """Broadcast, idempotent stop flag."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def _discard(awaitable: Awaitable[Any]) -> None:
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()


async def race(stop: StopSignal, waits: Dict[str, Awaitable[Any]]) -> List[Tuple[str, "asyncio.Future[Any]"]]:
    """Wait for the first of ``waits`` to finish unless ``stop`` fires first.

    Returns every wait that has finished by the time the race is decided,
    as ``(name, future)`` pairs in the order of ``waits``; the caller reads
    each outcome with ``future.result()``. Unfinished waits are cancelled.
    Raises :class:`Stopped` when the stop signal is (or becomes) set and no
    wait has finished.
    """

    if stop.is_set():
        for awaitable in waits.values():
            _discard(awaitable)
        raise Stopped()
    tasks = {name: asyncio.ensure_future(awaitable) for name, awaitable in waits.items()}
    stopper = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait([*tasks.values(), stopper], return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in (*tasks.values(), stopper):
            task.cancel()
        raise
    stopper.cancel()
    finished = [(name, task) for name, task in tasks.items() if task.done()]
    for task in tasks.values():
        if not task.done():
            task.cancel()
    if not finished:
        raise Stopped()
    return finished


async def until_stopped(stop: StopSignal, awaitable: Awaitable[Any]) -> Any:
    """Await a single operation, raising :class:`Stopped` if stop fires first."""

    [(_, done)] = await race(stop, {"result": awaitable})
    return done.result()


async def sleep_or_stop(stop: StopSignal, delay: float) -> None:
    """Sleep ``delay`` seconds; raise :class:`Stopped` if stop fires first."""

    if stop.is_set():
        raise Stopped()
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise Stopped()

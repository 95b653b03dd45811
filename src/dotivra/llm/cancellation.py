"""Cooperative cancellation for in-flight LLM calls.

A ``CancellationToken`` is created by the caller of the agent loop and
handed to every completion call.  Setting it interrupts the pending
request; the loop then reports a ``stopped`` outcome instead of an error.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from ..errors import GenerationAborted

T = TypeVar("T")

STOPPED_MESSAGE = "Generation stopped by user."


class CancellationToken:
    """A one-shot abort signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationAborted(STOPPED_MESSAGE)

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel: CancellationToken | None,
) -> T:
    """Await *awaitable*, aborting with ``GenerationAborted`` if *cancel* fires."""
    if cancel is None:
        return await awaitable

    if cancel.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise GenerationAborted(STOPPED_MESSAGE)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not waiter.done():
            waiter.cancel()
        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work

    if work.cancelled():
        raise GenerationAborted(STOPPED_MESSAGE)
    return work.result()

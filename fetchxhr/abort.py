"""
Cancellation handles for in-flight exchanges.

An AbortController owns an AbortSignal. The signal is handed to the fetch
transport, which races every suspension point against it; aborting the
controller makes the pending exchange (or body read) reject with the
signal's reason.

Usage:
    controller = AbortController()
    response = await fetch(url, signal=controller.signal)
    ...
    controller.abort()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from fetchxhr.errors import AbortError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """Read side of a cancellation handle."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: BaseException | None = None
        self._event = asyncio.Event()
        self._listeners: list[Callable[[BaseException], object]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def add_listener(self, callback: Callable[[BaseException], object]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[BaseException], object]) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def throw_if_aborted(self) -> None:
        if self._aborted:
            assert self._reason is not None
            raise self._reason

    async def wait(self) -> BaseException:
        """Suspend until the signal is aborted and return the reason."""
        await self._event.wait()
        assert self._reason is not None
        return self._reason

    def _abort(self, reason: BaseException) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for callback in listeners:
            try:
                callback(reason)
            except Exception:
                logger.exception("Abort listener %r failed", callback)

    def __repr__(self) -> str:
        return f"<AbortSignal aborted={self._aborted}>"


class AbortController:
    """Write side of a cancellation handle; aborting is idempotent."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: BaseException | None = None) -> None:
        if self.signal.aborted:
            return
        if reason is None:
            reason = AbortError("The operation was aborted.")
        logger.debug("Aborting: %s", reason)
        self.signal._abort(reason)


def _consume_result(task: asyncio.Future) -> None:
    # Keeps asyncio from reporting exceptions of work abandoned after an abort.
    if not task.cancelled():
        task.exception()


async def abortable(aw: Awaitable[T], signal: AbortSignal | None) -> T:
    """
    Await `aw` unless `signal` aborts first.

    On abort the pending work is cancelled and the signal's reason is raised.

    Args:
        aw: Coroutine or future to run
        signal: Optional signal to race against

    Returns:
        The awaitable's result
    """
    if signal is None:
        return await aw

    task = asyncio.ensure_future(aw)
    if signal.aborted:
        task.cancel()
        task.add_done_callback(_consume_result)
        signal.throw_if_aborted()

    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    task.add_done_callback(_consume_result)
    raise waiter.result()

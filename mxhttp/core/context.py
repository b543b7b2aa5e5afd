"""
Cancellation tokens with optional deadlines.

A Context is attached to a request and threaded through the transport call,
the retry wait and the multipart producer. Whichever fires first, the
awaited work or the cancellation, decides the outcome; a cancellation that
races a completed network call still wins.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from mxhttp.exceptions import CancellationError

T = TypeVar("T")


class Context:
    """A cancellation token with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now after which the context expires.
        """
        self._deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._event = asyncio.Event()
        self._error: Optional[CancellationError] = None

    @property
    def deadline(self) -> Optional[float]:
        """The monotonic deadline, if any."""
        return self._deadline

    @property
    def error(self) -> Optional[CancellationError]:
        """The cancellation error once the context is done, else None."""
        self.done()
        return self._error

    def cancel(self, reason: str = "context canceled") -> None:
        """Cancels the context. Later calls keep the first reason."""
        if self._error is None:
            self._error = CancellationError(reason, op="Context.cancel")
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._expire()
            return True
        return False

    def _expire(self) -> None:
        if self._error is None:
            self._error = CancellationError(
                "context deadline exceeded", op="Context.deadline"
            )
        self._event.set()

    def check(self) -> None:
        """Raises the cancellation error if the context is done."""
        if self.done():
            raise self._error

    async def run(
        self,
        aw: Awaitable[T],
        discard: Optional[Callable[[T], Any]] = None,
    ) -> T:
        """
        Awaits aw unless the context fires first.

        Args:
            aw: The awaitable to race against cancellation.
            discard: Called with the result of aw if it completed but lost the
                race, so resources it holds can be released.

        Raises:
            CancellationError: If the context is done before or while aw runs.
        """
        if self.done():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise self._error

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        # Cancellation takes priority over a result that arrived concurrently
        if self.done() or task not in done:
            if not self.done():
                self._expire()
            await self._settle(task, discard)
            raise self._error

        return task.result()

    async def _settle(self, task: "asyncio.Future[T]", discard: Optional[Callable[[T], Any]]) -> None:
        """Cancels a losing task and releases whatever it produced."""
        if not task.done():
            task.cancel()
        try:
            result = await task
        except asyncio.CancelledError:
            return
        except Exception:
            # Superseded by the cancellation
            return
        if discard is not None:
            outcome = discard(result)
            if asyncio.iscoroutine(outcome):
                await outcome

    async def sleep(self, delay: float) -> None:
        """Sleeps for delay seconds, raising CancellationError if the context fires first."""
        if delay <= 0:
            self.check()
            return
        await self.run(asyncio.sleep(delay))

    def __repr__(self) -> str:
        state = "done" if self.done() else "active"
        return f"Context({state}, remaining={self.remaining()})"


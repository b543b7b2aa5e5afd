"""Tests for cancellation contexts."""

from __future__ import annotations

import asyncio

import pytest

from mxhttp.core.context import Context
from mxhttp.exceptions import CancellationError


class TestContext:
    """Tests for Context."""

    @pytest.mark.asyncio
    async def test_run_returns_result(self) -> None:
        async def work() -> int:
            return 42

        assert await Context().run(work()) == 42

    @pytest.mark.asyncio
    async def test_cancelled_before_run(self) -> None:
        ctx = Context()
        ctx.cancel("stop")
        with pytest.raises(CancellationError, match="stop"):
            await ctx.run(asyncio.sleep(1))
        assert ctx.done()

    @pytest.mark.asyncio
    async def test_first_reason_is_kept(self) -> None:
        ctx = Context()
        ctx.cancel("first")
        ctx.cancel("second")
        assert "first" in str(ctx.error)

    @pytest.mark.asyncio
    async def test_deadline_interrupts_work(self) -> None:
        ctx = Context(timeout=0.05)
        with pytest.raises(CancellationError, match="deadline exceeded"):
            await ctx.run(asyncio.sleep(5))
        assert ctx.remaining() == 0.0

    @pytest.mark.asyncio
    async def test_cancel_from_another_task(self) -> None:
        ctx = Context()
        asyncio.get_running_loop().call_later(0.05, ctx.cancel)
        with pytest.raises(CancellationError):
            await ctx.sleep(5)

    @pytest.mark.asyncio
    async def test_cancellation_wins_over_late_result(self) -> None:
        ctx = Context()
        discarded = []

        async def work() -> str:
            ctx.cancel("raced")
            return "resource"

        with pytest.raises(CancellationError):
            await ctx.run(work(), discard=discarded.append)
        assert discarded == ["resource"]

    @pytest.mark.asyncio
    async def test_async_discard(self) -> None:
        ctx = Context()
        released = []

        async def release(value: str) -> None:
            released.append(value)

        async def work() -> str:
            ctx.cancel()
            return "conn"

        with pytest.raises(CancellationError):
            await ctx.run(work(), discard=release)
        assert released == ["conn"]

    @pytest.mark.asyncio
    async def test_sleep_without_cancellation(self) -> None:
        ctx = Context()
        await ctx.sleep(0.01)
        await ctx.sleep(0)
        assert not ctx.done()
        assert ctx.error is None
        assert ctx.remaining() is None

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self) -> None:
        ctx = Context()
        task = asyncio.ensure_future(ctx.sleep(5))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

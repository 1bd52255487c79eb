"""Tests for fetchxhr.abort module."""

import asyncio

import pytest

from fetchxhr.abort import AbortController, AbortSignal, abortable
from fetchxhr.errors import AbortError, TimeoutError


class TestAbortController:
    """Tests for AbortController and AbortSignal."""

    def test_initial_state(self):
        """Test a fresh signal is not aborted."""
        controller = AbortController()
        assert isinstance(controller.signal, AbortSignal)
        assert controller.signal.aborted is False
        assert controller.signal.reason is None
        controller.signal.throw_if_aborted()

    def test_abort_default_reason(self):
        """Test abort() without a reason uses AbortError."""
        controller = AbortController()
        controller.abort()
        assert controller.signal.aborted is True
        assert isinstance(controller.signal.reason, AbortError)
        with pytest.raises(AbortError):
            controller.signal.throw_if_aborted()

    def test_abort_custom_reason(self):
        """Test a custom reason is kept."""
        controller = AbortController()
        reason = TimeoutError("too slow")
        controller.abort(reason)
        assert controller.signal.reason is reason

    def test_abort_is_idempotent(self):
        """Test the first reason wins and listeners run once."""
        controller = AbortController()
        seen = []
        controller.signal.add_listener(seen.append)
        first = AbortError("first")
        controller.abort(first)
        controller.abort(AbortError("second"))
        assert controller.signal.reason is first
        assert seen == [first]

    def test_remove_listener(self):
        """Test removed listeners are not called."""
        controller = AbortController()
        seen = []
        controller.signal.add_listener(seen.append)
        controller.signal.remove_listener(seen.append)
        controller.signal.remove_listener(seen.append)
        controller.abort()
        assert seen == []

    def test_failing_listener_is_logged(self, caplog):
        """Test a raising listener does not stop the others."""
        controller = AbortController()
        seen = []

        def broken(reason):
            raise RuntimeError("boom")

        controller.signal.add_listener(broken)
        controller.signal.add_listener(seen.append)
        controller.abort()
        assert len(seen) == 1
        assert "Abort listener" in caplog.text

    def test_repr(self):
        """Test signal repr format."""
        assert repr(AbortSignal()) == "<AbortSignal aborted=False>"

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self):
        """Test wait() resumes once aborted."""
        controller = AbortController()
        waiter = asyncio.ensure_future(controller.signal.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        controller.abort()
        assert isinstance(await waiter, AbortError)


class TestAbortable:
    """Tests for the abortable helper."""

    @pytest.mark.asyncio
    async def test_without_signal(self):
        """Test the awaitable runs normally without a signal."""

        async def work():
            return 42

        assert await abortable(work(), None) == 42

    @pytest.mark.asyncio
    async def test_completes_before_abort(self):
        """Test results pass through when no abort happens."""

        async def work():
            await asyncio.sleep(0)
            return "done"

        controller = AbortController()
        assert await abortable(work(), controller.signal) == "done"

    @pytest.mark.asyncio
    async def test_already_aborted(self):
        """Test an aborted signal rejects immediately."""
        controller = AbortController()
        controller.abort(TimeoutError("expired"))
        with pytest.raises(TimeoutError):
            await abortable(asyncio.sleep(1), controller.signal)

    @pytest.mark.asyncio
    async def test_abort_cancels_work(self):
        """Test aborting mid-flight cancels the pending work."""
        controller = AbortController()
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        pending = asyncio.ensure_future(abortable(work(), controller.signal))
        await asyncio.sleep(0.01)
        controller.abort()
        with pytest.raises(AbortError):
            await pending
        await asyncio.wait_for(cancelled.wait(), 1.0)

    @pytest.mark.asyncio
    async def test_work_errors_propagate(self):
        """Test exceptions from the work are raised as-is."""

        async def work():
            raise ValueError("bad")

        controller = AbortController()
        with pytest.raises(ValueError, match="bad"):
            await abortable(work(), controller.signal)

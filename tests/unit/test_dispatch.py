"""
Tests for the deferred dispatch scheduler.
"""

import asyncio
import concurrent.futures
import threading

import pytest
from ff_logpipe.dispatch import TaskScheduler, get_default_scheduler
from structlog.testing import capture_logs


class TestTaskScheduler:
    """Test task submission and draining."""

    @pytest.mark.asyncio
    async def test_submit_on_running_loop(self, scheduler):
        """Inside a loop, submit creates a task that has not run yet."""
        ran = []

        async def work():
            ran.append(1)

        task = scheduler.submit(work())

        assert isinstance(task, asyncio.Task)
        assert ran == []
        await scheduler.drain()
        assert ran == [1]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks_submitted_meanwhile(self, scheduler):
        ran = []

        async def second():
            ran.append("second")

        async def first():
            await asyncio.sleep(0)
            ran.append("first")
            scheduler.submit(second())

        scheduler.submit(first())
        await scheduler.drain()

        assert ran == ["first", "second"]

    def test_submit_without_loop_uses_background_thread(self, scheduler):
        thread_names = []

        async def work():
            thread_names.append(threading.current_thread().name)
            return 42

        future = scheduler.submit(work())

        assert isinstance(future, concurrent.futures.Future)
        assert future.result(timeout=1.0) == 42
        assert thread_names == ["test-dispatch"]

    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, scheduler):
        async def broken():
            raise RuntimeError("lost")

        with capture_logs() as logs:
            scheduler.submit(broken())
            await scheduler.drain()
            await asyncio.sleep(0)

        failures = [log for log in logs if log["event"] == "deferred_task_failed"]
        assert failures[0]["error"] == "lost"
        assert failures[0]["error_type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_call_later_on_loop(self, scheduler):
        fired = []
        scheduler.call_later(0.01, lambda: fired.append(1))
        await asyncio.sleep(0.03)
        assert fired == [1]

    @pytest.mark.asyncio
    async def test_call_later_cancel(self, scheduler):
        fired = []
        handle = scheduler.call_later(0.01, lambda: fired.append(1))
        handle.cancel()
        await asyncio.sleep(0.03)
        assert fired == []

    def test_call_later_without_loop(self, scheduler):
        fired = threading.Event()
        scheduler.call_later(0.01, fired.set)
        assert fired.wait(1.0)

    def test_close_is_idempotent(self):
        scheduler = TaskScheduler()
        scheduler.close()
        scheduler.close()

    def test_default_scheduler_is_shared(self):
        assert get_default_scheduler() is get_default_scheduler()

"""Tests for LoopRunner (courier/core/utils/loop_runner.py)."""

from __future__ import annotations

import asyncio
import gc
import threading
import time
import warnings
from unittest.mock import MagicMock, patch

import pytest

from courier.core.utils.loop_runner import (
    LoopRunner,
    LoopRunnerError,
    get_shared_runner,
    run_sync,
)


async def _double(value: int) -> int:
    await asyncio.sleep(0)
    return value * 2


async def _thread_name() -> str:
    return threading.current_thread().name


async def _fail() -> None:
    raise LookupError('missing')


@pytest.mark.unit
class TestLoopRunnerCall:
    """Behavioral tests for LoopRunner.call()."""

    def test_call_returns_result_from_loop_thread(self) -> None:
        runner = LoopRunner(thread_name='courier-test-loop')
        try:
            assert runner.call(_double, 21) == 42
            assert runner.call(_thread_name) == 'courier-test-loop'
            assert runner.running is True
        finally:
            runner.stop()

    def test_call_propagates_coroutine_exception(self) -> None:
        runner = LoopRunner()
        try:
            with pytest.raises(LookupError, match='missing'):
                runner.call(_fail)
        finally:
            runner.stop()

    def test_submit_returns_future(self) -> None:
        runner = LoopRunner()
        try:
            future = runner.submit(_double, 5)
            assert future.result(timeout=2) == 10
        finally:
            runner.stop()

    def test_call_closes_coroutine_when_scheduling_fails(self) -> None:
        """Scheduling failure should not leak an un-awaited coroutine warning."""
        runner = LoopRunner()
        runner.start()

        async def sample() -> int:
            return 1

        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter('always', RuntimeWarning)
                with (
                    patch(
                        'asyncio.run_coroutine_threadsafe',
                        side_effect=RuntimeError('boom'),
                    ),
                    pytest.raises(LoopRunnerError, match='Failed to schedule'),
                ):
                    runner.call(sample)
                gc.collect()

            warning_texts = [str(w.message) for w in caught]
            assert not any('was never awaited' in text for text in warning_texts)
        finally:
            runner.stop()

    def test_call_after_stop_raises_instead_of_restarting(self) -> None:
        runner = LoopRunner()
        runner.start()
        runner.stop()
        assert runner._loop is None
        assert runner.running is False

        with pytest.raises(LoopRunnerError, match='cannot be restarted'):
            runner.call(_double, 1)

        assert runner._loop is None
        assert runner._thread is None


@pytest.mark.unit
class TestLoopRunnerStop:
    """Behavioral tests for LoopRunner.stop()."""

    def test_stop_without_start_is_noop(self) -> None:
        runner = LoopRunner()
        runner.stop()
        assert runner.running is False

    def test_stop_keeps_loop_when_thread_still_alive(self) -> None:
        runner = LoopRunner()
        runner._loop = MagicMock()
        runner._thread = MagicMock()
        runner._thread.is_alive.return_value = True

        with patch('courier.core.utils.loop_runner.logger.warning') as mock_warn:
            runner.stop(timeout=2)

        runner._loop.call_soon_threadsafe.assert_called_once()
        runner._thread.join.assert_called_once_with(timeout=2)
        runner._loop.close.assert_not_called()
        assert runner._loop is not None
        assert runner._thread is not None
        mock_warn.assert_called_once()

    def test_stop_closes_loop_when_thread_stops(self) -> None:
        runner = LoopRunner()
        loop = MagicMock()
        thread = MagicMock()
        thread.is_alive.return_value = False
        runner._loop = loop
        runner._thread = thread

        runner.stop(timeout=2)

        loop.call_soon_threadsafe.assert_called_once()
        thread.join.assert_called_once_with(timeout=2)
        loop.close.assert_called_once()
        assert runner._loop is None
        assert runner._thread is None


@pytest.mark.unit
class TestLoopRunnerThreadSafety:
    """Thread-safety tests for loop construction."""

    def test_start_is_thread_safe_under_concurrency(self) -> None:
        """Concurrent start() calls should create a single loop/thread pair."""
        runner = LoopRunner()
        barrier = threading.Barrier(8)
        results: list[object] = []
        errors: list[BaseException] = []
        results_lock = threading.Lock()
        real_new_event_loop = asyncio.new_event_loop

        def _slow_new_event_loop() -> asyncio.AbstractEventLoop:
            time.sleep(0.01)
            return real_new_event_loop()

        def _worker() -> None:
            try:
                barrier.wait()
                loop = runner.start()
                with results_lock:
                    results.append(loop)
            except BaseException as exc:
                with results_lock:
                    errors.append(exc)

        try:
            with patch(
                'courier.core.utils.loop_runner.asyncio.new_event_loop',
                side_effect=_slow_new_event_loop,
            ) as mock_new_loop:
                workers = [threading.Thread(target=_worker) for _ in range(8)]
                for t in workers:
                    t.start()
                for t in workers:
                    t.join()

            assert errors == []
            assert len(results) == 8
            assert len({id(loop) for loop in results}) == 1
            assert mock_new_loop.call_count == 1
        finally:
            runner.stop()


@pytest.mark.unit
class TestRunSync:
    """Tests for run_sync() from sync and async callers."""

    def test_without_running_loop_uses_asyncio_run(self) -> None:
        with patch('courier.core.utils.loop_runner.get_shared_runner') as mock_shared:
            assert run_sync(_double, 4) == 8
        mock_shared.assert_not_called()

    def test_inside_running_loop_uses_shared_runner(self) -> None:
        async def caller() -> tuple[int, str]:
            return run_sync(_double, 3), run_sync(_thread_name)

        result, name = asyncio.run(caller())
        assert result == 6
        assert name == 'courier-loop'

    def test_propagates_exceptions(self) -> None:
        with pytest.raises(LookupError, match='missing'):
            run_sync(_fail)

    def test_shared_runner_is_reused(self) -> None:
        assert get_shared_runner() is get_shared_runner()
        assert get_shared_runner().running is True

# courier/core/utils/loop_runner.py
"""Bridge for calling the async producer and dispatcher from sync code."""

from __future__ import annotations
import asyncio
import atexit
import contextlib
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, Optional
from courier.core.logging import get_logger

logger = get_logger('loop_runner')


class LoopRunnerError(RuntimeError):
    """The background event loop could not run the requested coroutine."""


class LoopRunner:
    """Owns one event loop running on a daemon thread.

    Sync callers hand it coroutine functions through submit() or call();
    the loop thread is started lazily and can be stopped exactly once.
    """

    def __init__(self, thread_name: str = 'courier-loop') -> None:
        self._thread_name = thread_name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._lock = threading.RLock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        """Start the loop thread if needed and return its loop."""
        with self._lock:
            if self._closed:
                raise LoopRunnerError('Loop runner was stopped and cannot be restarted')
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=loop.run_forever, name=self._thread_name, daemon=True
            )
            try:
                thread.start()
            except RuntimeError as exc:
                loop.close()
                raise LoopRunnerError(
                    f'Failed to start loop thread: {type(exc).__name__}: {exc}'
                ) from exc
            self._loop = loop
            self._thread = thread
            logger.debug(f'Started event loop thread {self._thread_name}')
            return loop

    def stop(self, timeout: float = 2.0) -> None:
        with self._lock:
            self._closed = True
            loop, thread = self._loop, self._thread
            if loop is None:
                return
            loop.call_soon_threadsafe(loop.stop)
            if thread is not None:
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(
                        f'Loop thread {self._thread_name} did not stop within {timeout}s'
                    )
                    return
            loop.close()
            self._loop = None
            self._thread = None

    def submit(
        self, coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Future[Any]:
        """Schedule `coro_fn(*args, **kwargs)` on the loop and return its future."""
        loop = self.start()
        coro: Awaitable[Any] | None = None
        try:
            coro = coro_fn(*args, **kwargs)
            return asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]
        except Exception as exc:
            # Close the orphaned coroutine so no "never awaited" warning fires
            if asyncio.iscoroutine(coro):
                with contextlib.suppress(RuntimeError):
                    coro.close()
            raise LoopRunnerError(
                f'Failed to schedule {getattr(coro_fn, "__qualname__", coro_fn)!r}: '
                f'{type(exc).__name__}: {exc}'
            ) from exc

    def call(
        self, coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Run a coroutine function to completion; its exceptions propagate as-is."""
        return self.submit(coro_fn, *args, **kwargs).result()


_shared_runner: LoopRunner | None = None
_shared_lock = threading.Lock()


def _shutdown_shared_runner() -> None:
    global _shared_runner
    with _shared_lock:
        if _shared_runner is not None:
            _shared_runner.stop()
            _shared_runner = None


def get_shared_runner() -> LoopRunner:
    """Process-wide runner, created on first use and stopped at exit."""
    global _shared_runner
    with _shared_lock:
        if _shared_runner is None:
            _shared_runner = LoopRunner()
            _shared_runner.start()
            atexit.register(_shutdown_shared_runner)
        return _shared_runner


def run_sync(coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    """Run a coroutine function from sync code.

    Uses asyncio.run() when the calling thread has no running loop, and the
    shared runner's thread otherwise, so sync wrappers also work inside
    async applications.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(coro_fn, *args, **kwargs))
    return get_shared_runner().call(coro_fn, *args, **kwargs)


async def _await(coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    return await coro_fn(*args, **kwargs)

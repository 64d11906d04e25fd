# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""
Background execution for the asynchronous table operations.

A CompletionQueue wraps an asyncio event loop. Operations are submitted as
coroutines with run_async(), and their results are delivered through
concurrent.futures.Future objects, so callers on any thread can wait on
them or attach callbacks.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar
import abc
import asyncio
import concurrent.futures
import logging
import threading

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CompletionQueue:
    """
    Schedules asynchronous work and timers on an event loop.

    Args:
      - loop: the event loop that runs the operations. It must be running
            (usually on a background thread) for work to make progress.
      - executor: the executor that runs blocking stub calls. If None, the
            loop's default executor is used.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        executor: concurrent.futures.Executor | None = None,
    ):
        self.loop = loop
        self._executor = executor

    def run_async(self, coro: Awaitable[T]) -> "concurrent.futures.Future[T]":
        """
        Submit a coroutine to the loop. Safe to call from any thread.
        """
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    async def run_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run a blocking call in the executor without blocking the loop
        """
        return await self.loop.run_in_executor(self._executor, fn, *args)

    async def make_relative_timer(self, delay: float) -> None:
        """
        Complete after `delay` seconds
        """
        await asyncio.sleep(delay)


class BackgroundThreads(abc.ABC):
    """Owns the threads that drive a CompletionQueue"""

    @abc.abstractmethod
    def cq(self) -> CompletionQueue:
        raise NotImplementedError


class AutomaticallyCreatedBackgroundThreads(BackgroundThreads):
    """
    Runs a new event loop on a daemon thread, with a thread pool of
    `thread_count` workers for the blocking stub calls.

    Call shutdown() (or use the object as a context manager) to stop the loop
    and join the threads.
    """

    def __init__(self, thread_count: int = 1):
        if thread_count < 1:
            raise ValueError("thread_count must be >= 1")
        self._loop = asyncio.new_event_loop()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=thread_count, thread_name_prefix="kvtable-cq"
        )
        self._loop.set_default_executor(self._executor)
        self._cq = CompletionQueue(self._loop, self._executor)
        self._thread = threading.Thread(
            target=self._run, name="kvtable-cq-loop", daemon=True
        )
        self._shutdown = False
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
            self._cancel_pending()
        finally:
            self._loop.close()

    def _cancel_pending(self) -> None:
        # resolves futures returned by run_async with CancelledError
        pending = asyncio.all_tasks(self._loop)
        if not pending:
            return
        LOGGER.debug("cancelling %d pending operations", len(pending))
        for task in pending:
            task.cancel()
        self._loop.run_until_complete(
            asyncio.gather(*pending, return_exceptions=True)
        )

    def cq(self) -> CompletionQueue:
        return self._cq

    def shutdown(self) -> None:
        """
        Stop the event loop and wait for the background threads to exit.
        Operations still in flight are cancelled, so their futures complete
        with CancelledError.
        """
        if self._shutdown:
            return
        self._shutdown = True
        LOGGER.debug("shutting down completion queue threads")
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> AutomaticallyCreatedBackgroundThreads:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

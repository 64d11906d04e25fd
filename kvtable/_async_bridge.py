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
from __future__ import annotations

from typing import Any, Callable, TypeVar, TYPE_CHECKING
import concurrent.futures

if TYPE_CHECKING:
    from kvtable.completion_queue import CompletionQueue

T = TypeVar("T")
U = TypeVar("U")


class AsyncFutureFromCallback:
    """
    A single-assignment result slot, completed by invoking the object as a
    callback.

    Asynchronous operations report their outcome by calling
    `callback(cq, result, exc)`. The outcome is then visible through
    `future`. Completing the slot twice is an error.
    """

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.future: concurrent.futures.Future[Any] = concurrent.futures.Future()

    def __call__(
        self,
        cq: "CompletionQueue" | None,
        result: Any,
        exc: BaseException | None = None,
    ) -> None:
        """
        Raises:
          - concurrent.futures.InvalidStateError: if already completed
        """
        if self.future.done():
            raise concurrent.futures.InvalidStateError(
                f"{self.operation_name} callback invoked more than once"
            )
        if exc is not None:
            self.future.set_exception(exc)
        else:
            self.future.set_result(result)


def then(
    future: "concurrent.futures.Future[T]", transform: Callable[[T], U]
) -> "concurrent.futures.Future[U]":
    """
    Returns a future completed with `transform(result)` once `future`
    succeeds. A failure of `future`, or of the transform, is propagated
    unchanged.
    """
    chained: concurrent.futures.Future[U] = concurrent.futures.Future()

    def _on_done(source: concurrent.futures.Future[T]) -> None:
        if chained.cancelled():
            return
        if source.cancelled():
            chained.cancel()
            return
        exc = source.exception()
        if exc is not None:
            chained.set_exception(exc)
            return
        try:
            chained.set_result(transform(source.result()))
        except Exception as transform_exc:
            chained.set_exception(transform_exc)

    future.add_done_callback(_on_done)
    return chained


def _deliver(
    cq: "CompletionQueue",
    callback: AsyncFutureFromCallback,
    operation_future: "concurrent.futures.Future[Any]",
) -> None:
    """
    Forward the outcome of a scheduled operation to its callback
    """

    def _on_done(source: concurrent.futures.Future[Any]) -> None:
        if callback.future.cancelled():
            # the caller dropped interest in the result
            return
        if source.cancelled():
            callback(cq, None, concurrent.futures.CancelledError())
            return
        exc = source.exception()
        if exc is not None:
            callback(cq, None, exc)
        else:
            callback(cq, source.result())

    operation_future.add_done_callback(_on_done)

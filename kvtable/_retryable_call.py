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

from typing import Any, Callable, TYPE_CHECKING
import logging
import time

from google.api_core import exceptions as core_exceptions

from kvtable._helpers import _make_call_kwargs
from kvtable._helpers import _make_permanent_error

if TYPE_CHECKING:
    from kvtable.completion_queue import CompletionQueue
    from kvtable.policies import RPCBackoffPolicy
    from kvtable.policies import RPCRetryPolicy

LOGGER = logging.getLogger(__name__)


class _RetryableCall:
    """
    Drives a single unary RPC until it succeeds or the policies give up.

    Each attempt is issued with fresh call keyword arguments, so the retry
    policy can shrink the attempt timeout as its deadline approaches.
    Non-idempotent operations are never retried: the first failure is final.

    Args:
      - attempt_fn: issues one attempt. Called with `timeout` and `metadata`
            keyword arguments.
      - operation_name: name used in the error raised on terminal failure
      - retry_policy: a fresh retry policy, owned by this call
      - backoff_policy: a fresh backoff policy, owned by this call
      - metadata: gRPC metadata sent with every attempt
      - is_idempotent: whether a failed attempt may be replayed
    """

    def __init__(
        self,
        attempt_fn: Callable[..., Any],
        operation_name: str,
        *,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        metadata: list[tuple[str, str]],
        is_idempotent: bool,
        logger: logging.Logger | None = None,
    ):
        self._attempt_fn = attempt_fn
        self._operation_name = operation_name
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = metadata
        self._is_idempotent = is_idempotent
        self._logger = logger or LOGGER
        self._failures: list[Exception] = []

    def _on_attempt_failure(
        self, exc: core_exceptions.GoogleAPICallError
    ) -> float:
        """
        Record a failed attempt.

        Returns:
          - the delay before the next attempt
        Raises:
          - the permanent error, if the operation should stop
        """
        self._failures.append(exc)
        if not self._is_idempotent or not self._retry_policy.on_failure(exc):
            self._logger.warning(
                "%s failed after %d attempt(s): %s",
                self._operation_name,
                len(self._failures),
                exc,
            )
            raise _make_permanent_error(self._operation_name, self._failures)
        delay = self._backoff_policy.on_completion(exc)
        self._logger.debug(
            "%s attempt %d failed with %r, retrying in %.3fs",
            self._operation_name,
            len(self._failures),
            exc,
            delay,
        )
        return delay

    def start(self) -> Any:
        """
        Run the operation on the calling thread, sleeping between attempts.

        Returns:
          - the response of the first successful attempt
        Raises:
          - GoogleAPICallError: once retries are exhausted or not allowed
        """
        while True:
            call_kwargs = _make_call_kwargs(
                self._metadata, self._retry_policy, self._backoff_policy
            )
            try:
                return self._attempt_fn(**call_kwargs)
            except core_exceptions.GoogleAPICallError as exc:
                delay = self._on_attempt_failure(exc)
            time.sleep(delay)

    async def start_async(self, cq: "CompletionQueue") -> Any:
        """
        Same loop as start(), but attempts run on the completion queue's
        executor and waits use its timers, so no caller thread is blocked.
        """
        while True:
            call_kwargs = _make_call_kwargs(
                self._metadata, self._retry_policy, self._backoff_policy
            )
            try:
                return await cq.run_blocking(
                    lambda: self._attempt_fn(**call_kwargs)
                )
            except core_exceptions.GoogleAPICallError as exc:
                delay = self._on_attempt_failure(exc)
            await cq.make_relative_timer(delay)

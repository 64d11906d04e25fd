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
Policies controlling how table operations are retried.

Every policy is a small strategy object with an explicit clone() method.
Policies carry state (failures seen, time elapsed, the next backoff delay),
so the Table clones fresh instances at the start of every logical operation
and concurrent operations never share retry state.
"""
from __future__ import annotations

from typing import Any, Type
import time

from google.api_core import exceptions as core_exceptions
from google.api_core import retry as retries

from kvtable.mutations import Mutation

# default upper bound on the time spent retrying a single operation
DEFAULT_MAXIMUM_RETRY_PERIOD = 600.0
DEFAULT_INITIAL_DELAY = 0.01
DEFAULT_MAXIMUM_DELAY = 60.0
DEFAULT_DELAY_MULTIPLIER = 2.0

_DEFAULT_RETRYABLE_ERRORS: tuple[Type[Exception], ...] = (
    core_exceptions.DeadlineExceeded,
    core_exceptions.ServiceUnavailable,
    core_exceptions.Aborted,
)


class RPCRetryPolicy:
    """
    Decides whether a failed attempt may be retried

    Args:
      - attempt_timeout: the timeout to apply to each attempt, in seconds.
            If None, attempts are not given a timeout by this policy.
      - retryable_errors: exception types considered transient
    """

    def __init__(
        self,
        attempt_timeout: float | None = None,
        retryable_errors: tuple[Type[Exception], ...] = _DEFAULT_RETRYABLE_ERRORS,
    ):
        if attempt_timeout is not None and attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be greater than 0")
        self.attempt_timeout = attempt_timeout
        self.retryable_errors = tuple(retryable_errors)
        self._predicate = retries.if_exception_type(*self.retryable_errors)

    def clone(self) -> RPCRetryPolicy:
        """Return a new policy with the same configuration and fresh state"""
        raise NotImplementedError

    def setup(self, call_kwargs: dict[str, Any]) -> None:
        """Update the keyword arguments of the next attempt before it is issued"""
        if self.attempt_timeout is not None:
            call_kwargs["timeout"] = self.attempt_timeout

    def is_retryable(self, status: Exception) -> bool:
        """
        Classify a failure without changing the policy state
        """
        return self._predicate(status)

    def on_failure(self, status: Exception) -> bool:
        """
        Record a failed attempt

        Returns:
          - True if the caller may retry the operation
        """
        raise NotImplementedError


class LimitedErrorCountRetryPolicy(RPCRetryPolicy):
    """
    Tolerate up to `maximum_failures` transient failures. An operation
    governed by this policy makes at most `maximum_failures + 1` attempts.
    """

    def __init__(self, maximum_failures: int, **kwargs):
        if maximum_failures < 0:
            raise ValueError("maximum_failures must be >= 0")
        super().__init__(**kwargs)
        self.maximum_failures = maximum_failures
        self._failure_count = 0

    def clone(self) -> LimitedErrorCountRetryPolicy:
        return LimitedErrorCountRetryPolicy(
            self.maximum_failures,
            attempt_timeout=self.attempt_timeout,
            retryable_errors=self.retryable_errors,
        )

    def on_failure(self, status: Exception) -> bool:
        if not self.is_retryable(status):
            return False
        self._failure_count += 1
        return self._failure_count <= self.maximum_failures


class LimitedTimeRetryPolicy(RPCRetryPolicy):
    """
    Tolerate transient failures until `maximum_duration` seconds have passed
    since the policy was created. Attempt timeouts are capped at the time
    remaining.
    """

    def __init__(
        self, maximum_duration: float = DEFAULT_MAXIMUM_RETRY_PERIOD, **kwargs
    ):
        if maximum_duration <= 0:
            raise ValueError("maximum_duration must be greater than 0")
        super().__init__(**kwargs)
        self.maximum_duration = maximum_duration
        self._deadline = time.monotonic() + maximum_duration

    def clone(self) -> LimitedTimeRetryPolicy:
        return LimitedTimeRetryPolicy(
            self.maximum_duration,
            attempt_timeout=self.attempt_timeout,
            retryable_errors=self.retryable_errors,
        )

    def setup(self, call_kwargs: dict[str, Any]) -> None:
        remaining = max(0.0, self._deadline - time.monotonic())
        if self.attempt_timeout is not None:
            remaining = min(remaining, self.attempt_timeout)
        call_kwargs["timeout"] = remaining

    def on_failure(self, status: Exception) -> bool:
        if not self.is_retryable(status):
            return False
        return time.monotonic() < self._deadline


class RPCBackoffPolicy:
    """Computes how long to wait before the next attempt"""

    def clone(self) -> RPCBackoffPolicy:
        raise NotImplementedError

    def setup(self, call_kwargs: dict[str, Any]) -> None:
        pass

    def on_completion(self, status: Exception | None) -> float:
        """
        Returns:
          - the number of seconds to wait before the next attempt
        """
        raise NotImplementedError


class ExponentialBackoffPolicy(RPCBackoffPolicy):
    """
    Jittered exponential backoff, built on
    api_core.retry.exponential_sleep_generator.
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        maximum_delay: float = DEFAULT_MAXIMUM_DELAY,
        multiplier: float = DEFAULT_DELAY_MULTIPLIER,
    ):
        if initial_delay <= 0:
            raise ValueError("initial_delay must be greater than 0")
        if maximum_delay < initial_delay:
            raise ValueError("maximum_delay must be >= initial_delay")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.initial_delay = initial_delay
        self.maximum_delay = maximum_delay
        self.multiplier = multiplier
        self._delays = retries.exponential_sleep_generator(
            initial=initial_delay, maximum=maximum_delay, multiplier=multiplier
        )

    def clone(self) -> ExponentialBackoffPolicy:
        return ExponentialBackoffPolicy(
            self.initial_delay, self.maximum_delay, self.multiplier
        )

    def on_completion(self, status: Exception | None) -> float:
        return next(self._delays)


class IdempotentMutationPolicy:
    """Decides whether a mutation may be replayed after an ambiguous failure"""

    def clone(self) -> IdempotentMutationPolicy:
        raise NotImplementedError

    def is_idempotent(self, mutation: Mutation) -> bool:
        raise NotImplementedError

    def is_request_idempotent(self, request: dict[str, Any]) -> bool:
        """Classify a conditional (check-and-mutate) request"""
        raise NotImplementedError


class SafeIdempotentMutationPolicy(IdempotentMutationPolicy):
    """
    Only retry mutations that produce the same result when replayed: a
    SetCell with a server-assigned timestamp, or any conditional mutation,
    is never retried.
    """

    def clone(self) -> SafeIdempotentMutationPolicy:
        return SafeIdempotentMutationPolicy()

    def is_idempotent(self, mutation: Mutation) -> bool:
        return mutation.is_idempotent()

    def is_request_idempotent(self, request: dict[str, Any]) -> bool:
        return False


class AlwaysRetryMutationPolicy(IdempotentMutationPolicy):
    """Treat every mutation as idempotent"""

    def clone(self) -> AlwaysRetryMutationPolicy:
        return AlwaysRetryMutationPolicy()

    def is_idempotent(self, mutation: Mutation) -> bool:
        return True

    def is_request_idempotent(self, request: dict[str, Any]) -> bool:
        return True

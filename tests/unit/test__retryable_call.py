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

import pytest
from unittest import mock

from google.api_core import exceptions as core_exceptions


class _FakeCompletionQueue:
    """Runs blocking calls inline and records timers instead of sleeping"""

    def __init__(self):
        self.timers = []

    async def run_blocking(self, fn, *args):
        return fn(*args)

    async def make_relative_timer(self, delay):
        self.timers.append(delay)


class TestRetryableCall:
    def _get_target_class(self):
        from kvtable._retryable_call import _RetryableCall

        return _RetryableCall

    def _make_one(self, attempt_fn, is_idempotent=True, max_failures=2, **kwargs):
        from kvtable.policies import ExponentialBackoffPolicy
        from kvtable.policies import LimitedErrorCountRetryPolicy

        kwargs.setdefault("retry_policy", LimitedErrorCountRetryPolicy(max_failures))
        kwargs.setdefault("backoff_policy", ExponentialBackoffPolicy(0.001, 0.002))
        kwargs.setdefault("metadata", [("key", "value")])
        return self._get_target_class()(
            attempt_fn, "apply", is_idempotent=is_idempotent, **kwargs
        )

    def test_success_first_attempt(self):
        attempt_fn = mock.Mock(return_value="response")
        instance = self._make_one(attempt_fn)
        assert instance.start() == "response"
        attempt_fn.assert_called_once_with(timeout=None, metadata=[("key", "value")])

    def test_attempt_timeout_from_policy(self):
        from kvtable.policies import LimitedErrorCountRetryPolicy

        attempt_fn = mock.Mock(return_value="response")
        instance = self._make_one(
            attempt_fn, retry_policy=LimitedErrorCountRetryPolicy(1, attempt_timeout=4)
        )
        instance.start()
        assert attempt_fn.call_args[1]["timeout"] == 4

    def test_retry_then_success(self):
        attempt_fn = mock.Mock(
            side_effect=[
                core_exceptions.ServiceUnavailable("unavailable"),
                core_exceptions.DeadlineExceeded("deadline"),
                "response",
            ]
        )
        instance = self._make_one(attempt_fn)
        with mock.patch("time.sleep") as sleep_mock:
            assert instance.start() == "response"
        assert attempt_fn.call_count == 3
        assert sleep_mock.call_count == 2

    @pytest.mark.parametrize("max_failures", [0, 1, 3])
    def test_transient_failures_exhaust_policy(self, max_failures):
        """
        an idempotent call is attempted max_failures + 1 times
        """
        attempt_fn = mock.Mock(side_effect=core_exceptions.ServiceUnavailable("down"))
        instance = self._make_one(attempt_fn, max_failures=max_failures)
        with mock.patch("time.sleep"):
            with pytest.raises(core_exceptions.ServiceUnavailable) as e:
                instance.start()
        assert attempt_fn.call_count == max_failures + 1
        assert "Permanent (or too many transient) errors in apply" in e.value.message
        assert len(e.value.errors) == max_failures + 1

    def test_permanent_failure_not_retried(self):
        cause = core_exceptions.PermissionDenied("denied")
        attempt_fn = mock.Mock(side_effect=cause)
        instance = self._make_one(attempt_fn)
        with mock.patch("time.sleep") as sleep_mock:
            with pytest.raises(core_exceptions.PermissionDenied) as e:
                instance.start()
        assert attempt_fn.call_count == 1
        sleep_mock.assert_not_called()
        assert e.value.__cause__ is cause

    def test_non_idempotent_not_retried(self):
        attempt_fn = mock.Mock(side_effect=core_exceptions.ServiceUnavailable("down"))
        instance = self._make_one(attempt_fn, is_idempotent=False, max_failures=5)
        with pytest.raises(core_exceptions.ServiceUnavailable):
            instance.start()
        assert attempt_fn.call_count == 1

    def test_non_api_error_propagates(self):
        attempt_fn = mock.Mock(side_effect=RuntimeError("bug"))
        instance = self._make_one(attempt_fn)
        with pytest.raises(RuntimeError):
            instance.start()

    def test_logging(self):
        logger = mock.Mock()
        attempt_fn = mock.Mock(side_effect=core_exceptions.Aborted("aborted"))
        instance = self._make_one(attempt_fn, max_failures=1, logger=logger)
        with mock.patch("time.sleep"):
            with pytest.raises(core_exceptions.Aborted):
                instance.start()
        assert logger.debug.call_count == 1
        assert logger.warning.call_count == 1

    @pytest.mark.asyncio
    async def test_start_async_retries(self):
        cq = _FakeCompletionQueue()
        attempt_fn = mock.Mock(
            side_effect=[core_exceptions.Aborted("aborted"), "response"]
        )
        instance = self._make_one(attempt_fn)
        assert await instance.start_async(cq) == "response"
        assert attempt_fn.call_count == 2
        assert len(cq.timers) == 1

    @pytest.mark.asyncio
    async def test_start_async_permanent_error(self):
        cq = _FakeCompletionQueue()
        attempt_fn = mock.Mock(side_effect=core_exceptions.Aborted("aborted"))
        instance = self._make_one(attempt_fn, max_failures=2)
        with pytest.raises(core_exceptions.Aborted) as e:
            await instance.start_async(cq)
        assert attempt_fn.call_count == 3
        assert len(cq.timers) == 2
        assert "Permanent (or too many transient) errors" in e.value.message

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

import concurrent.futures

import pytest
from unittest import mock


class TestAsyncFutureFromCallback:
    def _make_one(self, operation_name="test_operation"):
        from kvtable._async_bridge import AsyncFutureFromCallback

        return AsyncFutureFromCallback(operation_name)

    def test_result(self):
        callback = self._make_one()
        assert not callback.future.done()
        callback(mock.Mock(), "value")
        assert callback.future.result(timeout=0) == "value"

    def test_exception(self):
        callback = self._make_one()
        exc = RuntimeError("failed")
        callback(mock.Mock(), None, exc)
        assert callback.future.exception(timeout=0) is exc

    def test_second_call_rejected(self):
        callback = self._make_one("async_apply")
        callback(None, 1)
        with pytest.raises(concurrent.futures.InvalidStateError) as e:
            callback(None, 2)
        assert "async_apply" in str(e.value)
        assert callback.future.result() == 1


class TestThen:
    def _then(self, future, transform):
        from kvtable._async_bridge import then

        return then(future, transform)

    def test_transform(self):
        source = concurrent.futures.Future()
        chained = self._then(source, lambda value: value + 1)
        assert not chained.done()
        source.set_result(1)
        assert chained.result(timeout=0) == 2

    def test_already_done(self):
        source = concurrent.futures.Future()
        source.set_result("a")
        assert self._then(source, str.upper).result(timeout=0) == "A"

    def test_exception_propagates(self):
        source = concurrent.futures.Future()
        transform = mock.Mock()
        chained = self._then(source, transform)
        exc = ValueError("bad")
        source.set_exception(exc)
        assert chained.exception(timeout=0) is exc
        transform.assert_not_called()

    def test_transform_error(self):
        source = concurrent.futures.Future()
        chained = self._then(source, mock.Mock(side_effect=KeyError("k")))
        source.set_result(1)
        assert isinstance(chained.exception(timeout=0), KeyError)

    def test_cancel_propagates(self):
        source = concurrent.futures.Future()
        chained = self._then(source, mock.Mock())
        source.cancel()
        assert chained.cancelled()

    def test_result_dropped_after_chained_cancelled(self, caplog):
        source = concurrent.futures.Future()
        transform = mock.Mock()
        chained = self._then(source, transform)
        assert chained.cancel()
        with caplog.at_level("ERROR", logger="concurrent.futures"):
            source.set_result(1)
        assert chained.cancelled()
        transform.assert_not_called()
        assert not caplog.records


class TestDeliver:
    def _deliver(self, *args):
        from kvtable._async_bridge import _deliver

        return _deliver(*args)

    def test_result_delivered(self):
        from kvtable._async_bridge import AsyncFutureFromCallback

        cq = mock.Mock()
        callback = AsyncFutureFromCallback("op")
        operation = concurrent.futures.Future()
        self._deliver(cq, callback, operation)
        operation.set_result([1, 2])
        assert callback.future.result(timeout=0) == [1, 2]

    def test_exception_delivered(self):
        cq = mock.Mock()
        callback = mock.Mock()
        callback.future = concurrent.futures.Future()
        operation = concurrent.futures.Future()
        self._deliver(cq, callback, operation)
        exc = RuntimeError("failed")
        operation.set_exception(exc)
        callback.assert_called_once_with(cq, None, exc)

    def test_cancel_delivered(self):
        from kvtable._async_bridge import AsyncFutureFromCallback

        callback = AsyncFutureFromCallback("op")
        operation = concurrent.futures.Future()
        self._deliver(mock.Mock(), callback, operation)
        operation.cancel()
        assert isinstance(
            callback.future.exception(timeout=0), concurrent.futures.CancelledError
        )

    def test_result_dropped_after_caller_cancels(self, caplog):
        from kvtable._async_bridge import AsyncFutureFromCallback

        callback = AsyncFutureFromCallback("op")
        operation = concurrent.futures.Future()
        self._deliver(mock.Mock(), callback, operation)
        assert callback.future.cancel()
        with caplog.at_level("ERROR", logger="concurrent.futures"):
            operation.set_result(1)
        assert callback.future.cancelled()
        assert not caplog.records

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
from google.cloud.bigtable_v2.types import ReadRowsResponse

from kvtable.exceptions import InvalidChunk
from kvtable.stub import StreamingReadRpc

TABLE = "projects/p/instances/i/tables/t"


def _make_chunk(**kwargs):
    kwargs.setdefault("row_key", b"row_key")
    kwargs.setdefault("family_name", "family_name")
    kwargs.setdefault("qualifier", b"qualifier")
    kwargs.setdefault("value", b"value")
    kwargs.setdefault("commit_row", True)
    return ReadRowsResponse.CellChunk(**kwargs)


def _row_response(*row_keys):
    return ReadRowsResponse(chunks=[_make_chunk(row_key=key) for key in row_keys])


def _row_key(idx):
    return f"row{idx}".encode()


class _TrackedStream:
    """A server stream that records whether it was cancelled"""

    def __init__(self, responses, error=None):
        self._responses = list(responses)
        self._error = error
        self.cancelled = False

    def __iter__(self):
        for response in self._responses:
            if self.cancelled:
                return
            yield response
        if self._error is not None:
            raise self._error

    def cancel(self):
        self.cancelled = True


class _FakeCompletionQueue:
    def __init__(self):
        self.timers = []

    async def run_blocking(self, fn, *args):
        return fn(*args)

    async def make_relative_timer(self, delay):
        self.timers.append(delay)


class TestRowReader:
    @staticmethod
    def _get_target_class():
        from kvtable._read_rows import RowReader

        return RowReader

    def _make_one(self, stub, row_set=None, rows_limit=0, row_filter=None, **kwargs):
        from kvtable.policies import ExponentialBackoffPolicy
        from kvtable.policies import LimitedErrorCountRetryPolicy

        kwargs.setdefault("retry_policy", LimitedErrorCountRetryPolicy(3))
        kwargs.setdefault("backoff_policy", ExponentialBackoffPolicy(0.001, 0.002))
        kwargs.setdefault(
            "metadata", [("x-goog-request-params", f"table_name={TABLE}")]
        )
        return self._get_target_class()(
            stub, TABLE, None, row_set, rows_limit, row_filter, **kwargs
        )

    def _make_stub(self, *streams):
        """
        Returns a stub whose read_rows calls return the given streams, in
        order. Exceptions are raised when the stream is opened.
        """
        stub = mock.Mock()
        stub.read_rows.side_effect = [
            s if isinstance(s, Exception) else StreamingReadRpc(s) for s in streams
        ]
        return stub

    def _requests(self, stub):
        return [call[0][0] for call in stub.read_rows.call_args_list]

    def test_no_rpc_until_first_pull(self):
        stub = self._make_stub(_TrackedStream([]))
        reader = self._make_one(stub)
        stub.read_rows.assert_not_called()
        assert list(reader) == []
        assert stub.read_rows.call_count == 1

    def test_negative_limit(self):
        with pytest.raises(ValueError):
            self._make_one(mock.Mock(), rows_limit=-1)

    def test_full_scan_request(self):
        from kvtable.row_filters import PassAllFilter

        stub = self._make_stub(_TrackedStream([_row_response(b"a", b"b")]))
        reader = self._make_one(stub, row_filter=PassAllFilter(True))
        assert [row.row_key for row in reader] == [b"a", b"b"]
        (request,) = self._requests(stub)
        assert request == {"table_name": TABLE, "filter": {"pass_all_filter": True}}
        kwargs = stub.read_rows.call_args[1]
        assert kwargs["metadata"] == [("x-goog-request-params", f"table_name={TABLE}")]

    def test_row_set_request(self):
        from kvtable.row_set import RowSet

        stub = self._make_stub(_TrackedStream([_row_response(b"b")]))
        reader = self._make_one(stub, row_set=RowSet([b"b", b"a"]), rows_limit=10)
        assert len(list(reader)) == 1
        (request,) = self._requests(stub)
        assert request["rows"] == {"row_keys": [b"a", b"b"], "row_ranges": []}
        assert request["rows_limit"] == 10

    def test_limit_across_interruptions(self):
        """
        a limit of 5 against a source with 10 rows that breaks twice yields
        exactly 5 rows from 3 streams, and stops the last stream
        """
        unavailable = core_exceptions.ServiceUnavailable
        streams = [
            _TrackedStream(
                [_row_response(_row_key(0)), _row_response(_row_key(1))],
                error=unavailable("1"),
            ),
            _TrackedStream(
                [_row_response(_row_key(2)), _row_response(_row_key(3))],
                error=unavailable("2"),
            ),
            _TrackedStream([_row_response(_row_key(i)) for i in range(4, 10)]),
        ]
        stub = self._make_stub(*streams)
        reader = self._make_one(stub, rows_limit=5)
        rows = list(reader)
        assert [row.row_key for row in rows] == [_row_key(i) for i in range(5)]
        assert stub.read_rows.call_count == 3
        requests = self._requests(stub)
        assert [r["rows_limit"] for r in requests] == [5, 3, 1]
        assert "rows" not in requests[0]
        assert requests[1]["rows"]["row_ranges"] == [{"start_key_open": _row_key(1)}]
        assert requests[2]["rows"]["row_ranges"] == [{"start_key_open": _row_key(3)}]
        assert streams[2].cancelled is True
        # no further rpcs once the limit is reached
        assert list(reader) == []
        assert stub.read_rows.call_count == 3

    def test_duplicate_rows_dropped(self):
        streams = [
            _TrackedStream([_row_response(b"a")], error=core_exceptions.Aborted("")),
            _TrackedStream([_row_response(b"a", b"b")]),
        ]
        stub = self._make_stub(*streams)
        assert [row.row_key for row in self._make_one(stub)] == [b"a", b"b"]

    def test_heartbeat_advances_resume_point(self):
        heartbeat = ReadRowsResponse(last_scanned_row_key=b"m")
        streams = [
            _TrackedStream(
                [_row_response(b"a"), heartbeat], error=core_exceptions.Aborted("")
            ),
            _TrackedStream([_row_response(b"z")]),
        ]
        stub = self._make_stub(*streams)
        assert [row.row_key for row in self._make_one(stub)] == [b"a", b"z"]
        requests = self._requests(stub)
        assert requests[1]["rows"]["row_ranges"] == [{"start_key_open": b"m"}]

    def test_rows_before_heartbeat_delivered(self):
        response = _row_response(b"a", b"b")
        response.last_scanned_row_key = b"c"
        stub = self._make_stub(_TrackedStream([response]))
        assert [row.row_key for row in self._make_one(stub)] == [b"a", b"b"]

    def test_row_set_complete_after_failure(self):
        from kvtable.row_set import RowSet

        streams = [
            _TrackedStream([_row_response(b"a")], error=core_exceptions.Aborted(""))
        ]
        stub = self._make_stub(*streams)
        reader = self._make_one(stub, row_set=RowSet([b"a"]))
        assert [row.row_key for row in reader] == [b"a"]
        assert stub.read_rows.call_count == 1

    def test_open_failure_retried(self):
        stub = self._make_stub(
            core_exceptions.ServiceUnavailable("down"),
            _TrackedStream([_row_response(b"a")]),
        )
        assert [row.row_key for row in self._make_one(stub)] == [b"a"]
        assert stub.read_rows.call_count == 2

    def test_retries_exhausted(self):
        from kvtable.policies import LimitedErrorCountRetryPolicy

        streams = [
            _TrackedStream(
                [_row_response(b"a")], error=core_exceptions.ServiceUnavailable("1")
            ),
            _TrackedStream([], error=core_exceptions.ServiceUnavailable("2")),
        ]
        stub = self._make_stub(*streams)
        reader = self._make_one(stub, retry_policy=LimitedErrorCountRetryPolicy(1))
        assert next(reader).row_key == b"a"
        with pytest.raises(core_exceptions.ServiceUnavailable) as e:
            next(reader)
        assert e.value.message == "2"
        # the terminal error is the last element
        with pytest.raises(StopIteration):
            next(reader)
        assert stub.read_rows.call_count == 2

    def test_permanent_error_not_retried(self):
        stub = self._make_stub(
            _TrackedStream([], error=core_exceptions.PermissionDenied("denied"))
        )
        reader = self._make_one(stub)
        with pytest.raises(core_exceptions.PermissionDenied):
            list(reader)
        assert stub.read_rows.call_count == 1

    def test_invalid_chunk_not_retried(self):
        bad = ReadRowsResponse(
            chunks=[_make_chunk(row_key=b"b"), _make_chunk(row_key=b"a")]
        )
        stream = _TrackedStream([bad, _row_response(b"c")])
        stub = self._make_stub(stream)
        reader = self._make_one(stub)
        with pytest.raises(InvalidChunk):
            list(reader)
        assert stub.read_rows.call_count == 1
        assert stream.cancelled is True
        assert list(reader) == []

    def test_partial_row_at_end_of_stream(self):
        response = ReadRowsResponse(chunks=[_make_chunk(commit_row=False)])
        stub = self._make_stub(_TrackedStream([response]))
        with pytest.raises(InvalidChunk):
            list(self._make_one(stub))

    def test_cancel(self):
        stream = _TrackedStream([_row_response(b"a"), _row_response(b"b")])
        stub = self._make_stub(stream)
        reader = self._make_one(stub)
        assert next(reader).row_key == b"a"
        reader.cancel()
        assert stream.cancelled is True
        assert list(reader) == []
        assert stub.read_rows.call_count == 1

    def test_context_manager(self):
        stream = _TrackedStream([_row_response(b"a"), _row_response(b"b")])
        stub = self._make_stub(stream)
        with self._make_one(stub) as reader:
            next(reader)
        assert stream.cancelled is True

    def test_parser_factory_per_stream(self):
        from kvtable._row_parser import ReadRowsParser

        factory = mock.Mock(side_effect=ReadRowsParser)
        streams = [
            _TrackedStream([_row_response(b"a")], error=core_exceptions.Aborted("")),
            _TrackedStream([_row_response(b"b")]),
        ]
        stub = self._make_stub(*streams)
        rows = list(self._make_one(stub, parser_factory=factory))
        assert len(rows) == 2
        assert factory.call_count == 2

    def test_backoff_between_attempts(self):
        streams = [
            _TrackedStream([], error=core_exceptions.Aborted("")),
            _TrackedStream([_row_response(b"a")]),
        ]
        stub = self._make_stub(*streams)
        with mock.patch("time.sleep") as sleep_mock:
            assert len(list(self._make_one(stub))) == 1
        assert sleep_mock.call_count == 1

    @pytest.mark.asyncio
    async def test_read_all_async(self):
        from kvtable._read_rows import _read_all_async

        cq = _FakeCompletionQueue()
        streams = [
            _TrackedStream([_row_response(b"a")], error=core_exceptions.Aborted("")),
            _TrackedStream([_row_response(b"a", b"b")]),
        ]
        stub = self._make_stub(*streams)
        rows = await _read_all_async(self._make_one(stub), cq)
        assert [row.row_key for row in rows] == [b"a", b"b"]
        assert len(cq.timers) == 1

    @pytest.mark.asyncio
    async def test_read_all_async_error(self):
        from kvtable._read_rows import _read_all_async

        stub = self._make_stub(
            _TrackedStream([], error=core_exceptions.PermissionDenied("denied"))
        )
        with pytest.raises(core_exceptions.PermissionDenied):
            await _read_all_async(self._make_one(stub), _FakeCompletionQueue())

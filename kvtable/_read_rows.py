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

from typing import Any, Callable, Iterator, NamedTuple, TYPE_CHECKING
import logging
import time

from google.api_core import exceptions as core_exceptions

from kvtable._helpers import _make_call_kwargs
from kvtable._helpers import _make_request
from kvtable._row_parser import ReadRowsParser
from kvtable.exceptions import InvalidChunk
from kvtable.exceptions import _RowSetComplete
from kvtable.row import Row
from kvtable.row_filters import _filter_to_dict
from kvtable.row_set import RowSet
from kvtable.row_set import revise_row_set

if TYPE_CHECKING:
    from kvtable.completion_queue import CompletionQueue
    from kvtable.policies import RPCBackoffPolicy
    from kvtable.policies import RPCRetryPolicy
    from kvtable.row_filters import RowFilter
    from kvtable.stub import StreamingReadRpc
    from kvtable.stub import TableStub

LOGGER = logging.getLogger(__name__)


class _Backoff(NamedTuple):
    """Returned by RowReader._advance when the caller must wait before resuming"""

    delay: float


class RowReader(Iterator[Row]):
    """
    Iterates over the rows of a ReadRows scan, resuming the scan after
    transient failures.

    No request is sent until the first row is pulled. When a stream breaks,
    the scan is resumed after the last row delivered (or scanned by the
    server), and the rows limit is reduced by the rows already delivered, so
    no row is ever returned twice.

    Iteration raises the error that stopped the scan, after which the reader
    is exhausted. The reader is meant to be consumed by a single caller.

    Args:
      - stub: the TableStub used to send requests
      - table_name: the full name of the table
      - app_profile_id: the app profile sent with each request, if any
      - row_set: the rows to read. An empty RowSet reads the whole table
      - rows_limit: the maximum number of rows to return, or NO_ROWS_LIMIT
      - row_filter: a RowFilter (or filter dict) applied by the server
      - retry_policy: a fresh retry policy, owned by this reader
      - backoff_policy: a fresh backoff policy, owned by this reader
      - metadata: gRPC metadata sent with every attempt
      - parser_factory: builds the chunk parser for each stream
    """

    NO_ROWS_LIMIT = 0

    def __init__(
        self,
        stub: "TableStub",
        table_name: str,
        app_profile_id: str | None,
        row_set: RowSet | None,
        rows_limit: int,
        row_filter: "RowFilter" | dict[str, Any] | None,
        *,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        metadata: list[tuple[str, str]],
        parser_factory: Callable[[], ReadRowsParser] = ReadRowsParser,
        logger: logging.Logger | None = None,
    ):
        if rows_limit < 0:
            raise ValueError("rows_limit must be >= 0")
        self._stub = stub
        self._table_name = table_name
        self._app_profile_id = app_profile_id
        self._row_set = row_set if row_set is not None else RowSet()
        self._rows_limit = rows_limit
        self._filter = _filter_to_dict(row_filter)
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = metadata
        self._parser_factory = parser_factory
        self._logger = logger or LOGGER

        self._stream: "StreamingReadRpc[Any]" | None = None
        self._parser: ReadRowsParser | None = None
        self._rows_count = 0
        self._last_seen_row_key: bytes | None = None
        # heartbeat key, applied once the rows parsed before it are delivered
        self._scanned_row_key: bytes | None = None
        self._attempts = 0
        self._done = False

    def __iter__(self) -> RowReader:
        return self

    def __next__(self) -> Row:
        while True:
            result = self._advance()
            if result is None:
                raise StopIteration
            if isinstance(result, _Backoff):
                time.sleep(result.delay)
                continue
            return result

    def __enter__(self) -> RowReader:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()

    def cancel(self) -> None:
        """
        Stop the scan. Any open stream is cancelled, and the reader is
        exhausted.
        """
        self._finish()

    def _finish(self) -> None:
        self._done = True
        if self._stream is not None:
            self._stream.cancel()
            self._stream = None

    def _build_request(self) -> dict[str, Any]:
        """
        Build the request of the next attempt

        Raises:
          - _RowSetComplete: if the rows requested were all delivered
        """
        if self._last_seen_row_key is not None:
            self._row_set = revise_row_set(self._row_set, self._last_seen_row_key)
        fields: dict[str, Any] = {}
        if not self._row_set.is_full_scan():
            fields["rows"] = self._row_set._to_dict()
        if self._filter is not None:
            fields["filter"] = self._filter
        if self._rows_limit != self.NO_ROWS_LIMIT:
            fields["rows_limit"] = self._rows_limit - self._rows_count
        return _make_request(self._table_name, self._app_profile_id, **fields)

    def _open_stream(self) -> bool:
        """
        Start a new attempt. Returns False if there is nothing left to read.
        """
        try:
            request = self._build_request()
        except _RowSetComplete:
            return False
        self._attempts += 1
        self._parser = self._parser_factory()
        call_kwargs = _make_call_kwargs(
            self._metadata, self._retry_policy, self._backoff_policy
        )
        self._stream = self._stub.read_rows(request, **call_kwargs)
        return True

    def _next_from_stream(self) -> Row | None:
        """
        Pull chunks until a new row is complete.

        Returns:
          - the next row, or None when the stream ended cleanly
        """
        parser = self._parser
        while True:
            while parser.has_next():
                row = parser.next()
                if (
                    self._last_seen_row_key is not None
                    and row.row_key <= self._last_seen_row_key
                ):
                    # already delivered by a previous attempt
                    continue
                self._last_seen_row_key = row.row_key
                self._rows_count += 1
                return row
            if self._scanned_row_key is not None:
                if (
                    self._last_seen_row_key is None
                    or self._scanned_row_key > self._last_seen_row_key
                ):
                    self._last_seen_row_key = self._scanned_row_key
                self._scanned_row_key = None
            response = self._stream.read()
            if response is None:
                parser.handle_end_of_stream()
                return None
            response_pb = getattr(response, "_pb", response)
            for chunk in response_pb.chunks:
                parser.handle_chunk(chunk)
            if response_pb.last_scanned_row_key:
                parser.handle_last_scanned_row_key(response_pb.last_scanned_row_key)
                self._scanned_row_key = response_pb.last_scanned_row_key

    def _advance(self) -> Row | _Backoff | None:
        """
        Make progress on the scan without blocking on a backoff delay.

        Returns:
          - the next Row
          - a _Backoff, if the caller must wait before calling again
          - None, once the scan is complete
        Raises:
          - InvalidChunk: if the server sent a malformed stream
          - GoogleAPICallError: if the scan failed and may not be retried
        """
        if self._done:
            return None
        try:
            if self._stream is None and not self._open_stream():
                self._finish()
                return None
            row = self._next_from_stream()
        except InvalidChunk as exc:
            self._logger.error(
                "ReadRows stream for %s was malformed: %s", self._table_name, exc
            )
            self._finish()
            raise
        except core_exceptions.GoogleAPICallError as exc:
            if self._stream is not None:
                self._stream.cancel()
                self._stream = None
            if not self._retry_policy.on_failure(exc):
                self._logger.warning(
                    "ReadRows failed after %d attempt(s): %s", self._attempts, exc
                )
                self._finish()
                raise
            delay = self._backoff_policy.on_completion(exc)
            self._logger.debug(
                "ReadRows attempt %d failed with %r, resuming after %r in %.3fs",
                self._attempts,
                exc,
                self._last_seen_row_key,
                delay,
            )
            return _Backoff(delay)
        if row is None:
            self._finish()
            return None
        if (
            self._rows_limit != self.NO_ROWS_LIMIT
            and self._rows_count >= self._rows_limit
        ):
            # the server may still be streaming; stop it
            self._finish()
        return row


async def _read_all_async(reader: RowReader, cq: "CompletionQueue") -> list[Row]:
    """
    Drain a RowReader on the completion queue. Stream reads run on its
    executor, and backoff delays use its timers.
    """
    rows: list[Row] = []
    while True:
        result = await cq.run_blocking(reader._advance)
        if result is None:
            return rows
        if isinstance(result, _Backoff):
            await cq.make_relative_timer(result.delay)
            continue
        rows.append(result)

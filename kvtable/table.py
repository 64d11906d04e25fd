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

from typing import Any, Sequence, TYPE_CHECKING
import functools
import logging

from google.api_core import exceptions as core_exceptions

from kvtable._async_bridge import AsyncFutureFromCallback
from kvtable._async_bridge import _deliver
from kvtable._async_bridge import then
from kvtable._helpers import _make_metadata
from kvtable._helpers import _make_request
from kvtable._mutate_rows import _MutateRowsOperation
from kvtable._read_rows import RowReader
from kvtable._read_rows import _read_all_async
from kvtable._retryable_call import _RetryableCall
from kvtable._row_parser import ReadRowsParser
from kvtable.mutations import BulkMutation
from kvtable.mutations import Mutation
from kvtable.mutations import RowMutationEntry
from kvtable.policies import ExponentialBackoffPolicy
from kvtable.policies import LimitedTimeRetryPolicy
from kvtable.policies import SafeIdempotentMutationPolicy
from kvtable.read_modify_write_rules import ReadModifyWriteRule
from kvtable.row import Row
from kvtable.row_filters import _filter_to_dict
from kvtable.row_set import RowSet

if TYPE_CHECKING:
    import concurrent.futures

    from kvtable.completion_queue import CompletionQueue
    from kvtable.mutations import FailedMutation
    from kvtable.policies import IdempotentMutationPolicy
    from kvtable.policies import RPCBackoffPolicy
    from kvtable.policies import RPCRetryPolicy
    from kvtable.row_filters import RowFilter
    from kvtable.stub import TableStub

LOGGER = logging.getLogger(__name__)


def _to_bytes(row_key: str | bytes) -> bytes:
    return row_key.encode("utf-8") if isinstance(row_key, str) else row_key


def _mutations_to_dicts(
    mutations: Mutation | Sequence[Mutation] | None,
) -> list[dict[str, Any]]:
    if mutations is None:
        return []
    if isinstance(mutations, Mutation):
        mutations = [mutations]
    return [mutation._to_dict() for mutation in mutations]


def _single_row_result(row_key: bytes, rows: Sequence[Row]) -> tuple[bool, Row]:
    if not rows:
        return False, Row(row_key, [])
    if len(rows) > 1:
        raise core_exceptions.InternalServerError(
            "internal error - RowReader returned 2 rows in read_row()"
        )
    return True, rows[0]


class Table:
    """
    Main Data API surface for a single table

    Every operation clones fresh policies from the ones given at
    construction, so concurrent operations never share retry state.

    Args:
      - stub: the TableStub used to send requests
      - table_name: the full table name, of the form
            projects/<project>/instances/<instance>/tables/<table>
      - app_profile_id: the app profile sent with each request, if any
      - rpc_retry_policy: prototype of the policy deciding which failures are
            retried. Defaults to retrying transient errors for 10 minutes.
      - rpc_backoff_policy: prototype of the policy spacing out retries.
            Defaults to jittered exponential backoff.
      - idempotent_mutation_policy: decides which mutations may be replayed
            after an ambiguous failure. Defaults to
            SafeIdempotentMutationPolicy.
      - logger: logger used by the operations of this table
    """

    def __init__(
        self,
        stub: "TableStub",
        table_name: str,
        app_profile_id: str | None = None,
        *,
        rpc_retry_policy: "RPCRetryPolicy" | None = None,
        rpc_backoff_policy: "RPCBackoffPolicy" | None = None,
        idempotent_mutation_policy: "IdempotentMutationPolicy" | None = None,
        logger: logging.Logger | None = None,
    ):
        self._stub = stub
        self.table_name = table_name
        self.app_profile_id = app_profile_id
        self._rpc_retry_policy = rpc_retry_policy or LimitedTimeRetryPolicy()
        self._rpc_backoff_policy = rpc_backoff_policy or ExponentialBackoffPolicy()
        self._idempotent_mutation_policy = (
            idempotent_mutation_policy or SafeIdempotentMutationPolicy()
        )
        self._logger = logger or LOGGER
        self._metadata = _make_metadata(table_name, app_profile_id)

    def __repr__(self):
        return (
            f"Table(table_name={self.table_name!r}, "
            f"app_profile_id={self.app_profile_id!r})"
        )

    def _request(self, **fields: Any) -> dict[str, Any]:
        return _make_request(self.table_name, self.app_profile_id, **fields)

    def _retryable_call(
        self,
        stub_method,
        request: dict[str, Any],
        operation_name: str,
        is_idempotent: bool,
    ) -> _RetryableCall:
        return _RetryableCall(
            functools.partial(stub_method, request),
            operation_name,
            retry_policy=self._rpc_retry_policy.clone(),
            backoff_policy=self._rpc_backoff_policy.clone(),
            metadata=self._metadata,
            is_idempotent=is_idempotent,
            logger=self._logger,
        )

    def _schedule(
        self, cq: "CompletionQueue", operation_name: str, coro
    ) -> "concurrent.futures.Future[Any]":
        """Run `coro` on the completion queue, delivering its outcome to a callback"""
        callback = AsyncFutureFromCallback(operation_name)
        _deliver(cq, callback, cq.run_async(coro))
        return callback.future

    # Mutations

    def _apply_call(self, mutation: RowMutationEntry) -> _RetryableCall:
        policy = self._idempotent_mutation_policy.clone()
        is_idempotent = all(policy.is_idempotent(m) for m in mutation.mutations)
        request = self._request(**mutation._to_dict())
        return self._retryable_call(
            self._stub.mutate_row, request, "apply", is_idempotent
        )

    def apply(self, mutation: RowMutationEntry) -> None:
        """
        Apply the mutations of a single row atomically.

        The call is retried on transient failures only if every mutation is
        idempotent under the table's idempotency policy.

        Raises:
          - GoogleAPICallError: the permanent error, carrying the status of
            the last failed attempt
        """
        self._apply_call(mutation).start()

    def async_apply(
        self, mutation: RowMutationEntry, cq: "CompletionQueue"
    ) -> "concurrent.futures.Future[None]":
        """
        Asynchronous version of apply(). The returned future fails with the
        same error apply() would raise.
        """
        call = self._apply_call(mutation)
        future = self._schedule(cq, "async_apply", call.start_async(cq))
        return then(future, lambda _: None)

    def _bulk_operation(self, bulk: BulkMutation) -> _MutateRowsOperation:
        return _MutateRowsOperation(
            self._stub,
            self.table_name,
            self.app_profile_id,
            bulk,
            retry_policy=self._rpc_retry_policy.clone(),
            backoff_policy=self._rpc_backoff_policy.clone(),
            idempotent_policy=self._idempotent_mutation_policy.clone(),
            metadata=self._metadata,
            logger=self._logger,
        )

    def bulk_apply(self, bulk: BulkMutation) -> list["FailedMutation"]:
        """
        Apply a batch of row mutations. Each entry is applied atomically, but
        entries succeed or fail independently.

        Entries that fail with a transient error are resent in later rounds,
        if idempotent, until they succeed or the retry policy gives up.

        Returns:
          - one FailedMutation per entry that could not be applied, ordered
            by the entry's index in `bulk`. Empty on complete success.
        """
        return self._bulk_operation(bulk).start()

    def async_bulk_apply(
        self, bulk: BulkMutation, cq: "CompletionQueue"
    ) -> "concurrent.futures.Future[list[FailedMutation]]":
        operation = self._bulk_operation(bulk)
        return self._schedule(cq, "async_bulk_apply", operation.start_async(cq))

    # Reads

    def read_rows(
        self,
        row_set: RowSet | None = None,
        rows_limit: int = RowReader.NO_ROWS_LIMIT,
        filter: "RowFilter" | dict[str, Any] | None = None,
        *,
        parser_factory=ReadRowsParser,
    ) -> RowReader:
        """
        Read rows from the table. No request is sent until the first row is
        pulled from the returned reader.

        Args:
          - row_set: the rows to read. None or an empty RowSet reads the
                whole table
          - rows_limit: the maximum number of rows to return. Defaults to no
                limit
          - filter: a RowFilter applied to each row by the server
        Raises:
          - ValueError: if rows_limit is negative
        """
        return RowReader(
            self._stub,
            self.table_name,
            self.app_profile_id,
            row_set,
            rows_limit,
            filter,
            retry_policy=self._rpc_retry_policy.clone(),
            backoff_policy=self._rpc_backoff_policy.clone(),
            metadata=self._metadata,
            parser_factory=parser_factory,
            logger=self._logger,
        )

    def read_row(
        self, row_key: str | bytes, filter: "RowFilter" | dict[str, Any] | None = None
    ) -> tuple[bool, Row]:
        """
        Read a single row

        Returns:
          - (True, row) if the row exists, else (False, an empty row)
        """
        row_key = _to_bytes(row_key)
        with self.read_rows(RowSet(row_keys=[row_key]), 1, filter) as reader:
            rows = []
            for row in reader:
                rows.append(row)
                if len(rows) > 1:
                    break
        return _single_row_result(row_key, rows)

    def async_read_rows(
        self,
        cq: "CompletionQueue",
        row_set: RowSet | None = None,
        rows_limit: int = RowReader.NO_ROWS_LIMIT,
        filter: "RowFilter" | dict[str, Any] | None = None,
    ) -> "concurrent.futures.Future[list[Row]]":
        """
        Asynchronous version of read_rows(). The future resolves to every
        row read, or fails with the error that stopped the scan.
        """
        reader = self.read_rows(row_set, rows_limit, filter)
        return self._schedule(cq, "async_read_rows", _read_all_async(reader, cq))

    def async_read_row(
        self,
        row_key: str | bytes,
        cq: "CompletionQueue",
        filter: "RowFilter" | dict[str, Any] | None = None,
    ) -> "concurrent.futures.Future[tuple[bool, Row]]":
        row_key = _to_bytes(row_key)
        future = self.async_read_rows(cq, RowSet(row_keys=[row_key]), 1, filter)
        return then(future, functools.partial(_single_row_result, row_key))

    # Conditional and read-modify-write operations

    def _check_and_mutate_call(
        self,
        row_key: str | bytes,
        filter: "RowFilter" | dict[str, Any] | None,
        true_mutations: Mutation | Sequence[Mutation] | None,
        false_mutations: Mutation | Sequence[Mutation] | None,
    ) -> _RetryableCall:
        request = self._request(
            row_key=_to_bytes(row_key),
            predicate_filter=_filter_to_dict(filter),
            true_mutations=_mutations_to_dicts(true_mutations),
            false_mutations=_mutations_to_dicts(false_mutations),
        )
        is_idempotent = self._idempotent_mutation_policy.clone().is_request_idempotent(
            request
        )
        return self._retryable_call(
            self._stub.check_and_mutate_row,
            request,
            "check_and_mutate_row",
            is_idempotent,
        )

    def check_and_mutate_row(
        self,
        row_key: str | bytes,
        filter: "RowFilter" | dict[str, Any] | None,
        true_mutations: Mutation | Sequence[Mutation] | None = None,
        false_mutations: Mutation | Sequence[Mutation] | None = None,
    ) -> bool:
        """
        Apply `true_mutations` if any cell of the row matches `filter`, else
        `false_mutations`. Without a filter, the predicate matches any row
        with at least one cell.

        Returns:
          - whether the predicate matched
        """
        call = self._check_and_mutate_call(
            row_key, filter, true_mutations, false_mutations
        )
        return call.start().predicate_matched

    def async_check_and_mutate_row(
        self,
        row_key: str | bytes,
        filter: "RowFilter" | dict[str, Any] | None,
        true_mutations: Mutation | Sequence[Mutation] | None = None,
        false_mutations: Mutation | Sequence[Mutation] | None = None,
        *,
        cq: "CompletionQueue",
    ) -> "concurrent.futures.Future[bool]":
        call = self._check_and_mutate_call(
            row_key, filter, true_mutations, false_mutations
        )
        future = self._schedule(cq, "async_check_and_mutate_row", call.start_async(cq))
        return then(future, lambda response: response.predicate_matched)

    def read_modify_write_row(
        self,
        row_key: str | bytes,
        rules: ReadModifyWriteRule | Sequence[ReadModifyWriteRule],
    ) -> Row:
        """
        Atomically modify cells of a row, based on their current values.

        The call is never retried: replaying it could apply the rules twice.

        Returns:
          - the new contents of every modified cell
        Raises:
          - ValueError: if no rules are given
        """
        if isinstance(rules, ReadModifyWriteRule):
            rules = [rules]
        if not rules:
            raise ValueError("rules must contain at least one item")
        request = self._request(
            row_key=_to_bytes(row_key), rules=[rule._to_dict() for rule in rules]
        )
        call = self._retryable_call(
            self._stub.read_modify_write_row,
            request,
            "read_modify_write_row",
            is_idempotent=False,
        )
        return Row._from_pb(call.start().row)

    def sample_row_keys(self) -> list[tuple[bytes, int]]:
        """
        Return a set of row keys that split the table into chunks of roughly
        equal size, along with the approximate offset of each key.
        """

        def _sample(**call_kwargs):
            return [
                (response.row_key, response.offset_bytes)
                for response in self._stub.sample_row_keys(request, **call_kwargs)
            ]

        request = self._request()
        call = _RetryableCall(
            _sample,
            "sample_row_keys",
            retry_policy=self._rpc_retry_policy.clone(),
            backoff_policy=self._rpc_backoff_policy.clone(),
            metadata=self._metadata,
            is_idempotent=True,
            logger=self._logger,
        )
        return call.start()

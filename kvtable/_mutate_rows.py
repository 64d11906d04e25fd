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

from typing import Any, Callable, Sequence, TYPE_CHECKING
import logging
import time

import grpc
from google.api_core import exceptions as core_exceptions

from kvtable._helpers import _make_call_kwargs
from kvtable._helpers import _make_request
from kvtable.mutations import FailedMutation

if TYPE_CHECKING:
    from kvtable.completion_queue import CompletionQueue
    from kvtable.mutations import BulkMutation
    from kvtable.mutations import RowMutationEntry
    from kvtable.policies import IdempotentMutationPolicy
    from kvtable.policies import RPCBackoffPolicy
    from kvtable.policies import RPCRetryPolicy
    from kvtable.stub import TableStub

LOGGER = logging.getLogger(__name__)


class _BulkMutator:
    """
    Tracks the state of a BulkMutation across MutateRows rounds.

    Entries are identified by their position in the submitted batch. Each
    round sends only the entries still pending, so the server's response
    indices are translated back to the original positions before any outcome
    is recorded. Every entry ends with exactly one outcome: success, or a
    single FailedMutation.
    """

    def __init__(
        self,
        table_name: str,
        app_profile_id: str | None,
        idempotent_policy: "IdempotentMutationPolicy",
        is_retryable: Callable[[Exception], bool],
        bulk: "BulkMutation" | Sequence["RowMutationEntry"],
        logger: logging.Logger | None = None,
    ):
        self._table_name = table_name
        self._app_profile_id = app_profile_id
        self._is_retryable = is_retryable
        self._logger = logger or LOGGER
        # original index -> entry, kept in ascending index order
        self._pending: dict[int, "RowMutationEntry"] = dict(enumerate(bulk))
        self._is_idempotent: dict[int, bool] = {
            idx: all(idempotent_policy.is_idempotent(m) for m in entry.mutations)
            for idx, entry in self._pending.items()
        }
        self._last_status: dict[int, core_exceptions.GoogleAPICallError] = {}
        self._failures: list[FailedMutation] = []

    def has_pending_mutations(self) -> bool:
        return bool(self._pending)

    def _fail(self, index: int, status: core_exceptions.GoogleAPICallError) -> None:
        entry = self._pending.pop(index)
        self._failures.append(FailedMutation(index, entry, status))

    def _on_entry_failure(
        self, index: int, status: core_exceptions.GoogleAPICallError
    ) -> bool:
        """
        Record a failed entry. Returns True if the entry stays pending.
        """
        self._last_status[index] = status
        if self._is_idempotent[index] and self._is_retryable(status):
            return True
        self._fail(index, status)
        return False

    def make_one_request(
        self, stub: "TableStub", call_kwargs: dict[str, Any]
    ) -> core_exceptions.GoogleAPICallError | None:
        """
        Send one MutateRows request containing every pending entry, and
        process the streamed per-entry results.

        Returns:
          - the status that should drive the retry decision, or None if no
            entry is left to retry
        """
        round_indices = list(self._pending)
        request = _make_request(
            self._table_name,
            self._app_profile_id,
            entries=[self._pending[idx]._to_dict() for idx in round_indices],
        )
        reported: set[int] = set()
        retry_status: core_exceptions.GoogleAPICallError | None = None
        try:
            stream = stub.mutate_rows(request, **call_kwargs)
            for response in stream:
                for result in response.entries:
                    if result.index < 0 or result.index >= len(round_indices):
                        self._logger.error(
                            "MutateRows returned out of range index %d "
                            "for a request with %d entries",
                            result.index,
                            len(round_indices),
                        )
                        continue
                    if result.index in reported:
                        self._logger.error(
                            "MutateRows reported index %d more than once", result.index
                        )
                        continue
                    reported.add(result.index)
                    original_index = round_indices[result.index]
                    if result.status.code == grpc.StatusCode.OK.value[0]:
                        self._pending.pop(original_index)
                        self._last_status.pop(original_index, None)
                        continue
                    status = core_exceptions.from_grpc_status(
                        result.status.code,
                        result.status.message,
                        details=result.status.details,
                    )
                    if self._on_entry_failure(original_index, status):
                        retry_status = status
        except core_exceptions.GoogleAPICallError as exc:
            # the stream broke: entries without a reported outcome are in doubt
            for position, original_index in enumerate(round_indices):
                if position in reported:
                    continue
                self._last_status[original_index] = exc
                if self._is_idempotent[original_index]:
                    retry_status = exc
                else:
                    self._fail(original_index, exc)
            return retry_status if self._pending else None
        for position, original_index in enumerate(round_indices):
            if position in reported:
                continue
            status = core_exceptions.from_grpc_status(
                grpc.StatusCode.UNKNOWN,
                "MutateRows stream ended without reporting this entry",
            )
            if self._on_entry_failure(original_index, status):
                retry_status = status
        return retry_status if self._pending else None

    def extract_final_failures(self) -> list[FailedMutation]:
        """
        Convert the entries still pending into failures carrying their last
        status, and return every failure ordered by original index.
        """
        for idx in list(self._pending):
            status = self._last_status.get(idx) or core_exceptions.from_grpc_status(
                grpc.StatusCode.UNKNOWN, "mutation was never attempted"
            )
            self._fail(idx, status)
        return sorted(self._failures, key=lambda failure: failure.index)


class _MutateRowsOperation:
    """
    MutateRowsOperation manages the logic of sending a set of row mutations,
    and retrying on failed entries. It manages this using the _BulkMutator
    class to track the pending entries between rounds.

    Errors are exposed as a list of FailedMutation objects; no error is
    raised to the caller.
    """

    def __init__(
        self,
        stub: "TableStub",
        table_name: str,
        app_profile_id: str | None,
        bulk: "BulkMutation",
        *,
        retry_policy: "RPCRetryPolicy",
        backoff_policy: "RPCBackoffPolicy",
        idempotent_policy: "IdempotentMutationPolicy",
        metadata: list[tuple[str, str]],
        logger: logging.Logger | None = None,
    ):
        self._stub = stub
        self._retry_policy = retry_policy
        self._backoff_policy = backoff_policy
        self._metadata = metadata
        self._logger = logger or LOGGER
        self.mutator = _BulkMutator(
            table_name,
            app_profile_id,
            idempotent_policy,
            retry_policy.is_retryable,
            bulk,
            logger=self._logger,
        )
        self._round = 0

    def _next_call_kwargs(self) -> dict[str, Any]:
        self._round += 1
        return _make_call_kwargs(
            self._metadata, self._retry_policy, self._backoff_policy
        )

    def _should_continue(
        self, status: core_exceptions.GoogleAPICallError | None
    ) -> float | None:
        """
        Returns the delay before the next round, or None to stop
        """
        if not self.mutator.has_pending_mutations():
            return None
        if status is None or not self._retry_policy.on_failure(status):
            self._logger.warning(
                "MutateRows stopped retrying after %d round(s): %s", self._round, status
            )
            return None
        delay = self._backoff_policy.on_completion(status)
        self._logger.debug(
            "MutateRows round %d left entries pending (%r), retrying in %.3fs",
            self._round,
            status,
            delay,
        )
        return delay

    def start(self) -> list[FailedMutation]:
        """
        Run rounds on the calling thread until every entry has an outcome.

        Returns:
          - the failed entries, ordered by their index in the batch
        """
        while self.mutator.has_pending_mutations():
            status = self.mutator.make_one_request(self._stub, self._next_call_kwargs())
            delay = self._should_continue(status)
            if delay is None:
                break
            time.sleep(delay)
        return self.mutator.extract_final_failures()

    async def start_async(self, cq: "CompletionQueue") -> list[FailedMutation]:
        """
        Same as start(), with rounds run on the completion queue's executor
        and waits scheduled with its timers.
        """
        while self.mutator.has_pending_mutations():
            call_kwargs = self._next_call_kwargs()
            status = await cq.run_blocking(
                self.mutator.make_one_request, self._stub, call_kwargs
            )
            delay = self._should_continue(status)
            if delay is None:
                break
            await cq.make_relative_timer(delay)
        return self.mutator.extract_final_failures()

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

from typing import Any, Iterable, Iterator
from dataclasses import dataclass

from google.api_core import exceptions as core_exceptions

# special value for SetCell mutation timestamps. If set, server will assign a timestamp
SERVER_SIDE_TIMESTAMP = -1

# mutation entries above this should be rejected
_MUTATE_ROWS_REQUEST_MUTATION_LIMIT = 100_000

# values must fit in a signed 64-bit integer
_MIN_INT_VALUE = -(2**63)
_MAX_INT_VALUE = 2**63 - 1


class Mutation:
    """Model class for mutations"""

    def _to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def is_idempotent(self) -> bool:
        """
        Check if the mutation is idempotent
        If false, the mutation will not be retried after an ambiguous failure
        """
        return True

    def __str__(self) -> str:
        return str(self._to_dict())


class SetCell(Mutation):
    """
    Mutation to set the value of a cell

    Args:
      - family: The name of the column family to which the new cell belongs.
      - qualifier: The column qualifier of the new cell.
      - new_value: The value of the new cell. str values will be encoded as
            utf-8 bytes, and int values as 64-bit big-endian bytes.
      - timestamp_micros: The timestamp of the new cell. If None, the server
            will assign a timestamp, which makes the mutation non-idempotent.
    """

    SERVER_SIDE_TIMESTAMP = SERVER_SIDE_TIMESTAMP

    def __init__(
        self,
        family: str,
        qualifier: bytes | str,
        new_value: bytes | str | int,
        timestamp_micros: int | None = None,
    ):
        qualifier = qualifier.encode() if isinstance(qualifier, str) else qualifier
        if not isinstance(qualifier, bytes):
            raise TypeError("qualifier must be bytes or str")
        if isinstance(new_value, str):
            new_value = new_value.encode()
        elif isinstance(new_value, int):
            if not _MIN_INT_VALUE <= new_value <= _MAX_INT_VALUE:
                raise ValueError(
                    "int values must be between -2**63 and 2**63 (64-bit signed int)"
                )
            new_value = new_value.to_bytes(8, "big", signed=True)
        if not isinstance(new_value, bytes):
            raise TypeError("new_value must be bytes, str, or int")
        if timestamp_micros is None:
            timestamp_micros = SERVER_SIDE_TIMESTAMP
        if timestamp_micros < SERVER_SIDE_TIMESTAMP:
            raise ValueError(
                "timestamp_micros must be positive (or -1 for server-side timestamp)"
            )
        self.family = family
        self.qualifier = qualifier
        self.new_value = new_value
        self.timestamp_micros = timestamp_micros

    def _to_dict(self) -> dict[str, Any]:
        return {
            "set_cell": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "timestamp_micros": self.timestamp_micros,
                "value": self.new_value,
            }
        }

    def is_idempotent(self) -> bool:
        """Check if the mutation is idempotent"""
        return self.timestamp_micros != SERVER_SIDE_TIMESTAMP


class DeleteRangeFromColumn(Mutation):
    """
    Mutation to delete the cells of a column within a timestamp range.
    Start is inclusive, end is exclusive; None on either side is unbounded.
    """

    def __init__(
        self,
        family: str,
        qualifier: bytes | str,
        start_timestamp_micros: int | None = None,
        end_timestamp_micros: int | None = None,
    ):
        if (
            start_timestamp_micros is not None
            and end_timestamp_micros is not None
            and start_timestamp_micros > end_timestamp_micros
        ):
            raise ValueError("start_timestamp_micros must be <= end_timestamp_micros")
        self.family = family
        self.qualifier = qualifier.encode() if isinstance(qualifier, str) else qualifier
        self.start_timestamp_micros = start_timestamp_micros
        self.end_timestamp_micros = end_timestamp_micros

    def _to_dict(self) -> dict[str, Any]:
        timestamp_range = {}
        if self.start_timestamp_micros is not None:
            timestamp_range["start_timestamp_micros"] = self.start_timestamp_micros
        if self.end_timestamp_micros is not None:
            timestamp_range["end_timestamp_micros"] = self.end_timestamp_micros
        return {
            "delete_from_column": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "time_range": timestamp_range,
            }
        }


class DeleteAllFromFamily(Mutation):
    def __init__(self, family_to_delete: str):
        self.family_to_delete = family_to_delete

    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_family": {"family_name": self.family_to_delete},
        }


class DeleteAllFromRow(Mutation):
    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_row": {},
        }


class RowMutationEntry:
    """
    A row key together with the mutations to apply to it. The mutations are
    applied atomically by the server.
    """

    def __init__(self, row_key: bytes | str, mutations: Mutation | list[Mutation]):
        if isinstance(row_key, str):
            row_key = row_key.encode("utf-8")
        if isinstance(mutations, Mutation):
            mutations = [mutations]
        if len(mutations) == 0:
            raise ValueError("mutations must not be empty")
        elif len(mutations) > _MUTATE_ROWS_REQUEST_MUTATION_LIMIT:
            raise ValueError(
                f"entries must have <= {_MUTATE_ROWS_REQUEST_MUTATION_LIMIT} mutations"
            )
        self.row_key = row_key
        self.mutations = tuple(mutations)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "row_key": self.row_key,
            "mutations": [mutation._to_dict() for mutation in self.mutations],
        }

    def is_idempotent(self) -> bool:
        """Check if the entry is idempotent"""
        return all(mutation.is_idempotent() for mutation in self.mutations)

    def __repr__(self):
        return (
            f"RowMutationEntry(row_key={self.row_key!r}, "
            f"mutations={list(self.mutations)!r})"
        )


# the name used for a single row mutation throughout the Table API
SingleRowMutation = RowMutationEntry


class BulkMutation:
    """
    An ordered batch of RowMutationEntry objects.

    The position of an entry when the batch is submitted is its identity in
    the results of Table.bulk_apply.
    """

    def __init__(self, *entries: RowMutationEntry | Iterable[RowMutationEntry]):
        self._entries: list[RowMutationEntry] = []
        for entry in entries:
            if isinstance(entry, RowMutationEntry):
                self.push_back(entry)
            else:
                for sub_entry in entry:
                    self.push_back(sub_entry)

    def push_back(self, entry: RowMutationEntry) -> BulkMutation:
        """
        Add an entry to the end of the batch

        Returns:
          - a reference to this batch for chaining
        """
        if not isinstance(entry, RowMutationEntry):
            raise TypeError("entry must be a RowMutationEntry")
        self._entries.append(entry)
        return self

    append = push_back

    def empty(self) -> bool:
        return len(self._entries) == 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RowMutationEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> RowMutationEntry:
        return self._entries[index]


@dataclass(frozen=True)
class FailedMutation:
    """
    The terminal outcome of a BulkMutation entry that could not be applied

    Attributes:
      - index: the position of the entry in the submitted BulkMutation
      - entry: the RowMutationEntry that failed
      - status: the last error reported for the entry
    """

    index: int
    entry: RowMutationEntry
    status: core_exceptions.GoogleAPICallError

    @property
    def code(self):
        """The grpc.StatusCode of the final status"""
        return self.status.grpc_status_code

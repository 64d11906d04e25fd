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

from typing import Any
from dataclasses import dataclass

from kvtable.exceptions import _RowSetComplete


def _to_bytes(key: str | bytes | None, name: str) -> bytes | None:
    if isinstance(key, str):
        return key.encode()
    if key is not None and not isinstance(key, bytes):
        raise ValueError(f"{name} must be a string or bytes")
    return key


@dataclass(frozen=True)
class _RangePoint:
    """Model class for a point in a row range"""

    key: bytes
    is_inclusive: bool


class RowRange:
    """
    A contiguous range of row keys. The start is inclusive and the end
    exclusive unless stated otherwise; a missing key leaves that side
    unbounded.
    """

    def __init__(
        self,
        start_key: str | bytes | None = None,
        end_key: str | bytes | None = None,
        start_is_inclusive: bool | None = None,
        end_is_inclusive: bool | None = None,
    ):
        if start_is_inclusive is None:
            start_is_inclusive = True
        elif start_key is None:
            raise ValueError("start_is_inclusive must be set with start_key")
        if end_is_inclusive is None:
            end_is_inclusive = False
        elif end_key is None:
            raise ValueError("end_is_inclusive must be set with end_key")
        start_key = _to_bytes(start_key, "start_key")
        end_key = _to_bytes(end_key, "end_key")
        self.start = None
        if start_key is not None:
            self.start = _RangePoint(start_key, start_is_inclusive)
        self.end = None
        if end_key is not None:
            self.end = _RangePoint(end_key, end_is_inclusive)

    @classmethod
    def _from_points(
        cls, start: _RangePoint | None, end: _RangePoint | None
    ) -> RowRange:
        kwargs: dict[str, Any] = {}
        if start is not None:
            kwargs["start_key"] = start.key
            kwargs["start_is_inclusive"] = start.is_inclusive
        if end is not None:
            kwargs["end_key"] = end.key
            kwargs["end_is_inclusive"] = end.is_inclusive
        return cls(**kwargs)

    @classmethod
    def _from_dict(cls, data: dict[str, bytes]) -> RowRange:
        """Creates a RowRange from a google.bigtable.v2.RowRange dictionary"""
        start_key = data.get("start_key_closed", data.get("start_key_open"))
        end_key = data.get("end_key_closed", data.get("end_key_open"))
        return cls(
            start_key,
            end_key,
            "start_key_closed" in data if start_key is not None else None,
            "end_key_closed" in data if end_key is not None else None,
        )

    def _to_dict(self) -> dict[str, bytes]:
        output = {}
        if self.start is not None:
            key = "start_key_closed" if self.start.is_inclusive else "start_key_open"
            output[key] = self.start.key
        if self.end is not None:
            key = "end_key_closed" if self.end.is_inclusive else "end_key_open"
            output[key] = self.end.key
        return output

    def contains(self, key: bytes) -> bool:
        """Returns True if the row key falls inside the range"""
        if self.start is not None:
            if key < self.start.key:
                return False
            if key == self.start.key and not self.start.is_inclusive:
                return False
        if self.end is not None:
            if key > self.end.key:
                return False
            if key == self.end.key and not self.end.is_inclusive:
                return False
        return True

    def __eq__(self, other) -> bool:
        if not isinstance(other, RowRange):
            return NotImplemented
        return self.start == other.start and self.end == other.end

    def __hash__(self) -> int:
        return hash((self.start, self.end))

    def __bool__(self) -> bool:
        """
        A range with no bounds represents the whole table, and is falsy
        """
        return self.start is not None or self.end is not None

    def __repr__(self):
        return f"RowRange({self._to_dict()!r})"


class RowSet:
    """
    The rows a scan should cover: a set of individual keys plus a set of
    ranges. An empty RowSet covers the whole table.
    """

    def __init__(
        self,
        row_keys: list[str | bytes] | str | bytes | None = None,
        row_ranges: list[RowRange] | RowRange | None = None,
    ):
        self.row_keys: set[bytes] = set()
        self.row_ranges: set[RowRange] = set()
        if row_keys is not None:
            if isinstance(row_keys, (str, bytes)):
                row_keys = [row_keys]
            for key in row_keys:
                self.add_key(key)
        if row_ranges is not None:
            if isinstance(row_ranges, RowRange):
                row_ranges = [row_ranges]
            for row_range in row_ranges:
                self.add_range(row_range)

    def add_key(self, row_key: str | bytes) -> RowSet:
        """
        Add a single row key

        Returns:
          - a reference to this row set for chaining
        """
        self.row_keys.add(_to_bytes(row_key, "row_key"))
        return self

    def add_range(self, row_range: RowRange | dict[str, bytes]) -> RowSet:
        """
        Add a range of row keys, as a RowRange or a dictionary in RowRange
        proto format

        Returns:
          - a reference to this row set for chaining
        """
        if isinstance(row_range, dict):
            row_range = RowRange._from_dict(row_range)
        if not isinstance(row_range, RowRange):
            raise ValueError("row_range must be a RowRange or dict")
        self.row_ranges.add(row_range)
        return self

    def is_full_scan(self) -> bool:
        return not self.row_keys and not any(self.row_ranges)

    def _to_dict(self) -> dict[str, Any]:
        """Converts to the `rows` field of a ReadRowsRequest"""
        return {
            "row_keys": sorted(self.row_keys),
            "row_ranges": [
                r._to_dict()
                for r in sorted(
                    self.row_ranges, key=lambda r: r.start.key if r.start else b""
                )
            ],
        }

    def __eq__(self, other) -> bool:
        if not isinstance(other, RowSet):
            return NotImplemented
        if self.is_full_scan() and other.is_full_scan():
            return True
        return self.row_keys == other.row_keys and self.row_ranges == other.row_ranges

    def __repr__(self):
        return (
            f"RowSet(row_keys={sorted(self.row_keys)!r}, "
            f"row_ranges={list(self.row_ranges)!r})"
        )


def revise_row_set(row_set: RowSet, last_seen_row_key: bytes) -> RowSet:
    """
    Return the part of `row_set` that lies strictly after `last_seen_row_key`.

    Used to resume a scan after an interrupted stream: every row up to and
    including the last seen key has already been delivered.

    Args:
      - row_set: the rows requested by the previous attempt
      - last_seen_row_key: the last row key delivered or scanned
    Returns:
      - a new RowSet; the input is not modified
    Raises:
      - _RowSetComplete: if no rows remain
    """
    resume_point = _RangePoint(last_seen_row_key, is_inclusive=False)
    if row_set.is_full_scan():
        return RowSet(row_ranges=RowRange._from_points(resume_point, None))
    adjusted_keys = [key for key in row_set.row_keys if key > last_seen_row_key]
    adjusted_ranges = []
    for row_range in row_set.row_ranges:
        if row_range.end is not None and row_range.end.key <= last_seen_row_key:
            # range was fully consumed
            continue
        if row_range.start is None or row_range.start.key <= last_seen_row_key:
            row_range = RowRange._from_points(resume_point, row_range.end)
        adjusted_ranges.append(row_range)
    if not adjusted_keys and not adjusted_ranges:
        # an empty row set would turn into a full table scan
        raise _RowSetComplete()
    return RowSet(row_keys=adjusted_keys, row_ranges=adjusted_ranges)

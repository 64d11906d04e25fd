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
Merges the cell chunks of a ReadRows stream into complete rows.

Rows arrive from the server split into chunks. A chunk carries at most one
cell (or a piece of one), and repeats the row key, family, and qualifier
only when they change. A row is complete once a chunk sets commit_row, and
may be abandoned at any point by a chunk that sets reset_row.
"""
from __future__ import annotations

from collections import deque
from typing import Any

from kvtable.exceptions import InvalidChunk
from kvtable.row import Row, Cell


def _chunk_has_field(chunk: Any, field: str) -> bool:
    """
    Returns true if the field is set on the chunk

    Required to disambiguate between empty strings and unset values
    """
    try:
        return chunk.HasField(field)
    except ValueError:
        return False


class ReadRowsParser:
    """
    Stream parser for a single ReadRows call.

    Feed chunks with handle_chunk(), and drain completed rows with
    has_next() / next(). Call handle_end_of_stream() once the stream is done.
    A new parser must be used for every stream.
    """

    def __init__(self):
        # key of the last row completed (or scanned), rows must be strictly increasing
        self.last_seen_row_key: bytes | None = None
        self._ready: deque[Row] = deque()
        self._end_of_stream = False
        self._reset_row()

    def _reset_row(self) -> None:
        self._row_key: bytes | None = None
        self._cells: list[Cell] = []
        self._family: str | None = None
        self._qualifier: bytes | None = None
        self._timestamp_micros = 0
        self._labels: list[str] = []
        # set while a cell value is split across chunks
        self._value: bytearray | None = None

    def has_next(self) -> bool:
        return bool(self._ready)

    def next(self) -> Row:
        if not self._ready:
            raise InvalidChunk("next() called with no complete row available")
        return self._ready.popleft()

    def in_progress(self) -> bool:
        """True if a row has been started but not committed"""
        return self._row_key is not None

    def handle_chunk(self, chunk: Any) -> None:
        """
        Process a google.bigtable.v2.ReadRowsResponse.CellChunk protobuf

        Raises:
          - InvalidChunk: if the chunk cannot follow the chunks seen so far
        """
        if self._end_of_stream:
            raise InvalidChunk("Chunk received after end of stream")
        if chunk.reset_row:
            self._handle_reset_chunk(chunk)
            return
        if self._value is None:
            self._start_cell(chunk)
        else:
            self._continue_cell(chunk)
        self._value.extend(chunk.value)
        if chunk.value_size == 0:
            self._finish_cell()
        if chunk.commit_row:
            if self._value is not None:
                raise InvalidChunk("Commit chunk received in the middle of a cell")
            self._finish_row()

    def handle_last_scanned_row_key(self, row_key: bytes) -> None:
        """
        Process a scan heartbeat: the server has read every row up to row_key
        """
        if self.in_progress():
            raise InvalidChunk("Last scanned row key received in the middle of a row")
        if self.last_seen_row_key is not None and row_key <= self.last_seen_row_key:
            raise InvalidChunk("Last scanned row key is out of order")
        self.last_seen_row_key = row_key

    def handle_end_of_stream(self) -> None:
        """
        Raises:
          - InvalidChunk: if the stream ended in the middle of a row
        """
        self._end_of_stream = True
        if self.in_progress():
            raise InvalidChunk("ReadRows stream ended with a partial row")

    def _start_cell(self, chunk: Any) -> None:
        if self._row_key is None:
            if not chunk.row_key:
                raise InvalidChunk("New row is missing a row key")
            if (
                self.last_seen_row_key is not None
                and chunk.row_key <= self.last_seen_row_key
            ):
                raise InvalidChunk("Row keys should be strictly increasing")
            self._row_key = chunk.row_key
        elif chunk.row_key and chunk.row_key != self._row_key:
            raise InvalidChunk("Row key changed mid row")
        has_family = _chunk_has_field(chunk, "family_name")
        has_qualifier = _chunk_has_field(chunk, "qualifier")
        if has_family:
            self._family = chunk.family_name.value
            if not has_qualifier:
                raise InvalidChunk("New family must specify qualifier")
        if has_qualifier:
            self._qualifier = chunk.qualifier.value
        if self._family is None:
            raise InvalidChunk("Missing family for new cell")
        if self._qualifier is None:
            raise InvalidChunk("Missing qualifier for new cell")
        self._timestamp_micros = chunk.timestamp_micros
        self._labels = list(chunk.labels)
        self._value = bytearray()

    def _continue_cell(self, chunk: Any) -> None:
        if chunk.row_key:
            raise InvalidChunk("In progress cell had a row key")
        if _chunk_has_field(chunk, "family_name"):
            raise InvalidChunk("In progress cell had a family name")
        if _chunk_has_field(chunk, "qualifier"):
            raise InvalidChunk("In progress cell had a qualifier")
        if chunk.timestamp_micros:
            raise InvalidChunk("In progress cell had a timestamp")
        if chunk.labels:
            raise InvalidChunk("In progress cell had labels")

    def _finish_cell(self) -> None:
        self._cells.append(
            Cell(
                value=bytes(self._value),
                row_key=self._row_key,
                family=self._family,
                qualifier=self._qualifier,
                timestamp_micros=self._timestamp_micros,
                labels=self._labels,
            )
        )
        self._value = None

    def _finish_row(self) -> None:
        row = Row(self._row_key, self._cells)
        self.last_seen_row_key = self._row_key
        self._ready.append(row)
        self._reset_row()

    def _handle_reset_chunk(self, chunk: Any) -> None:
        """
        Drop the row in progress
        """
        if not self.in_progress():
            raise InvalidChunk("Reset chunk received when not processing row")
        if chunk.row_key:
            raise InvalidChunk("Reset chunk has a row key")
        if _chunk_has_field(chunk, "family_name"):
            raise InvalidChunk("Reset chunk has a family name")
        if _chunk_has_field(chunk, "qualifier"):
            raise InvalidChunk("Reset chunk has a qualifier")
        if chunk.timestamp_micros:
            raise InvalidChunk("Reset chunk has a timestamp")
        if chunk.labels:
            raise InvalidChunk("Reset chunk has labels")
        if chunk.value:
            raise InvalidChunk("Reset chunk has a value")
        self._reset_row()

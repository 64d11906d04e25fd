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

from collections import OrderedDict
from typing import Any, Iterator, Sequence, overload
from functools import total_ordering

# Type aliases used internally for readability.
row_key = bytes
family_id = str
qualifier = bytes
row_value = bytes


class Row(Sequence["Cell"]):
    """
    A row returned by a read: the row key plus the cells that matched the
    read's filter, in the server's native order.

    Can be indexed:
    cells = row["family", "qualifier"]
    """

    def __init__(self, key: row_key, cells: list[Cell]):
        self.row_key = key
        self._cells_map: dict[family_id, dict[qualifier, list[Cell]]] = OrderedDict()
        self._cells_list: list[Cell] = []
        for cell in cells:
            family_map = self._cells_map.setdefault(cell.family, OrderedDict())
            family_map.setdefault(cell.qualifier, []).append(cell)
            self._cells_list.append(cell)

    @classmethod
    def _from_pb(cls, row_pb: Any) -> Row:
        """
        Creates a row from a google.bigtable.v2.Row message, as returned by
        ReadModifyWriteRow
        """
        row_key: bytes = row_pb.key
        cell_list: list[Cell] = []
        for family in row_pb.families:
            for column in family.columns:
                for cell in column.cells:
                    cell_list.append(
                        Cell(
                            value=cell.value,
                            row_key=row_key,
                            family=family.name,
                            qualifier=column.qualifier,
                            timestamp_micros=cell.timestamp_micros,
                            labels=list(cell.labels) if cell.labels else None,
                        )
                    )
        return cls(row_key, cell_list)

    def get_cells(
        self, family: str | None = None, qualifier: str | bytes | None = None
    ) -> list[Cell]:
        """
        Returns cells in native order, optionally restricted to a family or a
        (family, qualifier) pair
        """
        if family is None:
            if qualifier is not None:
                raise ValueError("Qualifier passed without family")
            return list(self._cells_list)
        if family not in self._cells_map:
            raise ValueError(f"Family '{family}' not found in row '{self.row_key!r}'")
        if qualifier is None:
            return [
                cell
                for cell_batch in self._cells_map[family].values()
                for cell in cell_batch
            ]
        if isinstance(qualifier, str):
            qualifier = qualifier.encode("utf-8")
        if qualifier not in self._cells_map[family]:
            raise ValueError(
                f"Qualifier '{qualifier!r}' not found in family '{family}' "
                f"in row '{self.row_key!r}'"
            )
        return list(self._cells_map[family][qualifier])

    def get_column_components(self) -> list[tuple[family_id, qualifier]]:
        """Returns the (family, qualifier) pairs present in the row"""
        return [
            (family, column)
            for family, columns in self._cells_map.items()
            for column in columns
        ]

    def to_dict(self) -> dict[str, Any]:
        """Returns a dictionary in the google.bigtable.v2.Row format"""
        families_list = []
        for family, columns in self._cells_map.items():
            column_list = [
                {"qualifier": column, "cells": [cell.to_dict() for cell in cells]}
                for column, cells in columns.items()
            ]
            families_list.append({"name": family, "columns": column_list})
        return {"key": self.row_key, "families": families_list}

    def __iter__(self) -> Iterator[Cell]:
        return iter(self._cells_list)

    def __len__(self) -> int:
        return len(self._cells_list)

    def __contains__(self, item) -> bool:
        """
        Works for cells, families, and (family, qualifier) pairs
        """
        if isinstance(item, family_id):
            return item in self._cells_map
        if isinstance(item, tuple) and len(item) == 2:
            family, column = item
            if isinstance(column, str):
                column = column.encode()
            return family in self._cells_map and column in self._cells_map[family]
        return item in self._cells_list

    @overload
    def __getitem__(
        self, index: family_id | tuple[family_id, qualifier | str]
    ) -> list[Cell]:
        pass

    @overload
    def __getitem__(self, index: int) -> Cell:
        pass

    @overload
    def __getitem__(self, index: slice) -> list[Cell]:
        pass

    def __getitem__(self, index):
        if isinstance(index, family_id):
            return self.get_cells(family=index)
        if isinstance(index, tuple) and len(index) == 2:
            return self.get_cells(family=index[0], qualifier=index[1])
        if isinstance(index, (int, slice)):
            return self._cells_list[index]
        raise TypeError(
            "Index must be family_id, (family_id, qualifier), int, or slice"
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Row):
            return False
        return self.row_key == other.row_key and self._cells_list == other._cells_list

    def __ne__(self, other) -> bool:
        return not self == other

    def __repr__(self):
        return f"Row(key={self.row_key!r}, cells={self._cells_list!r})"


@total_ordering
class Cell:
    """
    A single cell value returned by a read
    """

    def __init__(
        self,
        value: row_value,
        row_key: row_key,
        family: family_id,
        qualifier: qualifier | str,
        timestamp_micros: int,
        labels: list[str] | None = None,
    ):
        self.value = value
        self.row_key = row_key
        self.family = family
        if isinstance(qualifier, str):
            qualifier = qualifier.encode()
        self.qualifier = qualifier
        self.timestamp_micros = timestamp_micros
        self.labels = labels if labels is not None else []

    def __int__(self) -> int:
        """
        Interprets the value as a 64-bit big-endian signed integer, as written
        by IncrementRule
        """
        return int.from_bytes(self.value, byteorder="big", signed=True)

    def to_dict(self) -> dict[str, Any]:
        cell_dict: dict[str, Any] = {
            "value": self.value,
            "timestamp_micros": self.timestamp_micros,
        }
        if self.labels:
            cell_dict["labels"] = self.labels
        return cell_dict

    def __repr__(self):
        return (
            f"Cell(value={self.value!r}, row_key={self.row_key!r}, "
            f"family='{self.family}', qualifier={self.qualifier!r}, "
            f"timestamp_micros={self.timestamp_micros}, labels={self.labels})"
        )

    def _ordering(self):
        # native order: family, qualifier, newest timestamp first
        return (self.family, self.qualifier, -self.timestamp_micros, self.value)

    def __lt__(self, other) -> bool:
        if not isinstance(other, Cell):
            return NotImplemented
        return self._ordering() < other._ordering()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Cell):
            return NotImplemented
        return (
            self.row_key == other.row_key
            and self._ordering() == other._ordering()
            and sorted(self.labels) == sorted(other.labels)
        )

    def __hash__(self):
        return hash(
            (
                self.row_key,
                self.family,
                self.qualifier,
                self.value,
                self.timestamp_micros,
                tuple(sorted(self.labels)),
            )
        )

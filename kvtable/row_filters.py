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
"""Filters for narrowing down the cells returned by a read or a predicate."""
from __future__ import annotations

from typing import Any, Sequence
from abc import ABC, abstractmethod


class RowFilter(ABC):
    """Basic filter to apply to cells in a row"""

    @abstractmethod
    def _to_dict(self) -> dict[str, Any]:
        """Converts the filter to a google.bigtable.v2.RowFilter dictionary"""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class _BoolFilter(RowFilter, ABC):
    def __init__(self, flag: bool):
        self.flag = flag

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return other.flag == self.flag

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(flag={self.flag})"


class PassAllFilter(_BoolFilter):
    """Matches every cell"""

    def _to_dict(self) -> dict[str, Any]:
        return {"pass_all_filter": self.flag}


class BlockAllFilter(_BoolFilter):
    """Matches no cells"""

    def _to_dict(self) -> dict[str, Any]:
        return {"block_all_filter": self.flag}


class StripValueTransformerFilter(_BoolFilter):
    """Replaces every cell value with the empty string"""

    def _to_dict(self) -> dict[str, Any]:
        return {"strip_value_transformer": self.flag}


class _RegexFilter(RowFilter, ABC):
    """
    Filter that matches a RE2 regular expression. str patterns are encoded
    as utf-8.
    """

    def __init__(self, regex: str | bytes):
        self.regex: bytes = regex.encode() if isinstance(regex, str) else regex

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return other.regex == self.regex

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(regex={self.regex!r})"


class RowKeyRegexFilter(_RegexFilter):
    def _to_dict(self) -> dict[str, Any]:
        return {"row_key_regex_filter": self.regex}


class FamilyNameRegexFilter(_RegexFilter):
    def _to_dict(self) -> dict[str, Any]:
        return {"family_name_regex_filter": self.regex.decode()}


class ColumnQualifierRegexFilter(_RegexFilter):
    def _to_dict(self) -> dict[str, Any]:
        return {"column_qualifier_regex_filter": self.regex}


class ValueRegexFilter(_RegexFilter):
    def _to_dict(self) -> dict[str, Any]:
        return {"value_regex_filter": self.regex}


class _CellCountFilter(RowFilter, ABC):
    def __init__(self, num_cells: int):
        if num_cells < 0:
            raise ValueError("num_cells must be >= 0")
        self.num_cells = num_cells

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return other.num_cells == self.num_cells

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(num_cells={self.num_cells})"


class CellsRowLimitFilter(_CellCountFilter):
    """Matches the first N cells of each row"""

    def _to_dict(self) -> dict[str, Any]:
        return {"cells_per_row_limit_filter": self.num_cells}


class CellsColumnLimitFilter(_CellCountFilter):
    """Matches the most recent N cells of each column"""

    def _to_dict(self) -> dict[str, Any]:
        return {"cells_per_column_limit_filter": self.num_cells}


class _FilterCombination(RowFilter, ABC):
    def __init__(self, filters: Sequence[RowFilter] | None = None):
        self.filters: list[RowFilter] = list(filters) if filters is not None else []

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return NotImplemented
        return other.filters == self.filters

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(filters={self.filters})"


class RowFilterChain(_FilterCombination):
    """Applies each filter in turn to the output of the previous one"""

    def _to_dict(self) -> dict[str, Any]:
        return {"chain": {"filters": [f._to_dict() for f in self.filters]}}


class RowFilterUnion(_FilterCombination):
    """Merges the output of every filter"""

    def _to_dict(self) -> dict[str, Any]:
        return {"interleave": {"filters": [f._to_dict() for f in self.filters]}}


def _filter_to_dict(
    row_filter: RowFilter | dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Accept filters as RowFilter objects or in dictionary form"""
    if row_filter is None or isinstance(row_filter, dict):
        return row_filter
    if isinstance(row_filter, RowFilter):
        return row_filter._to_dict()
    raise ValueError("row_filter must be a RowFilter or dict")

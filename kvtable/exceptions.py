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

import sys

from google.api_core import exceptions as core_exceptions

is_311_plus = sys.version_info >= (3, 11)


class InvalidChunk(core_exceptions.InternalServerError):
    """
    Exception raised when the chunks of a ReadRows stream cannot be merged
    into well-formed rows.

    This signals a server or parser bug, so it is never retried.
    """


class _RowSetComplete(Exception):
    """
    Internal exception for RowReader

    Raised by revise_row_set when there are no rows left to read before
    starting a retry attempt
    """

    pass


class TableExceptionGroup(ExceptionGroup if is_311_plus else Exception):  # type: ignore # noqa: F821
    """
    Represents one or more exceptions that occurred during a table operation

    In Python 3.11+, this is an unmodified exception group. In < 3.11, it is a
    custom exception with some exception group functionality backported, but
    does not implement the full API
    """

    def __init__(self, message, excs):
        if is_311_plus:
            super().__init__(message, excs)
        else:
            if len(excs) == 0:
                raise ValueError("exceptions must be a non-empty sequence")
            self.exceptions = tuple(excs)
            super().__init__(message)

    def __new__(cls, message, excs):
        if is_311_plus:
            return super().__new__(cls, message, excs)
        else:
            return super().__new__(cls)

    def __str__(self):
        """
        String representation doesn't display sub-exceptions. Subexceptions are
        described in message
        """
        return self.args[0]


class RetryExceptionGroup(TableExceptionGroup):
    """Represents the failed attempts of a retried operation"""

    @staticmethod
    def _format_message(excs: list[Exception]):
        if len(excs) == 0:
            return "No exceptions"
        if len(excs) == 1:
            return f"1 failed attempt: {type(excs[0]).__name__}"
        else:
            return f"{len(excs)} failed attempts. Latest: {type(excs[-1]).__name__}"

    def __init__(self, excs: list[Exception]):
        super().__init__(self._format_message(excs), excs)

    def __new__(cls, excs: list[Exception]):
        return super().__new__(cls, cls._format_message(excs), excs)

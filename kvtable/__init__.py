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
from kvtable import version as package_version

from kvtable.table import Table
from kvtable.stub import TableStub
from kvtable.stub import StreamingReadRpc
from kvtable.stub import DefaultTableStub
from kvtable.stub import create_default_stub

from kvtable.mutations import Mutation
from kvtable.mutations import SetCell
from kvtable.mutations import DeleteRangeFromColumn
from kvtable.mutations import DeleteAllFromFamily
from kvtable.mutations import DeleteAllFromRow
from kvtable.mutations import RowMutationEntry
from kvtable.mutations import SingleRowMutation
from kvtable.mutations import BulkMutation
from kvtable.mutations import FailedMutation
from kvtable.mutations import SERVER_SIDE_TIMESTAMP

from kvtable.policies import RPCRetryPolicy
from kvtable.policies import LimitedErrorCountRetryPolicy
from kvtable.policies import LimitedTimeRetryPolicy
from kvtable.policies import RPCBackoffPolicy
from kvtable.policies import ExponentialBackoffPolicy
from kvtable.policies import IdempotentMutationPolicy
from kvtable.policies import SafeIdempotentMutationPolicy
from kvtable.policies import AlwaysRetryMutationPolicy

from kvtable.row import Row
from kvtable.row import Cell
from kvtable.row_set import RowRange
from kvtable.row_set import RowSet
from kvtable._read_rows import RowReader
from kvtable._row_parser import ReadRowsParser

from kvtable.read_modify_write_rules import ReadModifyWriteRule
from kvtable.read_modify_write_rules import IncrementRule
from kvtable.read_modify_write_rules import AppendValueRule

from kvtable.completion_queue import CompletionQueue
from kvtable.completion_queue import BackgroundThreads
from kvtable.completion_queue import AutomaticallyCreatedBackgroundThreads

from kvtable.exceptions import InvalidChunk
from kvtable.exceptions import RetryExceptionGroup

from kvtable import row_filters

__version__: str = package_version.__version__

__all__ = (
    "Table",
    "TableStub",
    "StreamingReadRpc",
    "DefaultTableStub",
    "create_default_stub",
    "Mutation",
    "SetCell",
    "DeleteRangeFromColumn",
    "DeleteAllFromFamily",
    "DeleteAllFromRow",
    "RowMutationEntry",
    "SingleRowMutation",
    "BulkMutation",
    "FailedMutation",
    "SERVER_SIDE_TIMESTAMP",
    "RPCRetryPolicy",
    "LimitedErrorCountRetryPolicy",
    "LimitedTimeRetryPolicy",
    "RPCBackoffPolicy",
    "ExponentialBackoffPolicy",
    "IdempotentMutationPolicy",
    "SafeIdempotentMutationPolicy",
    "AlwaysRetryMutationPolicy",
    "Row",
    "Cell",
    "RowRange",
    "RowSet",
    "RowReader",
    "ReadRowsParser",
    "ReadModifyWriteRule",
    "IncrementRule",
    "AppendValueRule",
    "CompletionQueue",
    "BackgroundThreads",
    "AutomaticallyCreatedBackgroundThreads",
    "InvalidChunk",
    "RetryExceptionGroup",
    "row_filters",
)
